from flask import Flask, request, jsonify
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from payout_engine import (
    AdjustmentWorkflow,
    AnomalyDetector,
    AnomalyRegistry,
    CalculationEngine,
    EngineSettings,
    JobStore,
    PlanConfiguration,
    PlanVersionStore,
)
from payout_engine.analytics import build_insights
from payout_engine.assistant import PlanConfigAssistant
from payout_engine.errors import (
    ConcurrencyConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from payout_engine.models import HistoricalBaseline
from payout_engine.output import OutputBuilder
import os
import logging

logger = logging.getLogger(__name__)


def _body():
    data = request.get_json(force=True, silent=True)
    if not data:
        raise ValidationError("No input data provided")
    return data


def _job_id(value):
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"jobId must be an integer, got: {value!r}") from e


def create_app(settings: EngineSettings = None) -> Flask:
    settings = settings or EngineSettings.from_env()

    # Configure logging
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    app = Flask(__name__)

    # Enable CORS for all routes
    CORS(app)

    engine = CalculationEngine(max_workers=settings.max_workers)
    jobs = JobStore()
    workflow = AdjustmentWorkflow(enforce_separation_of_duties=settings.enforce_separation_of_duties)
    detector = AnomalyDetector(settings.anomaly)
    anomalies = AnomalyRegistry()
    versions = PlanVersionStore()
    assistant = PlanConfigAssistant(versions)
    output = OutputBuilder()

    app.extensions["payout_engine"] = {
        "settings": settings,
        "engine": engine,
        "jobs": jobs,
        "workflow": workflow,
        "anomalies": anomalies,
        "versions": versions,
    }

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        logger.error(f"Validation error: {str(e)}")
        return jsonify({"error": str(e), "status": "validation_failed"}), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return jsonify({"error": str(e), "status": "not_found"}), 404

    @app.errorhandler(InvalidTransitionError)
    def handle_transition(e):
        logger.warning(f"Rejected transition: {str(e)}")
        return jsonify({
            "error": str(e),
            "status": "invalid_transition",
            "currentStatus": e.current_status,
        }), 409

    @app.errorhandler(ConcurrencyConflictError)
    def handle_conflict(e):
        logger.warning(f"Concurrency conflict: {str(e)}")
        return jsonify({"error": str(e), "status": "conflict"}), 409

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.error(f"Processing error: {str(e)}", exc_info=True)
        return jsonify({"error": "Internal server error", "status": "failed"}), 500

    # -------------------------------------------------------------------------
    # Service info
    # -------------------------------------------------------------------------

    @app.route("/api", methods=["GET"])
    def api_info():
        """API information endpoint"""
        return jsonify({
            "status": "ok",
            "message": "IC Payout Engine API",
            "version": "1.0",
            "environment": settings.environment,
            "endpoints": {
                "calculate": "/calculate [POST]",
                "jobs": "/jobs/<id> [GET], /jobs/<id>/results [GET], "
                        "/jobs/<id>/traces/<rep_id> [GET], /jobs/<id>/cancel [POST]",
                "adjustments": "/adjustments [GET, POST], /adjustments/<id>/<action> [POST]",
                "anomalies": "/anomalies/analyze [POST], /anomalies/<job_id> [GET], /anomalies/<id> [PATCH]",
                "plans": "/plans [POST], /plans/<plan_id>/versions [GET, POST], "
                         "/plans/versions/<version_id>/restore [POST], "
                         "/plans/<plan_id>/configuration [PATCH], /plans/<plan_id>/assistant [POST], "
                         "/plans/<plan_id>/audit [GET]",
                "insights": "/analytics/insights [GET]",
                "health": "/health [GET]",
            }
        }), 200

    @app.route("/health", methods=["GET"])
    def health():
        """Health check for monitoring"""
        return jsonify({"status": "healthy"}), 200

    # -------------------------------------------------------------------------
    # Calculation jobs
    # -------------------------------------------------------------------------

    @app.route("/calculate", methods=["POST"])
    def calculate():
        """
        Run a calculation job. Plans come from the request body, or from the
        registered plans when the body has none.
        """
        data = dict(_body())
        plan_ids = [str(p) for p in data.get("planIds", [])]
        if "plans" not in data:
            data["plans"] = [
                {**p.to_dict(), "breakpoints": p.pay_curve_data()}
                for p in versions.plans()
                if not plan_ids or p.plan_id in plan_ids
            ]

        job = jobs.create_job(plan_ids, data.get("periodStart"), data.get("periodEnd"))
        logger.info(f"Processing job {job.job_id}: {len(data.get('representatives', []))} representatives")

        results, traces = engine.run_from_dict(job, data, adjustments=workflow.applied())
        jobs.save_run(job, results, traces)

        return jsonify({
            "job": output.job_to_dict(job),
            "results": [output.result_to_dict(r) for r in results],
        }), 200

    @app.route("/jobs/<int:job_id>", methods=["GET"])
    def get_job(job_id):
        return jsonify(output.job_to_dict(jobs.get_job(job_id))), 200

    @app.route("/jobs/<int:job_id>/results", methods=["GET"])
    def get_results(job_id):
        return jsonify([output.result_to_dict(r) for r in jobs.results(job_id)]), 200

    @app.route("/jobs/<int:job_id>/traces/<rep_id>", methods=["GET"])
    def get_trace(job_id, rep_id):
        trace = jobs.trace(job_id, rep_id)
        final = None
        for result in jobs.results(job_id):
            if result.rep_id == rep_id:
                final = result.final_payout
        return jsonify(output.trace_to_dict(trace, final_payout=final)), 200

    @app.route("/jobs/<int:job_id>/cancel", methods=["POST"])
    def cancel_job(job_id):
        return jsonify(output.job_to_dict(jobs.request_cancel(job_id))), 200

    # -------------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------------

    @app.route("/adjustments", methods=["POST"])
    def submit_adjustment():
        adjustment = workflow.submit_from_dict(_body())
        return jsonify(output.adjustment_to_dict(adjustment)), 201

    @app.route("/adjustments", methods=["GET"])
    def list_adjustments():
        found = workflow.list_adjustments(
            status=request.args.get("status"),
            priority=request.args.get("priority"),
            search=request.args.get("search"),
        )
        return jsonify([output.adjustment_to_dict(a) for a in found]), 200

    @app.route("/adjustments/<int:adjustment_id>/<action>", methods=["POST"])
    def adjustment_action(adjustment_id, action):
        data = request.get_json(force=True, silent=True) or {}
        actor = data.get("actor") or data.get("reviewedBy") or data.get("appliedBy")
        kwargs = {"expected_version": data.get("expectedVersion")}
        if action in ("approve", "reject"):
            kwargs["comments"] = data.get("comments")
        elif action == "apply" and data.get("jobId") is not None:
            rep_id = workflow.get(adjustment_id).rep_id
            job_id = _job_id(data["jobId"])
            job = jobs.get_job(job_id)
            kwargs["result"] = jobs.result_for(job_id, rep_id)
            kwargs["period"] = job.period_end or job.period_start
        adjustment = workflow.perform(adjustment_id, action, actor, **kwargs)
        return jsonify(output.adjustment_to_dict(adjustment)), 200

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------

    @app.route("/anomalies/analyze", methods=["POST"])
    def analyze_anomalies():
        data = _body()
        if data.get("jobId") is None:
            raise ValidationError("jobId is required")
        job_id = _job_id(data["jobId"])
        try:
            baseline = HistoricalBaseline.from_dict(data.get("baseline") or {})
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValidationError(f"Malformed baseline: {e}") from e

        found = detector.detect(jobs.results(job_id), baseline, traces=jobs.traces(job_id), job_id=job_id)
        saved = anomalies.save(found)
        logger.info(f"Anomaly analysis for job {job_id}: {len(saved)} flagged")
        return jsonify([output.anomaly_to_dict(a) for a in saved]), 200

    @app.route("/anomalies/<int:job_id>", methods=["GET"])
    def list_anomalies(job_id):
        jobs.get_job(job_id)
        return jsonify([output.anomaly_to_dict(a) for a in anomalies.for_job(job_id)]), 200

    @app.route("/anomalies/<int:anomaly_id>", methods=["PATCH"])
    def review_anomaly(anomaly_id):
        data = _body()
        anomaly = anomalies.review(
            anomaly_id,
            data.get("status"),
            reviewer=data.get("reviewedBy"),
            notes=data.get("reviewerNotes"),
        )
        return jsonify(output.anomaly_to_dict(anomaly)), 200

    # -------------------------------------------------------------------------
    # Plans, versions and audit
    # -------------------------------------------------------------------------

    @app.route("/plans", methods=["POST"])
    def register_plan():
        data = _body()
        try:
            plan = PlanConfiguration.from_dict(data)
        except (KeyError, TypeError, ArithmeticError) as e:
            raise ValidationError(f"Malformed plan: {e}") from e
        versions.register_plan(plan, user_id=data.get("userId", "system"))
        return jsonify({**plan.to_dict(), "breakpoints": plan.pay_curve_data()}), 201

    @app.route("/plans/<plan_id>/versions", methods=["POST"])
    def create_version(plan_id):
        data = request.get_json(force=True, silent=True) or {}
        version = versions.create_snapshot(
            plan_id,
            configuration=data.get("configurationData"),
            pay_curve=data.get("payCurveData"),
            description=data.get("changeDescription", ""),
            created_by=data.get("createdBy", "system"),
            simulation_results=data.get("simulationResults"),
        )
        return jsonify(output.version_to_dict(version)), 201

    @app.route("/plans/<plan_id>/versions", methods=["GET"])
    def list_versions(plan_id):
        return jsonify({
            "planId": plan_id,
            "currentVersion": versions.current_version(plan_id),
            "versions": [output.version_to_dict(v) for v in versions.versions(plan_id)],
        }), 200

    @app.route("/plans/versions/<version_id>/restore", methods=["POST"])
    def restore_version(version_id):
        data = request.get_json(force=True, silent=True) or {}
        version = versions.restore(version_id, restored_by=data.get("restoredBy", "system"))
        return jsonify(output.version_to_dict(version)), 201

    @app.route("/plans/<plan_id>/configuration", methods=["PATCH"])
    def update_configuration(plan_id):
        data = _body()
        entries = versions.update_configuration(
            plan_id,
            data.get("changes") or {},
            user_id=data.get("userId", "system"),
            change_source=data.get("changeSource", "form"),
        )
        return jsonify([output.audit_to_dict(e) for e in entries]), 200

    @app.route("/plans/<plan_id>/assistant", methods=["POST"])
    def plan_assistant(plan_id):
        data = _body()
        message = data.get("message", "")
        if not data.get("apply", True):
            proposal = assistant.interpret(plan_id, message)
            entries = []
        else:
            proposal, entries = assistant.apply(plan_id, message, user_id=data.get("userId", "system"))
        return jsonify({
            "understood": proposal.understood,
            "changes": proposal.changes,
            "explanations": proposal.explanations,
            "auditEntries": [output.audit_to_dict(e) for e in entries],
        }), 200

    @app.route("/plans/<plan_id>/audit", methods=["GET"])
    def plan_audit(plan_id):
        return jsonify([output.audit_to_dict(e) for e in versions.audit_log(plan_id)]), 200

    # -------------------------------------------------------------------------
    # Analytics
    # -------------------------------------------------------------------------

    @app.route("/analytics/insights", methods=["GET"])
    def insights():
        job_id = request.args.get("jobId", type=int)
        if job_id is None:
            finished = [j for j in jobs.list_jobs() if j.status == "completed"]
            if not finished:
                raise NotFoundError("No completed calculation job")
            job_id = finished[-1].job_id
        return jsonify({"jobId": job_id, **build_insights(jobs.results(job_id))}), 200

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    app.run(host="0.0.0.0", port=port, debug=False)
