"""
Tests for the Flask API

Uses the Flask test client against a fresh app per test.
"""

import json

import pytest

from main import create_app
from payout_engine.config import EngineSettings

PLAN = {
    "planId": "P1",
    "planType": "GoalAttainment",
    "name": "FY25 AE Plan",
    "breakpoints": [
        {"performancePercent": 0, "payoutPercent": 0},
        {"performancePercent": 80, "payoutPercent": 50},
        {"performancePercent": 100, "payoutPercent": 100},
        {"performancePercent": 120, "payoutPercent": 150},
        {"performancePercent": 140, "payoutPercent": 200},
    ],
    "baseCommissionRate": 0.02,
    "acceleratorThreshold": 120,
    "acceleratorMultiplier": 1.5,
    "territoryMultipliers": {"West": 1.1},
}

REPS = [
    {"repId": "R1", "repName": "Dana Reyes", "territory": "West", "quota": 500000,
     "actualSales": 650000, "targetPay": 20000},
    {"repId": "R2", "repName": "Sam Ortiz", "territory": "East", "quota": 0,
     "actualSales": 1000, "targetPay": 20000},
]


@pytest.fixture
def client():
    app = create_app(EngineSettings())
    app.config["TESTING"] = True
    return app.test_client()


def _calculate(client, **extra):
    body = {"plans": [PLAN], "representatives": REPS, "periodStart": "2024-10-01", "periodEnd": "2024-12-31"}
    body.update(extra)
    return client.post("/calculate", json=body)


class TestServiceEndpoints:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.get_json() == {"status": "healthy"}

    def test_api_info(self, client):
        data = client.get("/api").get_json()
        assert data["status"] == "ok"
        assert "calculate" in data["endpoints"]


class TestCalculation:

    def test_calculate_end_to_end(self, client):
        response = _calculate(client)
        data = response.get_json()

        assert response.status_code == 200
        assert data["job"]["status"] == "completed"
        assert data["job"]["errorCount"] == 1
        assert data["job"]["errors"][0]["repId"] == "R2"
        assert len(data["results"]) == 1
        result = data["results"][0]
        assert result["finalPayout"] == 21450.0
        assert result["attainmentPercent"] == 130.0
        assert result["percentOfTargetPay"] == 107.25
        assert result["anyAdjustment"] == "No"

    def test_calculate_with_registered_plan(self, client):
        assert client.post("/plans", json=PLAN).status_code == 201

        response = client.post("/calculate", json={"planIds": ["P1"], "representatives": REPS[:1]})
        assert response.get_json()["results"][0]["finalPayout"] == 21450.0

    def test_job_results_and_trace(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]

        job = client.get(f"/jobs/{job_id}").get_json()
        assert job["progress"] == 100.0

        results = client.get(f"/jobs/{job_id}/results").get_json()
        assert [r["repId"] for r in results] == ["R1"]

        trace = client.get(f"/jobs/{job_id}/traces/R1").get_json()
        assert [s["calculationStep"] for s in trace["steps"]] == [1, 2, 3, 4, 5, 6, 7]
        assert trace["steps"][3]["calculation"] == "IF(attainment > 120%, baseCommission * 1.5, baseCommission)"
        assert trace["finalPayout"] == 21450.0

        failed = client.get(f"/jobs/{job_id}/traces/R2").get_json()
        assert len(failed["steps"]) == 1

    def test_unknown_job_is_404(self, client):
        response = client.get("/jobs/999")
        assert response.status_code == 404
        assert response.get_json()["status"] == "not_found"

    def test_empty_body_is_validation_error(self, client):
        response = client.post("/calculate", data="", content_type="application/json")
        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"

    def test_malformed_rep_is_validation_error(self, client):
        response = client.post("/calculate", json={"plans": [PLAN], "representatives": [{"repId": "R1"}]})
        assert response.status_code == 400

    def test_nan_quota_is_recorded_against_the_rep(self, client):
        body = {"plans": [PLAN], "representatives": [REPS[0], dict(REPS[0], repId="R9", quota=float("nan"))]}
        response = client.post("/calculate", data=json.dumps(body), content_type="application/json")
        data = response.get_json()

        assert response.status_code == 200
        assert data["job"]["status"] == "completed"
        assert data["job"]["errorCount"] == 1
        assert data["job"]["errors"][0]["repId"] == "R9"
        assert [r["repId"] for r in data["results"]] == ["R1"]

    def test_plan_ids_filter_inline_plans(self, client):
        cheap = dict(PLAN, planId="P2", baseCommissionRate=0.01)
        response = client.post("/calculate", json={
            "plans": [PLAN, cheap], "planIds": ["P2"], "representatives": REPS[:1],
        })
        data = response.get_json()

        # Only P2 is in play: 650000 * 0.01 * 1.5 * 1.1 = 10725
        assert data["job"]["planIds"] == ["P2"]
        assert data["results"][0]["finalPayout"] == 10725.0

    def test_cancel_finished_job_is_noop(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]
        response = client.post(f"/jobs/{job_id}/cancel")

        assert response.get_json()["status"] == "completed"


class TestAdjustmentEndpoints:

    ADJUSTMENT = {
        "repId": "R1",
        "repName": "Dana Reyes",
        "originalPayout": 21450,
        "adjustmentAmount": 500,
        "adjustmentType": "bonus",
        "adjustmentReason": "Q4 launch spiff",
        "businessJustification": "Approved as part of the Q4 launch incentive program",
        "submittedBy": "analyst",
    }

    def test_submit_approve_apply_patches_result(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]
        submitted = client.post("/adjustments", json=self.ADJUSTMENT)
        assert submitted.status_code == 201
        adjustment_id = submitted.get_json()["id"]

        approved = client.post(f"/adjustments/{adjustment_id}/approve", json={"actor": "manager"})
        assert approved.get_json()["status"] == "approved"

        applied = client.post(f"/adjustments/{adjustment_id}/apply", json={"actor": "payroll", "jobId": job_id})
        assert applied.get_json()["status"] == "applied"

        result = client.get(f"/jobs/{job_id}/results").get_json()[0]
        # 21450 + 500 = 21950
        assert result["finalPayout"] == 21950.0
        assert result["anyAdjustment"] == "Yes"

    def _apply_against(self, client, job_id):
        adjustment_id = client.post("/adjustments", json=self.ADJUSTMENT).get_json()["id"]
        client.post(f"/adjustments/{adjustment_id}/approve", json={"actor": "manager"})
        return client.post(f"/adjustments/{adjustment_id}/apply", json={"actor": "payroll", "jobId": job_id})

    def test_applied_adjustment_feeds_rerun_of_same_period(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]
        applied = self._apply_against(client, job_id).get_json()
        assert applied["period"] == "2024-12-31"

        result = _calculate(client).get_json()["results"][0]
        assert result["finalPayout"] == 21950.0

    def test_q4_adjustment_not_paid_again_in_q1(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]
        self._apply_against(client, job_id)

        q1 = _calculate(client, periodStart="2025-01-01", periodEnd="2025-03-31").get_json()
        assert q1["results"][0]["finalPayout"] == 21450.0

    def test_apply_with_non_integer_job_id_is_400(self, client):
        response = self._apply_against(client, "latest")

        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"

    def test_self_approval_is_conflict(self, client):
        adjustment_id = client.post("/adjustments", json=self.ADJUSTMENT).get_json()["id"]
        response = client.post(f"/adjustments/{adjustment_id}/approve", json={"actor": "analyst"})

        assert response.status_code == 409
        assert response.get_json()["currentStatus"] == "pending"

    def test_stale_version_is_conflict(self, client):
        adjustment_id = client.post("/adjustments", json=self.ADJUSTMENT).get_json()["id"]
        response = client.post(
            f"/adjustments/{adjustment_id}/approve", json={"actor": "manager", "expectedVersion": 7}
        )

        assert response.status_code == 409
        assert response.get_json()["status"] == "conflict"

    def test_short_justification_is_400(self, client):
        body = dict(self.ADJUSTMENT, businessJustification="because")
        assert client.post("/adjustments", json=body).status_code == 400

    def test_list_with_filters(self, client):
        client.post("/adjustments", json=self.ADJUSTMENT)
        client.post("/adjustments", json=dict(self.ADJUSTMENT, repId="R7", repName="Lee Park", priority="urgent"))

        urgent = client.get("/adjustments?priority=urgent").get_json()
        assert [a["repId"] for a in urgent] == ["R7"]
        found = client.get("/adjustments?search=dana").get_json()
        assert [a["repId"] for a in found] == ["R1"]


class TestAnomalyEndpoints:

    def test_analyze_list_and_review(self, client):
        job_id = _calculate(client).get_json()["job"]["jobId"]

        response = client.post("/anomalies/analyze", json={"jobId": job_id, "baseline": {"reps": {"R1": 13000}}})
        anomalies = response.get_json()
        # (21450 - 13000) / 13000 * 100 = 65
        assert anomalies[0]["severity"] == "critical"
        assert anomalies[0]["variancePercent"] == 65.0

        listed = client.get(f"/anomalies/{job_id}").get_json()
        assert [a["id"] for a in listed] == [anomalies[0]["id"]]

        reviewed = client.patch(
            f"/anomalies/{anomalies[0]['id']}",
            json={"status": "false_positive", "reviewedBy": "auditor", "reviewerNotes": "Big renewal"},
        )
        assert reviewed.get_json()["status"] == "false_positive"

    def test_analyze_requires_job_id(self, client):
        response = client.post("/anomalies/analyze", json={"baseline": {}})
        assert response.status_code == 400

    def test_analyze_with_non_integer_job_id_is_400(self, client):
        response = client.post("/anomalies/analyze", json={"jobId": "abc"})

        assert response.status_code == 400
        assert response.get_json()["status"] == "validation_failed"


class TestPlanEndpoints:

    @pytest.fixture
    def registered(self, client):
        client.post("/plans", json=PLAN)
        return client

    def test_versions_and_restore(self, registered):
        client = registered
        for i in range(3):
            created = client.post("/plans/P1/versions", json={"changeDescription": f"v{i + 1}", "createdBy": "admin"})
            assert created.status_code == 201

        restored = client.post("/plans/versions/P1:v1/restore", json={"restoredBy": "admin"})
        assert restored.get_json()["versionNumber"] == 4

        listing = client.get("/plans/P1/versions").get_json()
        assert listing["currentVersion"] == 4
        assert len(listing["versions"]) == 4

    def test_configuration_patch_and_audit(self, registered):
        client = registered
        response = client.patch(
            "/plans/P1/configuration",
            json={"changes": {"capPercent": 150}, "userId": "admin", "changeSource": "form"},
        )
        assert [e["fieldChanged"] for e in response.get_json()] == ["capPercent"]

        audit = client.get("/plans/P1/audit").get_json()
        assert audit[-1]["newValue"] == 150.0
        assert audit[-1]["changeSource"] == "form"

    def test_assistant(self, registered):
        response = registered.post("/plans/P1/assistant", json={"message": "cap payouts at 150%", "userId": "admin"})
        data = response.get_json()

        assert data["changes"] == {"capPercent": 150.0}
        assert data["auditEntries"][0]["changeSource"] == "assistant"

    def test_assistant_preview_does_not_apply(self, registered):
        registered.post("/plans/P1/assistant", json={"message": "cap payouts at 150%", "apply": False})

        audit = registered.get("/plans/P1/audit").get_json()
        assert all(e["changeSource"] != "assistant" for e in audit)

    def test_invalid_plan_rejected(self, client):
        bad = dict(PLAN, breakpoints=[{"performancePercent": 0, "payoutPercent": 0}])
        assert client.post("/plans", json=bad).status_code == 400


class TestInsightsEndpoint:

    def test_insights_for_latest_job(self, client):
        _calculate(client)
        data = client.get("/analytics/insights").get_json()

        assert data["summary"]["totalReps"] == 1
        assert data["summary"]["totalPayout"] == 21450.0

    def test_insights_without_jobs_is_404(self, client):
        assert client.get("/analytics/insights").status_code == 404
