"""
Tests for the Plan Configuration Assistant
"""

from decimal import Decimal

import pytest

from payout_engine.assistant import PlanConfigAssistant
from payout_engine.errors import ValidationError
from payout_engine.models import Breakpoint, PlanConfiguration
from payout_engine.versioning import PlanVersionStore


@pytest.fixture
def store():
    store = PlanVersionStore()
    store.register_plan(PlanConfiguration(
        plan_id="P1",
        plan_type="GoalAttainment",
        breakpoints=[Breakpoint(Decimal("0"), Decimal("0")), Breakpoint(Decimal("100"), Decimal("100"))],
        base_commission_rate=Decimal("0.02"),
        cap_percent=Decimal("200"),
        territory_multipliers={"East": Decimal("0.9")},
    ))
    return store


@pytest.fixture
def assistant(store):
    return PlanConfigAssistant(store)


class TestInterpretation:
    """Message to changes, without applying."""

    def test_cap_percent(self, assistant):
        proposal = assistant.interpret("P1", "Cap payouts at 150%")
        assert proposal.changes == {"capPercent": 150.0}

    def test_cap_amount(self, assistant):
        proposal = assistant.interpret("P1", "cap payouts at $50,000")
        assert proposal.changes == {"payoutCap": 50000.0}

    def test_remove_cap(self, assistant):
        proposal = assistant.interpret("P1", "Remove the cap")
        assert proposal.changes == {"capPercent": None, "payoutCap": None}

    def test_accelerator(self, assistant):
        proposal = assistant.interpret("P1", "Add a 1.5x accelerator above 120%")
        assert proposal.changes == {"acceleratorMultiplier": 1.5, "acceleratorThreshold": 120.0}

    def test_accelerator_and_decelerator_in_one_message(self, assistant):
        proposal = assistant.interpret(
            "P1", "Add a 1.5x accelerator above 120% and a 0.5x decelerator below 50%"
        )
        assert proposal.changes == {
            "acceleratorMultiplier": 1.5,
            "acceleratorThreshold": 120.0,
            "deceleratorMultiplier": 0.5,
            "deceleratorThreshold": 50.0,
        }

    def test_commission_rate_percent(self, assistant):
        proposal = assistant.interpret("P1", "Set the commission rate to 3%")
        assert proposal.changes == {"baseCommissionRate": 0.03}

    def test_plan_type(self, assistant):
        proposal = assistant.interpret("P1", "Change the plan type to Goal Attainment With Rank")
        assert proposal.changes == {"planType": "GoalAttainmentWithRank"}

    def test_territory_multiplier_merges_with_existing(self, assistant):
        proposal = assistant.interpret("P1", "territory multiplier for West to 1.2")
        assert proposal.changes == {"territoryMultipliers": {"East": 0.9, "West": 1.2}}

    def test_nothing_understood(self, assistant):
        proposal = assistant.interpret("P1", "make everyone happy")
        assert proposal.understood is False
        assert proposal.changes == {}


class TestApply:
    """Applied changes are audited with the assistant as source."""

    def test_apply_writes_assistant_audit_entries(self, assistant, store):
        proposal, entries = assistant.apply("P1", "Add a 1.5x accelerator above 120%", user_id="admin")

        assert proposal.understood
        assert {e.field_changed for e in entries} == {"acceleratorMultiplier", "acceleratorThreshold"}
        assert all(e.change_source == "assistant" for e in entries)
        assert store.configuration("P1").accelerator_threshold == Decimal("120.0")

    def test_unrecognised_message_rejected(self, assistant):
        with pytest.raises(ValidationError, match="Could not find"):
            assistant.apply("P1", "make everyone happy", user_id="admin")

    def test_invalid_result_rejected(self, assistant):
        """A threshold without a multiplier fails plan validation."""
        with pytest.raises(ValidationError):
            assistant.apply("P1", "accelerator above 130%", user_id="admin")
