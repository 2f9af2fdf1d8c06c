"""
Plan Configuration Assistant

Turns short plain-English requests into plan configuration changes, e.g.

    "cap payouts at 150%"
    "add a 1.5x accelerator above 120%"
    "set the commission rate to 3%"
    "territory multiplier for West to 1.2"

Matching is rule-based and deterministic. Changes go through the plan
version store so each changed field lands in the audit log with
change_source "assistant".
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict

from .errors import ValidationError
from .models import PLAN_TYPES, AuditLogEntry
from .versioning import PlanVersionStore

logger = logging.getLogger(__name__)

NUMBER = r"(\d+(?:,\d{3})*(?:\.\d+)?)"


def _num(text: str) -> float:
    return float(Decimal(text.replace(",", "")))


@dataclass
class AssistantProposal:
    """Changes understood from one message, with a line of explanation each."""

    message: str
    changes: Dict[str, Any] = field(default_factory=dict)
    explanations: list[str] = field(default_factory=list)

    @property
    def understood(self) -> bool:
        return bool(self.changes)


class PlanConfigAssistant:
    """Maps recognised intents onto plan configuration fields."""

    def __init__(self, store: PlanVersionStore):
        self.store = store

    def interpret(self, plan_id: str, message: str) -> AssistantProposal:
        """Work out the changes a message asks for without applying them."""
        current = self.store.configuration(plan_id)
        text = message.lower()
        proposal = AssistantProposal(message=message)

        self._cap(text, proposal)
        self._modifier(text, proposal, "accelerat", "acceleratorThreshold", "acceleratorMultiplier", r"above|over|beyond|past")
        self._modifier(text, proposal, "decelerat", "deceleratorThreshold", "deceleratorMultiplier", r"below|under")
        self._commission_rate(text, proposal)
        self._plan_type(text, proposal)
        self._multiplier_map(message, proposal, "territory", "territoryMultipliers", current.territory_multipliers)
        self._multiplier_map(message, proposal, "role", "roleMultipliers", current.role_multipliers)
        return proposal

    def apply(self, plan_id: str, message: str, user_id: str) -> tuple[AssistantProposal, list[AuditLogEntry]]:
        proposal = self.interpret(plan_id, message)
        if not proposal.understood:
            raise ValidationError(f"Could not find a configuration change in: {message!r}")
        entries = self.store.update_configuration(plan_id, proposal.changes, user_id, change_source="assistant")
        logger.info(f"Assistant applied {len(proposal.changes)} changes to plan {plan_id} for {user_id}")
        return proposal, entries

    # -------------------------------------------------------------------------
    # Intents
    # -------------------------------------------------------------------------

    @staticmethod
    def _cap(text: str, proposal: AssistantProposal) -> None:
        if re.search(r"\b(no|remove( the)?|without( a)?)\s+(payout\s+)?cap\b", text):
            proposal.changes["capPercent"] = None
            proposal.changes["payoutCap"] = None
            proposal.explanations.append("Removed the payout cap")
            return

        match = re.search(r"\bcap\w*\b.*?\$\s*" + NUMBER, text)
        if match:
            amount = _num(match.group(1))
            proposal.changes["payoutCap"] = amount
            proposal.explanations.append(f"Payouts capped at ${amount:,.2f}")
            return

        match = re.search(r"\bcap\w*\b.*?" + NUMBER + r"\s*%", text)
        if match:
            percent = _num(match.group(1))
            proposal.changes["capPercent"] = percent
            proposal.explanations.append(f"Payouts capped at {percent:g}% of target")

    @staticmethod
    def _modifier(text, proposal, stem, threshold_key, multiplier_key, direction) -> None:
        for clause in re.split(r"[;,]|\band\b", text):
            if stem not in clause:
                continue
            multiplier = re.search(NUMBER + r"\s*x\b", clause) or re.search(
                r"multiplier\s+(?:of\s+|to\s+)?" + NUMBER, clause
            )
            threshold = re.search(r"(?:" + direction + r")\s+" + NUMBER + r"\s*%", clause)
            if multiplier is not None:
                proposal.changes[multiplier_key] = _num(multiplier.group(1))
            if threshold is not None:
                proposal.changes[threshold_key] = _num(threshold.group(1))
        if multiplier_key not in proposal.changes and threshold_key not in proposal.changes:
            return
        label = "Accelerator" if stem == "accelerat" else "Decelerator"
        proposal.explanations.append(
            f"{label}: multiplier {proposal.changes.get(multiplier_key, 'unchanged')}, "
            f"threshold {proposal.changes.get(threshold_key, 'unchanged')}%"
        )

    @staticmethod
    def _commission_rate(text: str, proposal: AssistantProposal) -> None:
        match = re.search(r"commission\s+rate\s+(?:to\s+|of\s+|at\s+)?" + NUMBER + r"\s*(%?)", text)
        if not match:
            return
        value = _num(match.group(1))
        rate = value / 100 if match.group(2) == "%" or value > 1 else value
        proposal.changes["baseCommissionRate"] = rate
        proposal.explanations.append(f"Base commission rate set to {rate * 100:g}%")

    @staticmethod
    def _plan_type(text: str, proposal: AssistantProposal) -> None:
        if "plan type" not in text and "plan to" not in text:
            return
        squashed = text.replace(" ", "")
        # Longest first so GoalAttainmentWithRank wins over GoalAttainment
        for plan_type in sorted(PLAN_TYPES, key=len, reverse=True):
            if plan_type.lower() in squashed:
                proposal.changes["planType"] = plan_type
                proposal.explanations.append(f"Plan type set to {plan_type}")
                return

    @staticmethod
    def _multiplier_map(message, proposal, kind, key, current) -> None:
        pattern = kind + r"\s+multiplier\s+for\s+([\w\- ]+?)\s+(?:to\s+|of\s+|at\s+|=\s*)?" + NUMBER + r"\b"
        matches = re.findall(pattern, message, flags=re.IGNORECASE)
        if not matches:
            return
        updated = {k: float(v) for k, v in current.items()}
        for name, value in matches:
            updated[name.strip()] = _num(value)
            proposal.explanations.append(f"{kind.capitalize()} multiplier for {name.strip()} set to {_num(value):g}")
        proposal.changes[key] = updated
