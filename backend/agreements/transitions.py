"""
AGREEMENT STATUS TRANSITIONS

The fixed table of status changes the lifecycle engine may perform on an
agreement version. Each transition is applied as a single filtered update:
the filter pins the expected current status, so a version that has moved on
matches nothing and the update is a no-op.

Usage:
    transition = AGREEMENT_TRANSITIONS.get("accept")
    filter_ = transition.build_filter(agreementNumber="SFI123456789")
    update = transition.build_update({"signatureDate": now})
"""

from typing import Dict, Any, Optional, Tuple
import logging

logger = logging.getLogger(__name__)


class AgreementStatus:
    OFFERED = "offered"
    ACCEPTED = "accepted"
    WITHDRAWN = "withdrawn"
    CANCELLED = "cancelled"
    TERMINATED = "terminated"

    ALL = (OFFERED, ACCEPTED, WITHDRAWN, CANCELLED, TERMINATED)


# =============================================================================
# TRANSITION DEFINITION
# =============================================================================

class Transition:
    """One named status change and the fields it always writes."""

    def __init__(
        self,
        name: str,
        from_state: str,
        to_state: str,
        fixed_fields: Optional[Dict[str, Any]] = None,
        description: str = ""
    ):
        self.name = name
        self.from_state = from_state
        self.to_state = to_state
        self.fixed_fields = fixed_fields or {}
        self.description = description

    def build_filter(self, **criteria) -> Dict[str, Any]:
        """Filter matching a version currently in from_state; None criteria are dropped"""
        query = {key: value for key, value in criteria.items() if value is not None}
        query["status"] = self.from_state
        return query

    def build_update(self, extra_fields: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        fields = {**self.fixed_fields, **(extra_fields or {})}
        fields["status"] = self.to_state
        return {"$set": fields}

    def __repr__(self):
        return f"Transition({self.name}: {self.from_state} -> {self.to_state})"


# =============================================================================
# TRANSITION TABLE
# =============================================================================

class TransitionTable:
    """Registry of the transitions the engine is allowed to perform."""

    def __init__(self):
        self._by_name: Dict[str, Transition] = {}
        self._by_states: Dict[Tuple[str, str], Transition] = {}

    def register(
        self,
        name: str,
        from_state: str,
        to_state: str,
        fixed_fields: Optional[Dict[str, Any]] = None,
        description: str = ""
    ) -> "TransitionTable":
        key = (from_state, to_state)

        if key in self._by_states:
            logger.warning(
                f"[TRANSITIONS] Overwriting transition '{from_state}' -> '{to_state}'"
            )

        transition = Transition(name, from_state, to_state, fixed_fields, description)
        self._by_name[name] = transition
        self._by_states[key] = transition

        logger.debug(f"[TRANSITIONS] Registered {transition}")
        return self

    def get(self, name: str) -> Transition:
        return self._by_name[name]


def build_agreement_transitions() -> TransitionTable:
    table = TransitionTable()
    table.register(
        "accept",
        AgreementStatus.OFFERED,
        AgreementStatus.ACCEPTED,
        description="Applicant accepts the offer"
    )
    table.register(
        "unaccept",
        AgreementStatus.ACCEPTED,
        AgreementStatus.OFFERED,
        fixed_fields={"signatureDate": None},
        description="Revert an acceptance"
    )
    table.register(
        "withdraw",
        AgreementStatus.OFFERED,
        AgreementStatus.WITHDRAWN,
        description="Offer withdrawn by the grant application service"
    )
    return table


AGREEMENT_TRANSITIONS = build_agreement_transitions()
