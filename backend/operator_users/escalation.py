"""
Which account roles a violation restricts.

Severe violations always restrict the whole account. Everything else honours
the role the operator picked. A violation type missing from the table is
``UNKNOWN`` and needs an explicit operator choice instead of a silent default.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from django.db import models

from operator_users.models import ModerationRole


class Escalation(models.TextChoices):
    ROLE = "role", "Role specific"
    BOTH = "both", "Account wide"
    UNKNOWN = "unknown", "Unknown"


ESCALATION_TABLE = {
    "fraud": Escalation.BOTH,
    "payment_fraud": Escalation.BOTH,
    "identity_fraud": Escalation.BOTH,
    "violence": Escalation.BOTH,
    "threats": Escalation.BOTH,
    "chargeback_abuse": Escalation.BOTH,
    "vehicle_theft": Escalation.BOTH,
    "late_return": Escalation.ROLE,
    "smoking": Escalation.ROLE,
    "cleanliness": Escalation.ROLE,
    "listing_misrepresentation": Escalation.ROLE,
}

ROLE_ORDER = (ModerationRole.GUEST.value, ModerationRole.HOST.value)


@dataclass(frozen=True)
class EscalationDecision:
    escalation: str
    roles: Tuple[str, ...]

    @property
    def escalated(self) -> bool:
        return len(self.roles) > 1


class UnknownViolationType(ValueError):
    code = "unknown_violation_type"


def normalize_violation(violation_type: str) -> str:
    return (violation_type or "").strip().lower().replace(" ", "_").replace("-", "_")


def escalation_for(violation_type: str) -> Escalation:
    return ESCALATION_TABLE.get(normalize_violation(violation_type), Escalation.UNKNOWN)


def _roles_for(requested_role: str) -> Tuple[str, ...]:
    if requested_role == ModerationRole.BOTH:
        return ROLE_ORDER
    return (str(requested_role),)


def resolve_escalation(
    violation_type: str,
    requested_role: str,
    *,
    override: Optional[str] = None,
) -> EscalationDecision:
    """
    Decide the roles to restrict for ``violation_type``.

    ``override`` is the operator's explicit ``role``/``both`` choice; it is the
    only way through for unknown violation types and can widen a role-specific
    violation, but never narrows one the table marks account wide.
    """
    if requested_role not in ModerationRole.values:
        raise ValueError(f"Unknown role '{requested_role}'.")

    escalation = escalation_for(violation_type)
    if escalation == Escalation.BOTH:
        return EscalationDecision(escalation=Escalation.BOTH.value, roles=ROLE_ORDER)

    if override not in (None, ""):
        if override not in (Escalation.ROLE, Escalation.BOTH):
            raise ValueError(f"Unknown escalation override '{override}'.")
        if override == Escalation.BOTH:
            return EscalationDecision(escalation=Escalation.BOTH.value, roles=ROLE_ORDER)
        return EscalationDecision(escalation=Escalation.ROLE.value, roles=_roles_for(requested_role))

    if escalation == Escalation.UNKNOWN:
        raise UnknownViolationType(
            f"Violation type '{violation_type}' has no escalation rule; choose 'role' or 'both'."
        )
    return EscalationDecision(escalation=Escalation.ROLE.value, roles=_roles_for(requested_role))
