from __future__ import annotations

import logging
from typing import Optional, Tuple

from operator_core.models import OperatorAuditEvent

logger = logging.getLogger(__name__)


def request_origin(request) -> Tuple[str, str]:
    """Client IP (first X-Forwarded-For hop wins) and user agent for ``request``."""
    forwarded = (request.META.get("HTTP_X_FORWARDED_FOR") or "").split(",")[0].strip()
    ip = forwarded or request.META.get("REMOTE_ADDR", "")
    return ip, request.META.get("HTTP_USER_AGENT", "")


def audit(
    *,
    actor,
    action: str,
    entity_type: str,
    entity_id,
    reason: str,
    before: Optional[dict] = None,
    after: Optional[dict] = None,
    meta: Optional[dict] = None,
    ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> OperatorAuditEvent:
    """
    Persist an operator audit event. Raises ValueError if reason is missing.
    """

    if not (reason or "").strip():
        raise ValueError("reason is required for audit events")

    event = OperatorAuditEvent.objects.create(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason.strip(),
        before_json=before,
        after_json=after,
        meta_json=meta,
        ip=ip or "",
        user_agent=user_agent or "",
    )
    logger.info(
        "operator audit: %s",
        action,
        extra={"entity_type": entity_type, "entity_id": str(entity_id), "actor_id": getattr(actor, "pk", None)},
    )
    return event


def audit_request(request, **kwargs) -> OperatorAuditEvent:
    """``audit`` with the actor, IP and user agent taken from ``request``."""
    ip, user_agent = request_origin(request)
    return audit(actor=request.user, ip=ip, user_agent=user_agent, **kwargs)
