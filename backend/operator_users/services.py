"""
Warnings, suspensions, bans and appeals for guest and host accounts.

State transitions return ``SuspensionResult``/``AppealResult`` instead of raising,
so callers can tell a rejected request apart from one that partly happened.
Profile updates for every affected role commit in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking
from notifications import tasks as notification_tasks
from notifications.dispatch import safe_notify
from operator_users.escalation import ROLE_ORDER, UnknownViolationType, resolve_escalation
from operator_users.models import Appeal, ModerationAction, ModerationRole
from users.models import GuestProfile, HostProfile, SuspensionLevel

logger = logging.getLogger(__name__)

PROFILE_MODELS = {
    ModerationRole.GUEST.value: GuestProfile,
    ModerationRole.HOST.value: HostProfile,
}

CANCELLABLE_BOOKING_STATUSES = (Booking.Status.REQUESTED, Booking.Status.CONFIRMED)


@dataclass(frozen=True)
class SuspensionResult:
    ok: bool
    code: str = ""
    message: str = ""
    action: Optional[ModerationAction] = None
    roles: Tuple[str, ...] = ()
    cancelled_bookings: int = 0

    @classmethod
    def failure(cls, code: str, message: str) -> "SuspensionResult":
        return cls(ok=False, code=code, message=message)


@dataclass(frozen=True)
class AppealResult:
    ok: bool
    code: str = ""
    message: str = ""
    appeal: Optional[Appeal] = None
    lifted_roles: List[str] = field(default_factory=list)

    @classmethod
    def failure(cls, code: str, message: str) -> "AppealResult":
        return cls(ok=False, code=code, message=message)


def _roles_for(role: str) -> Tuple[str, ...]:
    return ROLE_ORDER if role == ModerationRole.BOTH else (role,)


def _locked_profiles(user, roles: Iterable[str]) -> list:
    profiles = []
    for role in roles:
        model = PROFILE_MODELS[role]
        model.objects.get_or_create(user=user)
        profiles.append(model.objects.select_for_update().get(user=user))
    return profiles


def _clear_suspension(profile) -> None:
    profile.suspension_level = None
    profile.suspended_at = None
    profile.suspended_reason = ""
    profile.suspension_expires_at = None
    profile.auto_reactivate = True
    profile.save(update_fields=list(profile.SUSPENSION_FIELDS))


def _cancel_future_guest_bookings(user, reason: str, now: datetime) -> int:
    return Booking.objects.filter(
        guest=user,
        status__in=CANCELLABLE_BOOKING_STATUSES,
        start_at__gt=now,
    ).update(
        status=Booking.Status.CANCELED,
        canceled_reason=f"Account suspended: {reason}"[:255],
        updated_at=now,
    )


def _record_action(user, *, action: str, role: str, roles, reason: str, actor=None, **fields) -> ModerationAction:
    return ModerationAction.objects.create(
        user=user,
        action=action,
        role=role,
        applied_roles=list(roles),
        reason=reason,
        taken_by=actor,
        **fields,
    )


def _validate_common(role: str, reason: str) -> Optional[SuspensionResult]:
    if role not in ModerationRole.values:
        return SuspensionResult.failure("invalid_role", f"Unknown role '{role}'.")
    if not (reason or "").strip():
        return SuspensionResult.failure("reason_required", "A reason is required.")
    return None


def _notify(result: SuspensionResult) -> SuspensionResult:
    if result.ok and result.action is not None:
        safe_notify(notification_tasks.send_moderation_notice_email, result.action.pk)
    return result


def warn_user(
    user,
    *,
    role: str,
    reason: str,
    violation_type: str = "",
    actor=None,
    related_booking=None,
    related_claim=None,
    now: Optional[datetime] = None,
) -> SuspensionResult:
    rejected = _validate_common(role, reason)
    if rejected:
        return rejected
    now = now or timezone.now()
    roles = _roles_for(role)
    with transaction.atomic():
        for profile in _locked_profiles(user, roles):
            type(profile).objects.filter(pk=profile.pk).update(
                warning_count=F("warning_count") + 1,
                last_warning_at=now,
            )
        action = _record_action(
            user,
            action=ModerationAction.Action.WARN,
            role=role,
            roles=roles,
            reason=reason.strip(),
            actor=actor,
            violation_type=violation_type or "",
            related_booking=related_booking,
            related_claim=related_claim,
        )
    return _notify(SuspensionResult(ok=True, action=action, roles=roles))


def _restrict(
    user,
    *,
    action_type: str,
    level: str,
    role: str,
    reason: str,
    violation_type: str,
    escalation_override: Optional[str],
    expires_at: Optional[datetime],
    auto_reactivate: bool,
    actor,
    related_booking,
    related_claim,
    now: Optional[datetime],
) -> SuspensionResult:
    rejected = _validate_common(role, reason)
    if rejected:
        return rejected
    try:
        decision = resolve_escalation(violation_type, role, override=escalation_override)
    except UnknownViolationType as exc:
        return SuspensionResult.failure(UnknownViolationType.code, str(exc))
    except ValueError as exc:
        return SuspensionResult.failure("invalid_escalation", str(exc))

    now = now or timezone.now()
    if expires_at is not None and expires_at <= now:
        return SuspensionResult.failure("invalid_expiry", "Suspension expiry must be in the future.")

    reason = reason.strip()
    cancelled = 0
    with transaction.atomic():
        profiles = _locked_profiles(user, decision.roles)
        if level != SuspensionLevel.BANNED and any(p.is_banned for p in profiles):
            transaction.set_rollback(True)
            return SuspensionResult.failure(
                "already_banned", "Banned accounts cannot be suspended; lift the ban first."
            )
        for profile in profiles:
            profile.suspension_level = level
            profile.suspended_at = now
            profile.suspended_reason = reason
            profile.suspension_expires_at = expires_at
            profile.auto_reactivate = auto_reactivate
            profile.save(update_fields=list(profile.SUSPENSION_FIELDS))

        if ModerationRole.GUEST in decision.roles and level in (SuspensionLevel.HARD, SuspensionLevel.BANNED):
            cancelled = _cancel_future_guest_bookings(user, reason, now)

        action = _record_action(
            user,
            action=action_type,
            role=role,
            roles=decision.roles,
            reason=reason,
            actor=actor,
            level=level,
            violation_type=violation_type or "",
            escalation=decision.escalation,
            expires_at=expires_at,
            related_booking=related_booking,
            related_claim=related_claim,
            cancelled_bookings=cancelled,
        )

    logger.info(
        "moderation: %s applied",
        action_type,
        extra={
            "user_id": user.pk,
            "roles": list(decision.roles),
            "level": level,
            "escalated": decision.escalated,
            "cancelled_bookings": cancelled,
        },
    )
    return _notify(
        SuspensionResult(ok=True, action=action, roles=decision.roles, cancelled_bookings=cancelled)
    )


def suspend_user(
    user,
    *,
    role: str,
    level: str,
    reason: str,
    violation_type: str,
    escalation_override: Optional[str] = None,
    expires_at: Optional[datetime] = None,
    auto_reactivate: bool = True,
    actor=None,
    related_booking=None,
    related_claim=None,
    now: Optional[datetime] = None,
) -> SuspensionResult:
    if level not in (SuspensionLevel.SOFT, SuspensionLevel.HARD):
        return SuspensionResult.failure("invalid_level", "Suspension level must be SOFT or HARD.")
    return _restrict(
        user,
        action_type=ModerationAction.Action.SUSPEND,
        level=level,
        role=role,
        reason=reason,
        violation_type=violation_type,
        escalation_override=escalation_override,
        expires_at=expires_at,
        auto_reactivate=auto_reactivate,
        actor=actor,
        related_booking=related_booking,
        related_claim=related_claim,
        now=now,
    )


def ban_user(
    user,
    *,
    role: str,
    reason: str,
    violation_type: str,
    escalation_override: Optional[str] = None,
    actor=None,
    related_booking=None,
    related_claim=None,
    now: Optional[datetime] = None,
) -> SuspensionResult:
    """Permanent: bans never expire and never auto-reactivate."""
    return _restrict(
        user,
        action_type=ModerationAction.Action.BAN,
        level=SuspensionLevel.BANNED,
        role=role,
        reason=reason,
        violation_type=violation_type,
        escalation_override=escalation_override,
        expires_at=None,
        auto_reactivate=False,
        actor=actor,
        related_booking=related_booking,
        related_claim=related_claim,
        now=now,
    )


def unsuspend_user(user, *, role: str, reason: str, actor=None) -> SuspensionResult:
    rejected = _validate_common(role, reason)
    if rejected:
        return rejected
    roles = _roles_for(role)
    with transaction.atomic():
        suspended = [
            (name, profile)
            for name, profile in zip(roles, _locked_profiles(user, roles))
            if profile.is_suspended
        ]
        if not suspended:
            transaction.set_rollback(True)
            return SuspensionResult.failure("not_suspended", "No suspension to lift for that role.")
        for _, profile in suspended:
            _clear_suspension(profile)
        lifted = tuple(name for name, _ in suspended)
        action = _record_action(
            user,
            action=ModerationAction.Action.UNSUSPEND,
            role=role,
            roles=lifted,
            reason=reason.strip(),
            actor=actor,
        )
    return _notify(SuspensionResult(ok=True, action=action, roles=lifted))


def apply_moderation(user, *, action: str, **kwargs) -> SuspensionResult:
    """Dispatch ``action`` (WARN, SUSPEND, BAN, UNSUSPEND) to its handler."""
    handlers = {
        ModerationAction.Action.WARN: warn_user,
        ModerationAction.Action.SUSPEND: suspend_user,
        ModerationAction.Action.BAN: ban_user,
        ModerationAction.Action.UNSUSPEND: unsuspend_user,
    }
    handler = handlers.get(str(action or "").upper())
    if handler is None:
        return SuspensionResult.failure("invalid_action", f"Unknown moderation action '{action}'.")
    return handler(user, **kwargs)


def lift_expired_suspensions(now: Optional[datetime] = None) -> int:
    """Clear SOFT/HARD suspensions past their expiry that are set to auto-reactivate."""
    now = now or timezone.now()
    lifted = 0
    for model in PROFILE_MODELS.values():
        lifted += model.objects.filter(
            suspension_level__in=(SuspensionLevel.SOFT, SuspensionLevel.HARD),
            auto_reactivate=True,
            suspension_expires_at__isnull=False,
            suspension_expires_at__lte=now,
        ).update(
            suspension_level=None,
            suspended_at=None,
            suspended_reason="",
            suspension_expires_at=None,
        )
    return lifted


def max_appeals_per_action() -> int:
    return int(getattr(settings, "MODERATION_MAX_APPEALS_PER_ACTION", 2))


def submit_appeal(user, action: ModerationAction, statement: str) -> AppealResult:
    if action.user_id != user.pk:
        return AppealResult.failure("not_action_owner", "You can only appeal actions on your own account.")
    if action.action == ModerationAction.Action.UNSUSPEND or action.lifted_at is not None:
        return AppealResult.failure("not_appealable", "This action cannot be appealed.")
    if not (statement or "").strip():
        return AppealResult.failure("statement_required", "Tell us why the action should be reversed.")

    try:
        with transaction.atomic():
            ModerationAction.objects.select_for_update().get(pk=action.pk)
            existing = Appeal.objects.filter(action=action)
            if existing.filter(status=Appeal.Status.PENDING).exists():
                return AppealResult.failure("appeal_pending", "An appeal for this action is already pending.")
            limit = max_appeals_per_action()
            if existing.count() >= limit:
                return AppealResult.failure(
                    "appeal_limit_reached", f"No more than {limit} appeals are allowed per action."
                )
            appeal = Appeal.objects.create(user=user, action=action, statement=statement.strip())
    except IntegrityError:
        return AppealResult.failure("appeal_pending", "An appeal for this action is already pending.")
    return AppealResult(ok=True, appeal=appeal)


def _lift_action(action: ModerationAction, *, actor, reason: str, now: datetime) -> List[str]:
    lifted: List[str] = []
    profiles = _locked_profiles(action.user, action.applied_roles)
    for role, profile in zip(action.applied_roles, profiles):
        if action.action == ModerationAction.Action.WARN:
            type(profile).objects.filter(pk=profile.pk, warning_count__gt=0).update(
                warning_count=F("warning_count") - 1
            )
            lifted.append(role)
        elif profile.suspension_level == action.level:
            _clear_suspension(profile)
            lifted.append(role)
    ModerationAction.objects.filter(pk=action.pk).update(lifted_at=now)
    if action.is_restriction and lifted:
        _record_action(
            action.user,
            action=ModerationAction.Action.UNSUSPEND,
            role=ModerationRole.BOTH if len(lifted) > 1 else lifted[0],
            roles=lifted,
            reason=reason,
            actor=actor,
        )
    return lifted


def decide_appeal(appeal: Appeal, *, decision: str, actor=None, notes: str = "") -> AppealResult:
    """``approve`` lifts the appealed action for its roles; ``deny`` leaves it in place."""
    decision = (decision or "").strip().lower()
    if decision not in ("approve", "deny"):
        return AppealResult.failure("invalid_decision", "Decision must be 'approve' or 'deny'.")

    now = timezone.now()
    new_status = Appeal.Status.APPROVED if decision == "approve" else Appeal.Status.DENIED
    lifted: List[str] = []
    with transaction.atomic():
        updated = Appeal.objects.filter(pk=appeal.pk, status=Appeal.Status.PENDING).update(
            status=new_status,
            decision_notes=notes or "",
            decided_by=actor,
            decided_at=now,
        )
        if not updated:
            return AppealResult.failure("appeal_not_pending", "This appeal has already been decided.")
        if new_status == Appeal.Status.APPROVED:
            action = ModerationAction.objects.select_related("user").get(pk=appeal.action_id)
            lifted = _lift_action(action, actor=actor, reason=f"Appeal #{appeal.pk} approved", now=now)

    appeal.refresh_from_db()
    safe_notify(notification_tasks.send_appeal_decision_email, appeal.pk)
    return AppealResult(ok=True, appeal=appeal, lifted_roles=lifted)
