"""
State transitions for disputed trip charges.

Every transition is a compare-and-swap: the UPDATE only applies when the row
still has the status and version that were read, so two operators resolving the
same charge cannot both win. Callers get a ResolutionResult instead of an
exception so they can tell "nothing happened" from "done", and both from a
charge that was captured but needs review ("charged_but_stale").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from bookings.models import Booking
from disputes.models import ChargeDispute
from notifications import tasks as notification_tasks
from notifications.dispatch import safe_notify
from payments.ledger import log_transaction
from payments.models import Transaction
from payments.stripe_api import charge_off_session
from trip_charges.calculations import round2
from trip_charges.categories import resolve_category
from trip_charges.models import TripCharge

logger = logging.getLogger(__name__)

DISPUTABLE_STATUSES = (
    TripCharge.ChargeStatus.PENDING,
    TripCharge.ChargeStatus.UNDER_REVIEW,
    TripCharge.ChargeStatus.FAILED,
)


class DisputeAction(models.TextChoices):
    CHARGE_ANYWAY = "charge_anyway", "Charge anyway"
    WAIVE = "waive", "Waive"
    PARTIAL_WAIVE = "partial_waive", "Partial waive"
    ESCALATE = "escalate", "Escalate"


@dataclass(frozen=True)
class ResolutionResult:
    ok: bool
    code: str = ""
    message: str = ""
    trip_charge: Optional[TripCharge] = None

    @classmethod
    def failure(cls, code: str, message: str, trip_charge=None) -> "ResolutionResult":
        return cls(ok=False, code=code, message=message, trip_charge=trip_charge)


def _swap(
    trip_charge: TripCharge,
    *,
    expected_status: str,
    expected_version: int,
    **changes,
) -> bool:
    """Apply ``changes`` only if status and version are unchanged since the read."""
    updated = TripCharge.objects.filter(
        pk=trip_charge.pk,
        charge_status=expected_status,
        version=expected_version,
    ).update(version=F("version") + 1, updated_at=timezone.now(), **changes)
    return updated == 1


def _stale(trip_charge: TripCharge) -> ResolutionResult:
    trip_charge.refresh_from_db()
    return ResolutionResult.failure(
        "stale_status",
        "This charge was updated by someone else; reload and try again.",
        trip_charge,
    )


def record_dispute_lines(trip_charge: TripCharge, reasons: Iterable[dict], raised_by=None) -> list:
    """Persist one ChargeDispute per guest reason, typed by its resolved category."""
    lines = []
    for item in reasons:
        reason = (item.get("reason") or "").strip()
        if not reason:
            continue
        category = resolve_category(item.get("category") or item.get("type"))
        lines.append(
            ChargeDispute(
                trip_charge=trip_charge,
                category=category.value,
                reason=reason,
                raised_by=raised_by,
            )
        )
    return ChargeDispute.objects.bulk_create(lines)


def open_dispute(trip_charge: TripCharge, reasons: Iterable[dict], *, raised_by=None) -> ResolutionResult:
    """Move a collectable charge to DISPUTED and record the guest's reasons."""
    reasons = [item for item in reasons if (item.get("reason") or "").strip()]
    if not reasons:
        return ResolutionResult.failure("no_reasons", "At least one dispute reason is required.")

    trip_charge.refresh_from_db()
    if trip_charge.charge_status not in DISPUTABLE_STATUSES:
        return ResolutionResult.failure(
            "not_disputable",
            f"Charges that are {trip_charge.get_charge_status_display().lower()} cannot be disputed.",
            trip_charge,
        )

    with transaction.atomic():
        swapped = _swap(
            trip_charge,
            expected_status=trip_charge.charge_status,
            expected_version=trip_charge.version,
            charge_status=TripCharge.ChargeStatus.DISPUTED,
            disputed_at=timezone.now(),
            hold_until=None,
        )
        if not swapped:
            return _stale(trip_charge)
        record_dispute_lines(trip_charge, reasons, raised_by=raised_by)

    trip_charge.refresh_from_db()
    logger.info(
        "disputes: trip charge disputed",
        extra={"trip_charge_id": trip_charge.pk, "lines": len(reasons)},
    )
    return ResolutionResult(ok=True, trip_charge=trip_charge)


def _parse_percentage(value) -> Optional[int]:
    try:
        pct = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and value != pct:
        return None
    return pct if 1 <= pct <= 99 else None


def resolve_charge_dispute(
    trip_charge: TripCharge,
    *,
    action: str,
    actor=None,
    notes: str = "",
    waive_percentage=None,
) -> ResolutionResult:
    """Apply one operator resolution to a DISPUTED trip charge."""
    if action not in DisputeAction.values:
        return ResolutionResult.failure("invalid_action", f"Unknown resolution '{action}'.")

    trip_charge.refresh_from_db()
    if trip_charge.charge_status != TripCharge.ChargeStatus.DISPUTED:
        return ResolutionResult.failure(
            "not_disputed",
            f"Charge is {trip_charge.get_charge_status_display().lower()}, not disputed.",
            trip_charge,
        )

    if action == DisputeAction.CHARGE_ANYWAY:
        result = _charge_anyway(trip_charge, actor=actor, notes=notes)
    elif action == DisputeAction.WAIVE:
        result = _waive(trip_charge, actor=actor, notes=notes)
    elif action == DisputeAction.PARTIAL_WAIVE:
        result = _partial_waive(trip_charge, actor=actor, notes=notes, waive_percentage=waive_percentage)
    else:
        result = _escalate(trip_charge, actor=actor, notes=notes)

    if result.ok and action != DisputeAction.ESCALATE:
        safe_notify(notification_tasks.send_trip_charge_resolution_email, trip_charge.pk)
    return result


def _resolved_fields(action: str, actor, notes: str) -> dict:
    return {
        "dispute_resolution": action,
        "dispute_resolved_at": timezone.now(),
        "dispute_notes": notes or "",
        "resolved_by": actor,
    }


def _charge_anyway(trip_charge: TripCharge, *, actor, notes: str) -> ResolutionResult:
    amount = trip_charge.total_charges
    if amount <= Decimal("0"):
        return ResolutionResult.failure("nothing_to_charge", "There is no amount left to charge.", trip_charge)

    booking = trip_charge.booking
    read_version = trip_charge.version
    with transaction.atomic():
        # The row lock is held across the processor call; a concurrent waive waits for the outcome.
        locked = TripCharge.objects.select_for_update().get(pk=trip_charge.pk)
        if locked.charge_status != TripCharge.ChargeStatus.DISPUTED or locked.version != read_version:
            return _stale(trip_charge)

        attempt = locked.charge_attempts + 1
        charge = charge_off_session(
            user=booking.guest,
            amount=amount,
            description=f"Trip charges for booking #{booking.pk}",
            idempotency_key=f"trip_charge:{trip_charge.pk}:dispute_charge:{attempt}",
            metadata={"booking_id": booking.pk, "trip_charge_id": trip_charge.pk},
        )
        if not charge.succeeded:
            # Bumped so the next retry goes out under a new idempotency key.
            TripCharge.objects.filter(pk=trip_charge.pk, charge_attempts=locked.charge_attempts).update(
                charge_attempts=F("charge_attempts") + 1,
                last_charge_error=charge.error or "",
                updated_at=timezone.now(),
            )
            logger.info(
                "disputes: charge_anyway failed, charge left disputed",
                extra={"trip_charge_id": trip_charge.pk, "charge_status": charge.status, "attempt": attempt},
            )
            trip_charge.refresh_from_db()
            return ResolutionResult.failure(
                "payment_failed",
                charge.error or "Payment could not be completed.",
                trip_charge,
            )

        now = timezone.now()
        swapped = _swap(
            trip_charge,
            expected_status=TripCharge.ChargeStatus.DISPUTED,
            expected_version=read_version,
            charge_status=TripCharge.ChargeStatus.CHARGED,
            stripe_charge_id=charge.charge_id or "",
            charged_at=now,
            charge_attempts=F("charge_attempts") + 1,
            last_charge_error="",
            **_resolved_fields(DisputeAction.CHARGE_ANYWAY, actor, notes),
        )
        if not swapped:
            return _keep_orphaned_charge(trip_charge, amount=amount, charge_id=charge.charge_id)
        Booking.objects.filter(pk=booking.pk).update(
            payment_status=Booking.PaymentStatus.CHARGES_PAID,
            updated_at=now,
        )
        log_transaction(
            user=booking.guest,
            booking=booking,
            kind=Transaction.Kind.TRIP_CHARGE,
            amount=amount,
            stripe_id=charge.charge_id,
        )

    trip_charge.refresh_from_db()
    return ResolutionResult(ok=True, trip_charge=trip_charge)


def _keep_orphaned_charge(trip_charge: TripCharge, *, amount: Decimal, charge_id: Optional[str]) -> ResolutionResult:
    """
    The guest was charged but the row moved on before the outcome was stored.

    The money still gets its ledger row and charge id, and the charge is
    flagged for an operator instead of being reported as untouched.
    """
    logger.error(
        "disputes: charge captured after the charge row changed; flagged for review",
        extra={"trip_charge_id": trip_charge.pk, "charge_id": charge_id},
    )
    TripCharge.objects.filter(pk=trip_charge.pk).update(
        stripe_charge_id=charge_id or "",
        charge_attempts=F("charge_attempts") + 1,
        requires_approval=True,
        version=F("version") + 1,
        updated_at=timezone.now(),
    )
    booking = trip_charge.booking
    log_transaction(
        user=booking.guest,
        booking=booking,
        kind=Transaction.Kind.TRIP_CHARGE,
        amount=amount,
        stripe_id=charge_id,
    )
    trip_charge.refresh_from_db()
    return ResolutionResult.failure(
        "charged_but_stale",
        "The guest was charged, but this charge was changed by someone else; it needs review.",
        trip_charge,
    )


def _waive(trip_charge: TripCharge, *, actor, notes: str) -> ResolutionResult:
    with transaction.atomic():
        swapped = _swap(
            trip_charge,
            expected_status=TripCharge.ChargeStatus.DISPUTED,
            expected_version=trip_charge.version,
            charge_status=TripCharge.ChargeStatus.WAIVED,
            total_charges=Decimal("0.00"),
            waive_percentage=100,
            **_resolved_fields(DisputeAction.WAIVE, actor, notes),
        )
        if not swapped:
            return _stale(trip_charge)
        Booking.objects.filter(pk=trip_charge.booking_id).update(
            payment_status=Booking.PaymentStatus.CHARGES_WAIVED,
            updated_at=timezone.now(),
        )
    trip_charge.refresh_from_db()
    return ResolutionResult(ok=True, trip_charge=trip_charge)


def _partial_waive(trip_charge: TripCharge, *, actor, notes: str, waive_percentage) -> ResolutionResult:
    pct = _parse_percentage(waive_percentage)
    if pct is None:
        return ResolutionResult.failure(
            "invalid_percentage",
            "waive_percentage must be a whole number between 1 and 99.",
            trip_charge,
        )
    remaining = round2(trip_charge.total_charges * (Decimal("100") - Decimal(pct)) / Decimal("100"))
    swapped = _swap(
        trip_charge,
        expected_status=TripCharge.ChargeStatus.DISPUTED,
        expected_version=trip_charge.version,
        charge_status=TripCharge.ChargeStatus.ADJUSTED,
        total_charges=remaining,
        waive_percentage=pct,
        **_resolved_fields(DisputeAction.PARTIAL_WAIVE, actor, notes),
    )
    if not swapped:
        return _stale(trip_charge)
    trip_charge.refresh_from_db()
    return ResolutionResult(ok=True, trip_charge=trip_charge)


def _escalate(trip_charge: TripCharge, *, actor, notes: str) -> ResolutionResult:
    who = getattr(actor, "username", None) or "system"
    stamp = timezone.now().isoformat(timespec="seconds")
    entry = f"[{stamp}] escalated by {who}"
    if notes:
        entry = f"{entry}: {notes}"
    existing = (trip_charge.dispute_notes or "").strip()
    swapped = _swap(
        trip_charge,
        expected_status=TripCharge.ChargeStatus.DISPUTED,
        expected_version=trip_charge.version,
        requires_approval=True,
        dispute_notes=f"{existing}\n{entry}" if existing else entry,
    )
    if not swapped:
        return _stale(trip_charge)
    trip_charge.refresh_from_db()
    return ResolutionResult(ok=True, trip_charge=trip_charge)
