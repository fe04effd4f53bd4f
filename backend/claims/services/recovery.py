"""
Claim decisions and collecting approved amounts from the guest.

Recovery is two-phase: the guest charge and the claim/hold bookkeeping commit
together; the host payout is then attempted separately through a
PendingTransfer, and a failed payout never undoes the guest charge. The
charged amount is reserved on the claim before Stripe is called.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from claims.exceptions import ClaimConflict, ClaimValidationError
from claims.models import Claim
from notifications import tasks as notification_tasks
from notifications.dispatch import safe_notify
from payments.ledger import log_transaction
from payments.models import PendingTransfer, Transaction
from payments.stripe_api import charge_off_session, to_cents
from payments.transfers import attempt_pending_transfer, record_pending_transfer
from trip_charges.calculations import round2
from users.models import GuestProfile

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class RecoveryResult:
    ok: bool
    claim: Claim
    code: str = ""
    message: str = ""
    charge_id: Optional[str] = None
    pending_transfer: Optional[PendingTransfer] = None


def release_claim_hold(claim: Claim) -> int:
    """Lift any guest account hold that was placed because of ``claim``."""
    return GuestProfile.objects.filter(account_hold_claim=claim).update(
        account_hold=False,
        account_hold_reason="",
        account_hold_claim=None,
        account_hold_at=None,
    )


def approve_claim(claim: Claim, *, approved_amount, reviewer=None, notes: str = "") -> Claim:
    try:
        amount = round2(Decimal(str(approved_amount)))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ClaimValidationError("invalid_amount", "approved_amount must be a number.") from exc
    if amount <= ZERO:
        raise ClaimValidationError("invalid_amount", "approved_amount must be greater than zero.")

    now = timezone.now()
    updated = Claim.objects.filter(pk=claim.pk, status__in=Claim.OPEN_STATUSES).update(
        status=Claim.Status.APPROVED,
        approved_amount=amount,
        reviewed_by=reviewer,
        reviewed_at=now,
        review_notes=notes or "",
        updated_at=now,
    )
    if not updated:
        claim.refresh_from_db()
        raise ClaimConflict(
            "invalid_status", f"Claims that are {claim.get_status_display().lower()} cannot be approved."
        )
    claim.refresh_from_db()
    safe_notify(notification_tasks.send_claim_decision_email, claim.pk)
    return claim


def deny_claim(claim: Claim, *, reviewer=None, notes: str = "") -> Claim:
    now = timezone.now()
    with transaction.atomic():
        updated = Claim.objects.filter(pk=claim.pk, status__in=Claim.OPEN_STATUSES).update(
            status=Claim.Status.DENIED,
            reviewed_by=reviewer,
            reviewed_at=now,
            review_notes=notes or "",
            updated_at=now,
        )
        if not updated:
            claim.refresh_from_db()
            raise ClaimConflict(
                "invalid_status", f"Claims that are {claim.get_status_display().lower()} cannot be denied."
            )
        release_claim_hold(claim)
    claim.refresh_from_db()
    safe_notify(notification_tasks.send_claim_decision_email, claim.pk)
    return claim


def recovery_status_for(recovered: Decimal, approved: Optional[Decimal]) -> str:
    if approved is not None and recovered >= approved:
        return Claim.RecoveryStatus.FULL
    if recovered > ZERO:
        return Claim.RecoveryStatus.PARTIAL
    return Claim.RecoveryStatus.PENDING


def _reserve_recovery(claim: Claim, amount: Decimal) -> Optional[int]:
    """
    Hold ``amount`` against the claim before the guest is charged.

    The conditional UPDATE only succeeds while recovered plus reserved plus
    ``amount`` stays within the approved amount, so concurrent charges cannot
    together recover more than was approved. Returns the attempt number, or
    None when the amount does not fit.
    """
    with transaction.atomic():
        locked = Claim.objects.select_for_update().get(pk=claim.pk)
        reserved = Claim.objects.filter(
            pk=claim.pk,
            status=Claim.Status.APPROVED,
            approved_amount__gte=F("recovered_from_guest") + F("recovery_reserved") + amount,
        ).update(
            recovery_reserved=F("recovery_reserved") + amount,
            recovery_attempts=F("recovery_attempts") + 1,
            updated_at=timezone.now(),
        )
    if not reserved:
        return None
    return locked.recovery_attempts + 1


def charge_guest_for_claim(claim: Claim, amount) -> RecoveryResult:
    """Charge the guest once for part or all of the outstanding approved amount."""
    claim.refresh_from_db()
    if claim.status != Claim.Status.APPROVED:
        return RecoveryResult(
            ok=False,
            claim=claim,
            code="invalid_status",
            message="Only approved claims can be charged.",
        )
    try:
        amount = round2(Decimal(str(amount)))
    except (InvalidOperation, TypeError, ValueError):
        amount = ZERO
    if amount <= ZERO:
        return RecoveryResult(
            ok=False, claim=claim, code="invalid_amount", message="Amount must be greater than zero."
        )
    attempt = _reserve_recovery(claim, amount)
    if attempt is None:
        claim.refresh_from_db()
        return RecoveryResult(
            ok=False,
            claim=claim,
            code="exceeds_outstanding",
            message=f"Amount exceeds the outstanding balance of ${claim.chargeable_amount}.",
        )

    booking = claim.booking
    guest = booking.guest
    charge = charge_off_session(
        user=guest,
        amount=amount,
        description=f"Claim #{claim.pk} recovery for booking #{booking.pk}",
        idempotency_key=f"claim:{claim.pk}:recovery:{attempt}:{to_cents(amount)}",
        metadata={"claim_id": claim.pk, "booking_id": booking.pk},
    )
    if not charge.succeeded:
        Claim.objects.filter(pk=claim.pk).update(
            recovery_reserved=F("recovery_reserved") - amount,
            updated_at=timezone.now(),
        )
        logger.info(
            "claims: recovery charge failed",
            extra={"claim_id": claim.pk, "charge_status": charge.status, "attempt": attempt},
        )
        claim.refresh_from_db()
        return RecoveryResult(
            ok=False,
            claim=claim,
            code="payment_failed",
            message=charge.error or "Payment could not be completed.",
        )

    now = timezone.now()
    with transaction.atomic():
        Claim.objects.filter(pk=claim.pk).update(
            recovered_from_guest=F("recovered_from_guest") + amount,
            recovery_reserved=F("recovery_reserved") - amount,
            updated_at=now,
        )
        claim = Claim.objects.select_for_update().get(pk=claim.pk)
        claim.recovery_status = recovery_status_for(claim.recovered_from_guest, claim.approved_amount)
        update_fields = ["recovery_status", "updated_at"]
        if claim.recovery_status == Claim.RecoveryStatus.FULL:
            claim.status = Claim.Status.PAID
            update_fields.append("status")
            release_claim_hold(claim)
        claim.save(update_fields=update_fields)
        log_transaction(
            user=guest,
            booking=booking,
            claim=claim,
            kind=Transaction.Kind.CLAIM_RECOVERY,
            amount=amount,
            stripe_id=charge.charge_id,
        )

    pending = _pay_out_host(claim, amount, charge.charge_id)
    logger.info(
        "claims: recovered from guest",
        extra={
            "claim_id": claim.pk,
            "amount": str(amount),
            "recovery_status": claim.recovery_status,
            "transfer_status": pending.status if pending else None,
        },
    )
    return RecoveryResult(ok=True, claim=claim, charge_id=charge.charge_id, pending_transfer=pending)


def _pay_out_host(claim: Claim, amount: Decimal, charge_id: Optional[str]) -> Optional[PendingTransfer]:
    try:
        pending = record_pending_transfer(
            host=claim.host,
            booking=claim.booking,
            claim=claim,
            amount=amount,
            source_charge_id=charge_id or "",
            description=f"Claim #{claim.pk} recovery payout",
        )
    except Exception:
        logger.exception("claims: could not record host payout", extra={"claim_id": claim.pk})
        return None
    try:
        return attempt_pending_transfer(pending.pk)
    except Exception:
        logger.exception(
            "claims: host payout attempt crashed; left for reconciliation",
            extra={"claim_id": claim.pk, "pending_transfer_id": pending.pk},
        )
        pending.refresh_from_db()
        return pending
