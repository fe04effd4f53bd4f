"""Two-phase host payouts: record the debt, then attempt the Stripe transfer."""

from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from payments.ledger import has_transaction, log_transaction
from payments.models import PendingTransfer, Transaction
from payments.stripe_api import (
    IDEMPOTENCY_VERSION,
    StripeConfigurationError,
    StripePaymentError,
    StripeTransientError,
    create_host_transfer,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (PendingTransfer.Status.PENDING, PendingTransfer.Status.FAILED)
# A worker that died mid-call leaves the row IN_FLIGHT; after this long it may be reclaimed.
IN_FLIGHT_STALE_AFTER = timedelta(minutes=15)


def transfer_idempotency_key(pending: PendingTransfer) -> str:
    # One key per payout for its whole life, so any replay returns the original transfer.
    return f"pending_transfer:{pending.pk}:host_payout_{IDEMPOTENCY_VERSION}"


def stale_in_flight(now=None) -> Q:
    now = now or timezone.now()
    return Q(status=PendingTransfer.Status.IN_FLIGHT, last_attempt_at__lt=now - IN_FLIGHT_STALE_AFTER)


def is_retryable(pending: PendingTransfer, now=None) -> bool:
    if pending.status in RETRYABLE_STATUSES:
        return True
    now = now or timezone.now()
    return (
        pending.status == PendingTransfer.Status.IN_FLIGHT
        and pending.last_attempt_at is not None
        and pending.last_attempt_at < now - IN_FLIGHT_STALE_AFTER
    )


def record_pending_transfer(
    *,
    host,
    booking,
    amount: Decimal,
    claim=None,
    source_charge_id: str = "",
    description: str = "",
) -> PendingTransfer:
    """Phase one: persist what the host is owed before any money moves."""
    return PendingTransfer.objects.create(
        host=host,
        booking=booking,
        claim=claim,
        amount=amount,
        source_charge_id=source_charge_id or "",
        description=description or f"Host payout for booking #{booking.pk}",
    )


def attempt_pending_transfer(pending_id: int) -> PendingTransfer:
    """
    Phase two: try the Stripe transfer once and record the outcome on the row.

    The row is claimed IN_FLIGHT under a row lock before Stripe is called, so a
    concurrent attempt (the beat job racing an operator retry) returns the row
    untouched instead of sending a second transfer. Failures are stored, not
    raised; the row stays in the reconciliation queue.
    """
    with transaction.atomic():
        pending = (
            PendingTransfer.objects.select_for_update()
            .select_related("host", "booking", "claim")
            .get(pk=pending_id)
        )
        if not is_retryable(pending):
            logger.info(
                "payments: host transfer not attempted",
                extra={"pending_transfer_id": pending.pk, "status": pending.status},
            )
            return pending
        pending.status = PendingTransfer.Status.IN_FLIGHT
        pending.attempts += 1
        pending.last_attempt_at = timezone.now()
        pending.save(update_fields=["status", "attempts", "last_attempt_at", "updated_at"])

    metadata = {
        "kind": "host_payout",
        "pending_transfer_id": pending.pk,
        "booking_id": pending.booking_id,
        "source_charge_id": pending.source_charge_id,
    }
    if pending.claim_id:
        metadata["claim_id"] = pending.claim_id

    try:
        transfer_id = create_host_transfer(
            host=pending.host,
            amount=pending.amount,
            description=pending.description,
            transfer_group=f"booking:{pending.booking_id}:host_payout",
            idempotency_key=transfer_idempotency_key(pending),
            metadata=metadata,
        )
    except (StripePaymentError, StripeTransientError, StripeConfigurationError) as exc:
        logger.warning(
            "payments: host transfer failed; left for reconciliation",
            extra={
                "pending_transfer_id": pending.pk,
                "booking_id": pending.booking_id,
                "attempts": pending.attempts,
                "error": str(exc),
            },
        )
        PendingTransfer.objects.filter(
            pk=pending.pk, status=PendingTransfer.Status.IN_FLIGHT
        ).update(
            status=PendingTransfer.Status.FAILED,
            last_error=str(exc),
            updated_at=timezone.now(),
        )
        pending.refresh_from_db()
        return pending

    with transaction.atomic():
        now = timezone.now()
        PendingTransfer.objects.filter(pk=pending.pk).update(
            status=PendingTransfer.Status.SUCCEEDED,
            stripe_transfer_id=transfer_id or "",
            last_error="",
            completed_at=now,
            updated_at=now,
        )
        if not has_transaction(kind=Transaction.Kind.HOST_PAYOUT, stripe_id=transfer_id):
            log_transaction(
                user=pending.host,
                booking=pending.booking,
                claim=pending.claim,
                kind=Transaction.Kind.HOST_PAYOUT,
                amount=pending.amount,
                currency=pending.currency,
                stripe_id=transfer_id,
            )
    logger.info(
        "payments: host transfer succeeded",
        extra={"pending_transfer_id": pending.pk, "transfer_id": transfer_id},
    )
    pending.refresh_from_db()
    return pending


def retry_pending_transfer(pending: PendingTransfer) -> PendingTransfer:
    if not is_retryable(pending):
        raise ValueError(f"Transfer {pending.pk} is {pending.status} and cannot be retried now.")
    return attempt_pending_transfer(pending.pk)


def reconciliation_queue():
    return PendingTransfer.objects.filter(
        Q(status__in=RETRYABLE_STATUSES) | stale_in_flight()
    ).select_related("host", "booking", "claim")
