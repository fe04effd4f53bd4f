from __future__ import annotations

import logging

from celery import shared_task
from django.db.models import Q

from payments.models import PendingTransfer
from payments.transfers import attempt_pending_transfer, stale_in_flight

logger = logging.getLogger(__name__)


@shared_task(name="payments.retry_failed_transfers")
def retry_failed_transfers():
    """
    Retry every FAILED host transfer once, plus rows stuck IN_FLIGHT.
    Safe to run repeatedly; rows that fail again stay queued for operators.
    """
    pending_ids = list(
        PendingTransfer.objects.filter(Q(status=PendingTransfer.Status.FAILED) | stale_in_flight())
        .order_by("created_at")
        .values_list("pk", flat=True)
    )
    succeeded = 0
    for pending_id in pending_ids:
        try:
            pending = attempt_pending_transfer(pending_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "transfer retry task failed for pending transfer %s: %s",
                pending_id,
                exc,
                exc_info=True,
            )
            continue
        if pending.status == PendingTransfer.Status.SUCCEEDED:
            succeeded += 1
    return {"succeeded": succeeded, "checked": len(pending_ids)}
