from __future__ import annotations

import logging

from celery import shared_task
from django.utils import timezone

from claims.models import Claim

logger = logging.getLogger(__name__)


@shared_task(name="claims.expire_guest_response_windows")
def expire_guest_response_windows():
    """Move PENDING claims whose guest response deadline has passed to UNDER_REVIEW."""
    now = timezone.now()
    moved = Claim.objects.filter(
        status=Claim.Status.PENDING,
        guest_response_deadline__isnull=False,
        guest_response_deadline__lt=now,
    ).update(status=Claim.Status.UNDER_REVIEW, updated_at=now)
    if moved:
        logger.info("claims: %s claim(s) moved to review after the response window closed", moved)
    return {"moved": moved}
