"""Filing a host claim and the side effects it has on the vehicle and the guest."""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from claims.exceptions import ClaimConflict, ClaimValidationError
from claims.models import Claim, InsurancePolicy
from claims.services.hierarchy import hierarchy_for_booking
from listings.models import Listing
from notifications import tasks as notification_tasks
from notifications.dispatch import safe_notify
from users.models import GuestProfile

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 20


def _validate(booking, host, claim_type: str, description: str, incident_date: Optional[date]) -> InsurancePolicy:
    if booking.host_id != host.pk:
        raise ClaimValidationError("not_booking_host", "Only the booking's host can file a claim.")
    if claim_type not in Claim.Type.values:
        raise ClaimValidationError("invalid_type", f"Unknown claim type '{claim_type}'.")
    if len((description or "").strip()) < MIN_DESCRIPTION_LENGTH:
        raise ClaimValidationError(
            "description_too_short",
            f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters.",
        )
    if incident_date is None:
        raise ClaimValidationError("incident_date_required", "Incident date is required.")
    policy = InsurancePolicy.objects.filter(booking=booking).first()
    if policy is None:
        raise ClaimValidationError(
            "no_insurance_policy", "This booking has no insurance policy to claim against."
        )
    return policy


def file_claim(
    *,
    booking,
    host,
    claim_type: str,
    description: str,
    incident_date: Optional[date],
    estimated_cost: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> Claim:
    """
    Create a claim, take the vehicle off the market and, when the guest is at
    fault, hold the guest's account until the claim is settled.
    """
    policy = _validate(booking, host, claim_type, description, incident_date)
    if Claim.objects.filter(booking=booking, host=host).exists():
        raise ClaimConflict("duplicate_claim", "A claim has already been filed for this booking.")

    now = now or timezone.now()
    hierarchy = hierarchy_for_booking(booking, policy)
    guest_at_fault = claim_type in Claim.GUEST_AT_FAULT_TYPES
    response_hours = getattr(settings, "CLAIM_GUEST_RESPONSE_HOURS", 48)

    try:
        with transaction.atomic():
            claim = Claim.objects.create(
                booking=booking,
                host=host,
                policy=policy,
                type=claim_type,
                description=description.strip(),
                incident_date=incident_date,
                estimated_cost=estimated_cost,
                primary_payer=hierarchy.primary_payer,
                hierarchy=hierarchy.to_dict(),
                deductible=hierarchy.deductible.deductible,
                guest_at_fault=guest_at_fault,
                guest_response_deadline=(
                    now + timedelta(hours=response_hours) if guest_at_fault else None
                ),
            )
            Listing.objects.filter(pk=booking.listing_id).update(
                is_active=False,
                deactivation_reason=Listing.DeactivationReason.INSURANCE_CLAIM,
                deactivated_at=now,
                deactivation_claim=claim,
            )
            if guest_at_fault:
                profile, _ = GuestProfile.objects.select_for_update().get_or_create(
                    user_id=booking.guest_id
                )
                profile.account_hold = True
                profile.account_hold_reason = f"Claim #{claim.pk} under review"
                profile.account_hold_claim = claim
                profile.account_hold_at = now
                profile.save(
                    update_fields=[
                        "account_hold",
                        "account_hold_reason",
                        "account_hold_claim",
                        "account_hold_at",
                    ]
                )
    except IntegrityError as exc:
        raise ClaimConflict(
            "duplicate_claim", "A claim has already been filed for this booking."
        ) from exc

    logger.info(
        "claims: claim filed",
        extra={
            "claim_id": claim.pk,
            "booking_id": booking.pk,
            "primary_payer": claim.primary_payer,
            "guest_at_fault": guest_at_fault,
        },
    )
    safe_notify(notification_tasks.send_claim_filed_email, claim.pk)
    return claim


def submit_guest_response(claim: Claim, *, guest, response: str, now: Optional[datetime] = None) -> Claim:
    """Record the guest's side of the story while the response window is open."""
    now = now or timezone.now()
    if claim.booking.guest_id != guest.pk:
        raise ClaimValidationError("not_booking_guest", "Only the booking's guest can respond.")
    if not (response or "").strip():
        raise ClaimValidationError("response_required", "A response is required.")
    if claim.status != Claim.Status.PENDING:
        raise ClaimConflict("invalid_status", "This claim is no longer accepting responses.")
    if claim.guest_response_deadline is None or now > claim.guest_response_deadline:
        raise ClaimConflict("response_window_closed", "The response window for this claim has closed.")

    updated = Claim.objects.filter(pk=claim.pk, status=Claim.Status.PENDING).update(
        status=Claim.Status.GUEST_RESPONDED,
        guest_response=response.strip(),
        guest_responded_at=now,
        updated_at=now,
    )
    if not updated:
        raise ClaimConflict("invalid_status", "This claim is no longer accepting responses.")
    claim.refresh_from_db()
    return claim
