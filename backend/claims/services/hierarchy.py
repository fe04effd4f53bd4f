"""
Who pays for a claim, in what order, and how much of the deductible lands on the guest.

``resolve_hierarchy`` is pure; ``hierarchy_for_booking`` only loads its inputs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import models
from django.utils import timezone

from trip_charges.calculations import round2
from users.models import GuestProfile, HostProfile

ZERO = Decimal("0.00")


class Payer(models.TextChoices):
    HOST_COMMERCIAL = "HOST_COMMERCIAL", "Host commercial insurance"
    HOST_P2P = "HOST_P2P", "Host peer-to-peer insurance"
    PLATFORM = "PLATFORM", "Platform protection"
    GUEST_PERSONAL = "GUEST_PERSONAL", "Guest personal insurance"


HOST_PAYERS = (Payer.HOST_COMMERCIAL, Payer.HOST_P2P)


@dataclass(frozen=True)
class CoverageTier:
    payer: str
    active: bool
    description: str


@dataclass(frozen=True)
class DeductibleBreakdown:
    deductible: Decimal
    deposit_held: Decimal
    deposit_applied: Decimal
    guest_responsibility: Decimal


@dataclass(frozen=True)
class InsuranceHierarchy:
    primary: CoverageTier
    secondary: CoverageTier
    tertiary: Optional[CoverageTier]
    deductible: DeductibleBreakdown

    @property
    def primary_payer(self) -> str:
        return self.primary.payer

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data["deductible"].items():
            data["deductible"][key] = str(value)
        return data


def select_primary_payer(earnings_tier: str, commercial_status: str, p2p_status: str) -> str:
    active = HostProfile.InsuranceStatus.ACTIVE
    if earnings_tier == HostProfile.EarningsTier.PREMIUM and commercial_status == active:
        return Payer.HOST_COMMERCIAL
    if earnings_tier == HostProfile.EarningsTier.STANDARD and p2p_status == active:
        return Payer.HOST_P2P
    return Payer.PLATFORM


def guest_coverage_active(verified: bool, expires_on: Optional[date], *, today: Optional[date] = None) -> bool:
    if not verified or expires_on is None:
        return False
    today = today or timezone.localdate()
    return expires_on > today


def resolve_hierarchy(
    *,
    earnings_tier: str,
    commercial_status: str,
    p2p_status: str,
    guest_insurance_verified: bool,
    guest_insurance_expires_on: Optional[date],
    policy_deductible: Decimal,
    deposit_held: Decimal,
    host_tier_deductible: Optional[Decimal] = None,
    today: Optional[date] = None,
) -> InsuranceHierarchy:
    primary_payer = select_primary_payer(earnings_tier, commercial_status, p2p_status)
    if host_tier_deductible is None:
        host_tier_deductible = Decimal(str(getattr(settings, "CLAIM_HOST_TIER_DEDUCTIBLE", "500.00")))

    if primary_payer in HOST_PAYERS:
        deductible = round2(host_tier_deductible)
    else:
        deductible = round2(policy_deductible)

    deposit = round2(max(ZERO, Decimal(deposit_held or 0)))
    deposit_applied = min(deposit, deductible)
    guest_responsibility = max(ZERO, deductible - deposit)

    guest_active = guest_coverage_active(
        guest_insurance_verified, guest_insurance_expires_on, today=today
    )
    secondary = CoverageTier(
        payer=Payer.GUEST_PERSONAL.value,
        active=guest_active,
        description=(
            "Guest's verified personal policy"
            if guest_active
            else "Guest has no active verified personal policy"
        ),
    )
    tertiary = None
    if primary_payer in HOST_PAYERS:
        tertiary = CoverageTier(
            payer=Payer.PLATFORM.value,
            active=True,
            description="Platform protection as backup if the host policy denies",
        )

    return InsuranceHierarchy(
        primary=CoverageTier(
            payer=str(primary_payer),
            active=True,
            description=Payer(primary_payer).label,
        ),
        secondary=secondary,
        tertiary=tertiary,
        deductible=DeductibleBreakdown(
            deductible=deductible,
            deposit_held=deposit,
            deposit_applied=deposit_applied,
            guest_responsibility=guest_responsibility,
        ),
    )


def hierarchy_for_booking(booking, policy=None) -> InsuranceHierarchy:
    """Load host, guest and policy state for ``booking`` and resolve its hierarchy."""
    policy = policy or booking.insurance_policy
    host_profile = HostProfile.objects.filter(user_id=booking.host_id).first()
    guest_profile = GuestProfile.objects.filter(user_id=booking.guest_id).first()
    return resolve_hierarchy(
        earnings_tier=host_profile.earnings_tier if host_profile else HostProfile.EarningsTier.BASIC,
        commercial_status=(
            host_profile.commercial_insurance_status
            if host_profile
            else HostProfile.InsuranceStatus.NONE
        ),
        p2p_status=(
            host_profile.p2p_insurance_status if host_profile else HostProfile.InsuranceStatus.NONE
        ),
        guest_insurance_verified=bool(guest_profile and guest_profile.insurance_verified),
        guest_insurance_expires_on=guest_profile.insurance_expires_on if guest_profile else None,
        policy_deductible=policy.deductible,
        deposit_held=booking.deposit_amount,
    )
