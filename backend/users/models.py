from __future__ import annotations

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.db import models


class User(AbstractUser):
    """Primary account; guest and host standing live on the role profiles."""

    phone = models.CharField(
        max_length=32,
        unique=True,
        null=True,
        blank=True,
        help_text="Optional E.164 formatted phone number.",
    )
    email_verified = models.BooleanField(default=False)
    can_rent = models.BooleanField(default=True)
    can_list = models.BooleanField(default=True)
    stripe_customer_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stripe Customer ID for guest payments.",
    )
    default_payment_method_id = models.CharField(
        max_length=120,
        blank=True,
        default="",
        help_text="Stored Stripe PaymentMethod used for off-session charges.",
    )

    @property
    def has_payment_method(self) -> bool:
        return bool(self.stripe_customer_id and self.default_payment_method_id)


class SuspensionLevel(models.TextChoices):
    SOFT = "SOFT", "Soft"
    HARD = "HARD", "Hard"
    BANNED = "BANNED", "Banned"


class SuspensionState(models.Model):
    """Per-role suspension fields shared by guest and host profiles."""

    suspension_level = models.CharField(
        max_length=8,
        choices=SuspensionLevel.choices,
        null=True,
        blank=True,
    )
    suspended_at = models.DateTimeField(null=True, blank=True)
    suspended_reason = models.TextField(blank=True, default="")
    suspension_expires_at = models.DateTimeField(null=True, blank=True)
    auto_reactivate = models.BooleanField(default=True)
    warning_count = models.PositiveIntegerField(default=0)
    last_warning_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        abstract = True

    SUSPENSION_FIELDS = (
        "suspension_level",
        "suspended_at",
        "suspended_reason",
        "suspension_expires_at",
        "auto_reactivate",
    )

    def clean(self):
        super().clean()
        if self.suspension_level == SuspensionLevel.BANNED and self.suspension_expires_at:
            raise ValidationError(
                {"suspension_expires_at": ["Banned accounts cannot have an expiry."]}
            )

    @property
    def is_suspended(self) -> bool:
        return bool(self.suspension_level)

    @property
    def is_banned(self) -> bool:
        return self.suspension_level == SuspensionLevel.BANNED

    def suspension_snapshot(self) -> dict:
        expires = self.suspension_expires_at
        suspended_at = self.suspended_at
        return {
            "suspension_level": self.suspension_level,
            "suspended_at": suspended_at.isoformat() if suspended_at else None,
            "suspended_reason": self.suspended_reason,
            "suspension_expires_at": expires.isoformat() if expires else None,
            "warning_count": self.warning_count,
        }


class GuestProfile(SuspensionState):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="guest_profile",
    )
    insurance_provider = models.CharField(max_length=120, blank=True, default="")
    insurance_policy_number = models.CharField(max_length=120, blank=True, default="")
    insurance_verified = models.BooleanField(default=False)
    insurance_expires_on = models.DateField(null=True, blank=True)
    account_hold = models.BooleanField(default=False)
    account_hold_reason = models.CharField(max_length=255, blank=True, default="")
    account_hold_claim = models.ForeignKey(
        "claims.Claim",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="held_guest_profiles",
    )
    account_hold_at = models.DateTimeField(null=True, blank=True)

    def __str__(self) -> str:
        return f"GuestProfile({self.user_id})"


class HostProfile(SuspensionState):
    class EarningsTier(models.TextChoices):
        PREMIUM = "PREMIUM", "Premium (90%)"
        STANDARD = "STANDARD", "Standard (75%)"
        BASIC = "BASIC", "Basic (40%)"

    class InsuranceStatus(models.TextChoices):
        NONE = "NONE", "None"
        PENDING = "PENDING", "Pending"
        ACTIVE = "ACTIVE", "Active"
        EXPIRED = "EXPIRED", "Expired"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="host_profile",
    )
    earnings_tier = models.CharField(
        max_length=10,
        choices=EarningsTier.choices,
        default=EarningsTier.BASIC,
    )
    commercial_insurance_status = models.CharField(
        max_length=10,
        choices=InsuranceStatus.choices,
        default=InsuranceStatus.NONE,
    )
    p2p_insurance_status = models.CharField(
        max_length=10,
        choices=InsuranceStatus.choices,
        default=InsuranceStatus.NONE,
    )

    def __str__(self) -> str:
        return f"HostProfile({self.user_id}, {self.earnings_tier})"
