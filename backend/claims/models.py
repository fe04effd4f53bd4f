"""Insurance claims filed by hosts against completed bookings."""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models


class InsurancePolicy(models.Model):
    """Platform protection attached to a booking at checkout."""

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="insurance_policy",
    )
    provider_name = models.CharField(max_length=120, default="Platform Protection")
    policy_number = models.CharField(max_length=64, blank=True, default="")
    deductible = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal("1000.00"),
    )
    coverage_limit = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return f"Policy {self.policy_number or self.pk} for booking {self.booking_id}"


class Claim(models.Model):
    class Type(models.TextChoices):
        ACCIDENT = "ACCIDENT", "Accident"
        THEFT = "THEFT", "Theft"
        VANDALISM = "VANDALISM", "Vandalism"
        CLEANING = "CLEANING", "Cleaning"
        MECHANICAL = "MECHANICAL", "Mechanical"
        WEATHER = "WEATHER", "Weather"
        OTHER = "OTHER", "Other"

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        UNDER_REVIEW = "UNDER_REVIEW", "Under review"
        GUEST_RESPONDED = "GUEST_RESPONDED", "Guest responded"
        APPROVED = "APPROVED", "Approved"
        DENIED = "DENIED", "Denied"
        PAID = "PAID", "Paid"
        CLOSED = "CLOSED", "Closed"

    class RecoveryStatus(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PARTIAL = "PARTIAL", "Partial"
        FULL = "FULL", "Full"

    GUEST_AT_FAULT_TYPES = (Type.ACCIDENT, Type.VANDALISM, Type.CLEANING)
    OPEN_STATUSES = (Status.PENDING, Status.UNDER_REVIEW, Status.GUEST_RESPONDED)

    booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="claims",
    )
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="claims_filed",
    )
    policy = models.ForeignKey(
        InsurancePolicy,
        on_delete=models.PROTECT,
        related_name="claims",
    )
    type = models.CharField(max_length=16, choices=Type.choices)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    description = models.TextField()
    incident_date = models.DateField()
    estimated_cost = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    primary_payer = models.CharField(max_length=32, blank=True, default="")
    hierarchy = models.JSONField(default=dict, blank=True)
    deductible = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    guest_at_fault = models.BooleanField(default=False)
    guest_response_deadline = models.DateTimeField(null=True, blank=True)
    guest_response = models.TextField(blank=True, default="")
    guest_responded_at = models.DateTimeField(null=True, blank=True)

    approved_amount = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    recovered_from_guest = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal("0.00")
    )
    recovery_status = models.CharField(
        max_length=8,
        choices=RecoveryStatus.choices,
        default=RecoveryStatus.PENDING,
    )
    # Held by recovery charges that are still waiting on Stripe.
    recovery_reserved = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    recovery_attempts = models.PositiveIntegerField(default=0)

    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="claims_reviewed",
    )
    reviewed_at = models.DateTimeField(null=True, blank=True)
    review_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "host"],
                name="unique_claim_per_booking_host",
            )
        ]
        indexes = [
            models.Index(fields=["status", "created_at"]),
            models.Index(fields=["status", "guest_response_deadline"]),
        ]

    def __str__(self) -> str:
        return f"Claim #{self.pk} {self.type} booking={self.booking_id} ({self.status})"

    @property
    def outstanding_amount(self) -> Decimal:
        if self.approved_amount is None:
            return Decimal("0.00")
        return max(Decimal("0.00"), self.approved_amount - self.recovered_from_guest)

    @property
    def chargeable_amount(self) -> Decimal:
        return max(Decimal("0.00"), self.outstanding_amount - self.recovery_reserved)

    def state_snapshot(self) -> dict:
        return {
            "status": self.status,
            "approved_amount": str(self.approved_amount) if self.approved_amount is not None else None,
            "recovered_from_guest": str(self.recovered_from_guest),
            "recovery_status": self.recovery_status,
        }
