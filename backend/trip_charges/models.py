"""Persisted post-trip charges."""

from __future__ import annotations

from django.conf import settings
from django.db import models


class TripCharge(models.Model):
    """
    The charges computed when a trip ended, and their collection/dispute state.

    ``charges`` holds the full itemized snapshot. ``total_charges`` is the amount
    currently owed and is the only figure dispute resolution rewrites.
    """

    class ChargeStatus(models.TextChoices):
        PENDING = "PENDING", "Pending"
        UNDER_REVIEW = "UNDER_REVIEW", "Under review"
        DISPUTED = "DISPUTED", "Disputed"
        CHARGED = "CHARGED", "Charged"
        WAIVED = "WAIVED", "Waived"
        ADJUSTED = "ADJUSTED", "Adjusted"
        FAILED = "FAILED", "Failed"

    booking = models.OneToOneField(
        "bookings.Booking",
        on_delete=models.CASCADE,
        related_name="trip_charge",
    )
    charges = models.JSONField(default=dict, blank=True)
    subtotal = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    taxes = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_charges = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    original_total = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    charge_status = models.CharField(
        max_length=16,
        choices=ChargeStatus.choices,
        default=ChargeStatus.PENDING,
    )
    version = models.PositiveIntegerField(default=0)
    requires_approval = models.BooleanField(default=False)
    hold_until = models.DateTimeField(null=True, blank=True)
    validation_warnings = models.JSONField(default=list, blank=True)
    guest_note = models.TextField(blank=True, default="")

    stripe_charge_id = models.CharField(max_length=255, blank=True, default="")
    charged_at = models.DateTimeField(null=True, blank=True)
    charge_attempts = models.PositiveIntegerField(default=0)
    last_charge_error = models.TextField(blank=True, default="")

    disputed_at = models.DateTimeField(null=True, blank=True)
    dispute_resolved_at = models.DateTimeField(null=True, blank=True)
    dispute_resolution = models.CharField(max_length=32, blank=True, default="")
    dispute_notes = models.TextField(blank=True, default="")
    waive_percentage = models.PositiveSmallIntegerField(null=True, blank=True)
    resolved_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="resolved_trip_charges",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["charge_status", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"TripCharge #{self.pk} booking={self.booking_id} ({self.charge_status})"

    def state_snapshot(self) -> dict:
        resolved_at = self.dispute_resolved_at
        return {
            "charge_status": self.charge_status,
            "total_charges": str(self.total_charges),
            "requires_approval": self.requires_approval,
            "dispute_resolution": self.dispute_resolution,
            "dispute_resolved_at": resolved_at.isoformat() if resolved_at else None,
            "version": self.version,
        }
