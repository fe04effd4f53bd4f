"""Database models for vehicle bookings."""

from __future__ import annotations

import math

from django.conf import settings
from django.db import models
from django.utils import timezone

from listings.models import Listing


class Booking(models.Model):
    """A guest's reservation of a host vehicle, including trip odometer/fuel readings."""

    class Status(models.TextChoices):
        REQUESTED = "requested", "requested"
        CONFIRMED = "confirmed", "confirmed"
        ACTIVE = "active", "active"
        COMPLETED = "completed", "completed"
        CANCELED = "canceled", "canceled"

    class PaymentStatus(models.TextChoices):
        PENDING = "PENDING", "Pending"
        PAID = "PAID", "Paid"
        PENDING_CHARGES = "PENDING_CHARGES", "Pending trip charges"
        CHARGES_PAID = "CHARGES_PAID", "Trip charges paid"
        CHARGES_WAIVED = "CHARGES_WAIVED", "Trip charges waived"
        FAILED = "FAILED", "Failed"

    listing = models.ForeignKey(
        Listing,
        related_name="bookings",
        on_delete=models.CASCADE,
    )
    host = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_host",
        on_delete=models.CASCADE,
    )
    guest = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="bookings_as_guest",
        on_delete=models.CASCADE,
    )
    start_at = models.DateTimeField()
    end_at = models.DateTimeField(help_text="Scheduled return time.")
    status = models.CharField(
        max_length=16,
        choices=Status.choices,
        default=Status.REQUESTED,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    trip_started_at = models.DateTimeField(null=True, blank=True)
    trip_ended_at = models.DateTimeField(null=True, blank=True)
    start_mileage = models.PositiveIntegerField(null=True, blank=True)
    end_mileage = models.PositiveIntegerField(null=True, blank=True)
    fuel_level_start = models.CharField(max_length=8, blank=True, default="")
    fuel_level_end = models.CharField(max_length=8, blank=True, default="")
    deposit_amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    totals = models.JSONField(default=dict, blank=True)
    canceled_reason = models.CharField(max_length=255, blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["listing", "start_at", "end_at"]),
            models.Index(fields=["guest", "status"]),
            models.Index(fields=["host", "status"]),
        ]

    def __str__(self) -> str:
        return f"Booking #{self.pk} for {self.listing_id} ({self.status})"

    @property
    def number_of_days(self) -> int:
        """Billable days, partial days rounded up, never below one."""
        if not self.start_at or not self.end_at:
            return 1
        seconds = (self.end_at - self.start_at).total_seconds()
        return max(1, math.ceil(seconds / 86400))

    @property
    def trip_in_progress(self) -> bool:
        return bool(self.trip_started_at) and not self.trip_ended_at

    def is_late(self, *, now=None) -> bool:
        now = now or timezone.now()
        return bool(self.end_at) and now > self.end_at
