"""Guest disputes raised against individual trip charge lines."""

from __future__ import annotations

from django.conf import settings
from django.db import models

from trip_charges.categories import ChargeCategory


class ChargeDispute(models.Model):
    """One contested line of a trip charge, with the guest's reason."""

    trip_charge = models.ForeignKey(
        "trip_charges.TripCharge",
        on_delete=models.CASCADE,
        related_name="dispute_lines",
    )
    category = models.CharField(max_length=16, choices=ChargeCategory.choices)
    reason = models.TextField()
    raised_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="charge_disputes",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["trip_charge", "category"]),
        ]

    def __str__(self) -> str:
        return f"ChargeDispute #{self.pk} {self.category} on trip charge {self.trip_charge_id}"
