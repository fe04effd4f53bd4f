from django.conf import settings
from django.db import models


class OperatorAuditEvent(models.Model):
    """Append-only record of an operator mutation with before/after snapshots."""

    class EntityType(models.TextChoices):
        USER = "user", "User"
        BOOKING = "booking", "Booking"
        TRIP_CHARGE = "trip_charge", "Trip Charge"
        CLAIM = "claim", "Claim"
        PENDING_TRANSFER = "pending_transfer", "Pending Transfer"
        MODERATION_ACTION = "moderation_action", "Moderation Action"
        APPEAL = "appeal", "Appeal"

    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="operator_audit_events",
    )
    action = models.CharField(max_length=128)
    entity_type = models.CharField(max_length=64, choices=EntityType.choices)
    entity_id = models.CharField(max_length=64)
    reason = models.TextField()
    before_json = models.JSONField(null=True, blank=True)
    after_json = models.JSONField(null=True, blank=True)
    meta_json = models.JSONField(null=True, blank=True)
    ip = models.CharField(max_length=45, blank=True)
    user_agent = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["entity_type", "entity_id", "created_at"]),
            models.Index(fields=["actor", "created_at"]),
        ]
        ordering = ["-created_at", "-id"]

    def __str__(self) -> str:
        return f"{self.action} {self.entity_type}:{self.entity_id}"
