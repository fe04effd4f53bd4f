from django.conf import settings
from django.db import models


class NotificationLog(models.Model):
    """One delivery attempt, tied to the record the email was about."""

    class Channel(models.TextChoices):
        EMAIL = "email", "Email"

    class Status(models.TextChoices):
        SENT = "sent", "Sent"
        FAILED = "failed", "Failed"

    class Subject(models.TextChoices):
        TRIP_CHARGE = "trip_charge", "Trip charge"
        CLAIM = "claim", "Claim"
        MODERATION_ACTION = "moderation_action", "Moderation action"
        APPEAL = "appeal", "Appeal"

    channel = models.CharField(max_length=8, choices=Channel.choices)
    type = models.CharField(max_length=128)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="notification_logs",
    )
    booking_id = models.IntegerField(null=True, blank=True)
    subject_type = models.CharField(max_length=32, choices=Subject.choices, blank=True)
    subject_id = models.IntegerField(null=True, blank=True)
    status = models.CharField(max_length=8, choices=Status.choices)
    error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["booking_id", "created_at"]),
            models.Index(fields=["subject_type", "subject_id"]),
            models.Index(fields=["type", "status", "created_at"]),
        ]
        ordering = ["-created_at"]

    def __str__(self) -> str:
        if self.subject_type:
            return f"{self.type} {self.subject_type}:{self.subject_id} ({self.status})"
        return f"{self.type} ({self.status})"
