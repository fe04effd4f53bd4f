"""Moderation history for guest and host accounts, and appeals against it."""

from django.conf import settings
from django.db import models

from users.models import SuspensionLevel


class ModerationRole(models.TextChoices):
    GUEST = "guest", "Guest"
    HOST = "host", "Host"
    BOTH = "both", "Guest and host"


class ModerationAction(models.Model):
    class Action(models.TextChoices):
        WARN = "WARN", "Warning"
        SUSPEND = "SUSPEND", "Suspension"
        BAN = "BAN", "Ban"
        UNSUSPEND = "UNSUSPEND", "Reinstatement"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="moderation_actions",
    )
    action = models.CharField(max_length=12, choices=Action.choices)
    role = models.CharField(
        max_length=8,
        choices=ModerationRole.choices,
        help_text="Role the operator asked to act on.",
    )
    applied_roles = models.JSONField(
        default=list,
        help_text="Roles actually updated after escalation.",
    )
    level = models.CharField(max_length=8, choices=SuspensionLevel.choices, null=True, blank=True)
    violation_type = models.CharField(max_length=64, blank=True, default="")
    escalation = models.CharField(max_length=8, blank=True, default="")
    reason = models.TextField()
    expires_at = models.DateTimeField(null=True, blank=True)
    related_booking = models.ForeignKey(
        "bookings.Booking",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="moderation_actions",
    )
    related_claim = models.ForeignKey(
        "claims.Claim",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="moderation_actions",
    )
    cancelled_bookings = models.PositiveIntegerField(default=0)
    taken_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="moderation_actions_taken",
    )
    lifted_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["user", "created_at"])]

    def __str__(self) -> str:
        return f"{self.action} user={self.user_id} roles={','.join(self.applied_roles)}"

    @property
    def is_restriction(self) -> bool:
        return self.action in (self.Action.SUSPEND, self.Action.BAN)


class Appeal(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        APPROVED = "APPROVED", "Approved"
        DENIED = "DENIED", "Denied"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="appeals",
    )
    action = models.ForeignKey(ModerationAction, on_delete=models.CASCADE, related_name="appeals")
    statement = models.TextField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    decision_notes = models.TextField(blank=True, default="")
    decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="appeals_decided",
    )
    decided_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.UniqueConstraint(
                fields=["action"],
                condition=models.Q(status="PENDING"),
                name="one_pending_appeal_per_action",
            )
        ]

    def __str__(self) -> str:
        return f"Appeal {self.pk} on action {self.action_id} ({self.status})"
