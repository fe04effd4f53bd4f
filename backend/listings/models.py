from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models


class Listing(models.Model):
    """A vehicle offered for rent by a host."""

    class DeactivationReason(models.TextChoices):
        HOST_REQUEST = "HOST_REQUEST", "Host request"
        INSURANCE_CLAIM = "INSURANCE_CLAIM", "Insurance claim"
        MODERATION = "MODERATION", "Moderation"

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="listings",
    )
    make = models.CharField(max_length=60)
    model = models.CharField(max_length=60)
    year = models.PositiveIntegerField()
    daily_price = models.DecimalField(
        max_digits=8,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        default=0,
    )
    city = models.CharField(max_length=60, blank=True, default="")
    is_active = models.BooleanField(default=True)
    deactivation_reason = models.CharField(
        max_length=20,
        choices=DeactivationReason.choices,
        blank=True,
        default="",
    )
    deactivated_at = models.DateTimeField(null=True, blank=True)
    deactivation_claim = models.ForeignKey(
        "claims.Claim",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="deactivated_listings",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def clean(self):
        if self.daily_price and self.daily_price > 10000:
            raise ValidationError("Unreasonable price")

    @property
    def title(self) -> str:
        return f"{self.year} {self.make} {self.model}"

    def __str__(self) -> str:
        return f"{self.title} (#{self.pk})"
