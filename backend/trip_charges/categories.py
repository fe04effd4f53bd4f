"""Enumerations shared by the trip charge calculators, models and serializers."""

from __future__ import annotations

from decimal import Decimal

from django.db import models


class ChargeCategory(models.TextChoices):
    MILEAGE = "mileage", "Mileage"
    FUEL = "fuel", "Fuel"
    LATE_RETURN = "late_return", "Late return"
    DAMAGE = "damage", "Damage"
    CLEANING = "cleaning", "Cleaning"
    OTHER = "other", "Other"


class FuelLevel(models.TextChoices):
    FULL = "Full", "Full"
    THREE_QUARTERS = "3/4", "3/4"
    HALF = "1/2", "1/2"
    QUARTER = "1/4", "1/4"
    EMPTY = "Empty", "Empty"


class DamageSeverity(models.TextChoices):
    NONE = "none", "None"
    MINOR = "minor", "Minor"
    MODERATE = "moderate", "Moderate"
    MAJOR = "major", "Major"


class CleaningType(models.TextChoices):
    STANDARD = "standard", "Standard"
    DEEP = "deep", "Deep"
    BIOHAZARD = "biohazard", "Biohazard"


FUEL_LEVEL_VALUES = {
    FuelLevel.FULL: Decimal("1.00"),
    FuelLevel.THREE_QUARTERS: Decimal("0.75"),
    FuelLevel.HALF: Decimal("0.50"),
    FuelLevel.QUARTER: Decimal("0.25"),
    FuelLevel.EMPTY: Decimal("0.00"),
}

# Keywords checked in order; the first hit wins.
_CATEGORY_KEYWORDS = (
    ("damage", ChargeCategory.DAMAGE),
    ("clean", ChargeCategory.CLEANING),
    ("mileage", ChargeCategory.MILEAGE),
    ("fuel", ChargeCategory.FUEL),
    ("late", ChargeCategory.LATE_RETURN),
)


def fuel_level_value(label: str | None) -> Decimal:
    """Return the tank fraction for a label; unknown labels count as a full tank."""
    normalized = (label or "").strip().lower()
    for level, value in FUEL_LEVEL_VALUES.items():
        if level.value.lower() == normalized:
            return value
    return FUEL_LEVEL_VALUES[FuelLevel.FULL]


def is_known_fuel_level(label: str | None) -> bool:
    normalized = (label or "").strip().lower()
    return any(level.value.lower() == normalized for level in FuelLevel)


def resolve_category(raw: str | None) -> ChargeCategory:
    """
    Resolve a free-text charge type (from a client payload) to a ChargeCategory.

    Exact enum values are accepted as-is; otherwise the first matching keyword
    decides, and anything unrecognised is OTHER.
    """
    normalized = (raw or "").strip().lower()
    if normalized in ChargeCategory.values:
        return ChargeCategory(normalized)
    for keyword, category in _CATEGORY_KEYWORDS:
        if keyword in normalized:
            return category
    return ChargeCategory.OTHER
