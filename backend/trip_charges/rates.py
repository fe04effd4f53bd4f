"""Per-unit rates used by the trip charge calculators."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from django.conf import settings

from trip_charges.categories import CleaningType, DamageSeverity


def _decimal(name: str, default: str) -> Decimal:
    return Decimal(str(getattr(settings, name, default)))


@dataclass(frozen=True)
class RateTable:
    daily_included_miles: int = 200
    mileage_rate: Decimal = Decimal("0.45")
    fuel_quarter_tank_rate: Decimal = Decimal("75.00")
    full_tank_rate: Decimal = Decimal("300.00")
    late_grace_minutes: int = 30
    late_hourly_rate: Decimal = Decimal("50.00")
    late_daily_cap: Decimal = Decimal("300.00")
    tax_rate: Decimal = Decimal("0.10")
    damage_rates: dict = field(
        default_factory=lambda: {
            DamageSeverity.MINOR.value: Decimal("250.00"),
            DamageSeverity.MODERATE.value: Decimal("500.00"),
            DamageSeverity.MAJOR.value: Decimal("1000.00"),
        }
    )
    cleaning_rates: dict = field(
        default_factory=lambda: {
            CleaningType.STANDARD.value: Decimal("50.00"),
            CleaningType.DEEP.value: Decimal("150.00"),
            CleaningType.BIOHAZARD.value: Decimal("500.00"),
        }
    )
    warn_mileage_charge: Decimal = Decimal("1000.00")
    warn_late_hours: int = 72
    warn_total: Decimal = Decimal("5000.00")
    approval_threshold: Decimal = Decimal("500.00")

    @classmethod
    def from_settings(cls) -> "RateTable":
        """Build the table from Django settings (env-backed, see settings.base)."""
        return cls(
            daily_included_miles=int(getattr(settings, "TRIP_DAILY_INCLUDED_MILES", 200)),
            mileage_rate=_decimal("TRIP_MILEAGE_RATE", "0.45"),
            fuel_quarter_tank_rate=_decimal("TRIP_FUEL_QUARTER_TANK_RATE", "75.00"),
            full_tank_rate=_decimal("TRIP_FULL_TANK_RATE", "300.00"),
            late_grace_minutes=int(getattr(settings, "TRIP_LATE_GRACE_MINUTES", 30)),
            late_hourly_rate=_decimal("TRIP_LATE_HOURLY_RATE", "50.00"),
            late_daily_cap=_decimal("TRIP_LATE_DAILY_CAP", "300.00"),
            tax_rate=_decimal("TRIP_TAX_RATE", "0.10"),
            damage_rates={
                DamageSeverity.MINOR.value: _decimal("TRIP_DAMAGE_MINOR", "250.00"),
                DamageSeverity.MODERATE.value: _decimal("TRIP_DAMAGE_MODERATE", "500.00"),
                DamageSeverity.MAJOR.value: _decimal("TRIP_DAMAGE_MAJOR", "1000.00"),
            },
            cleaning_rates={
                CleaningType.STANDARD.value: _decimal("TRIP_CLEANING_STANDARD", "50.00"),
                CleaningType.DEEP.value: _decimal("TRIP_CLEANING_DEEP", "150.00"),
                CleaningType.BIOHAZARD.value: _decimal("TRIP_CLEANING_BIOHAZARD", "500.00"),
            },
            warn_mileage_charge=_decimal("TRIP_WARN_MILEAGE_CHARGE", "1000.00"),
            warn_late_hours=int(getattr(settings, "TRIP_WARN_LATE_HOURS", 72)),
            warn_total=_decimal("TRIP_WARN_TOTAL", "5000.00"),
            approval_threshold=_decimal("TRIP_CHARGE_APPROVAL_THRESHOLD", "500.00"),
        )
