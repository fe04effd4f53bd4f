"""
Pure trip charge calculators.

Nothing in this module touches the database or the network. Every function takes
an explicit ``rates`` argument and falls back to ``RateTable.from_settings()``.
Money is Decimal, rounded half-up to cents.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from trip_charges.categories import (
    ChargeCategory,
    CleaningType,
    DamageSeverity,
    fuel_level_value,
)
from trip_charges.rates import RateTable

ZERO = Decimal("0.00")
TWO_PLACES = Decimal("0.01")


def round2(value) -> Decimal:
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _rates(rates: Optional[RateTable]) -> RateTable:
    return rates if rates is not None else RateTable.from_settings()


def _jsonable(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _load(cls, data: dict | None):
    """Rebuild a flat dataclass from its JSON snapshot."""
    if data is None:
        return None
    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            continue
        value = data[f.name]
        if f.type in ("Decimal", "Optional[Decimal]") and value is not None:
            value = Decimal(str(value))
        kwargs[f.name] = value
    return cls(**kwargs)


@dataclass(frozen=True)
class MileageCharge:
    used: int
    included: int
    overage: int
    charge: Decimal
    rate: Decimal


@dataclass(frozen=True)
class FuelCharge:
    start_level: str
    end_level: str
    level_difference: Decimal
    quarters: int
    charge: Decimal
    tank_percentage: int


@dataclass(frozen=True)
class LateReturnCharge:
    hours_late: int
    charge: Decimal
    grace_period_applied: bool


@dataclass(frozen=True)
class DamageCharge:
    reported: bool
    severity: str
    charge: Decimal
    requires_inspection: bool


@dataclass(frozen=True)
class CleaningCharge:
    required: bool
    cleaning_type: str
    charge: Decimal


@dataclass(frozen=True)
class AdHocCharge:
    """A free-form charge whose category was resolved when the request was validated."""

    category: ChargeCategory
    cost: Decimal
    description: str = ""


@dataclass(frozen=True)
class ChargeLine:
    type: str
    label: str
    amount: Decimal
    details: str = ""
    quantity: Optional[Decimal] = None
    rate: Optional[Decimal] = None


@dataclass(frozen=True)
class Adjustment:
    type: str
    adjusted_amount: Optional[Decimal] = None
    included: bool = True
    reason: str = ""

    def matches(self, line: ChargeLine) -> bool:
        needle = (self.type or "").strip().lower()
        if not needle:
            return False
        return needle == line.type.lower() or needle in line.label.lower()


@dataclass(frozen=True)
class ChargeValidation:
    valid: bool
    errors: tuple = ()
    warnings: tuple = ()

    @property
    def needs_review(self) -> bool:
        return bool(self.warnings)


@dataclass(frozen=True)
class TripCharges:
    breakdown: tuple = ()
    mileage: Optional[MileageCharge] = None
    fuel: Optional[FuelCharge] = None
    late: Optional[LateReturnCharge] = None
    damage: Optional[DamageCharge] = None
    cleaning: Optional[CleaningCharge] = None
    other: tuple = ()
    subtotal: Decimal = ZERO
    taxes: Decimal = ZERO
    total: Decimal = ZERO

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))

    @classmethod
    def from_dict(cls, data: dict) -> "TripCharges":
        data = data or {}
        breakdown = tuple(_load(ChargeLine, item) for item in data.get("breakdown") or ())
        other = tuple(_load(ChargeLine, item) for item in data.get("other") or ())
        return cls(
            breakdown=breakdown,
            mileage=_load(MileageCharge, data.get("mileage")),
            fuel=_load(FuelCharge, data.get("fuel")),
            late=_load(LateReturnCharge, data.get("late")),
            damage=_load(DamageCharge, data.get("damage")),
            cleaning=_load(CleaningCharge, data.get("cleaning")),
            other=other,
            subtotal=Decimal(str(data.get("subtotal", "0.00"))),
            taxes=Decimal(str(data.get("taxes", "0.00"))),
            total=Decimal(str(data.get("total", "0.00"))),
        )


def calculate_mileage_charge(
    start_mileage: int,
    end_mileage: int,
    number_of_days: int,
    *,
    rates: Optional[RateTable] = None,
) -> MileageCharge:
    """An odometer reading below the start one counts as zero miles driven."""
    rates = _rates(rates)
    used = max(0, int(end_mileage) - int(start_mileage))
    included = int(number_of_days) * rates.daily_included_miles
    overage = max(0, used - included)
    return MileageCharge(
        used=used,
        included=included,
        overage=overage,
        charge=round2(overage * rates.mileage_rate),
        rate=rates.mileage_rate,
    )


def calculate_fuel_charge(
    fuel_level_start: str,
    fuel_level_end: str,
    *,
    rates: Optional[RateTable] = None,
) -> FuelCharge:
    rates = _rates(rates)
    difference = max(ZERO, fuel_level_value(fuel_level_start) - fuel_level_value(fuel_level_end))
    quarters = math.ceil(difference * 4)
    return FuelCharge(
        start_level=fuel_level_start,
        end_level=fuel_level_end,
        level_difference=difference,
        quarters=quarters,
        charge=round2(quarters * rates.fuel_quarter_tank_rate),
        tank_percentage=int(difference * 100),
    )


def calculate_late_return(
    scheduled_end: datetime,
    actual_end: datetime,
    *,
    rates: Optional[RateTable] = None,
) -> LateReturnCharge:
    """
    Bill every started hour past the grace window.

    Each full day late costs the daily cap; the remaining hours are billed
    hourly but never above the cap either.
    """
    rates = _rates(rates)
    delta = actual_end - scheduled_end
    chargeable = delta - timedelta(minutes=rates.late_grace_minutes)
    if chargeable <= timedelta(0):
        return LateReturnCharge(
            hours_late=0,
            charge=ZERO,
            grace_period_applied=delta > timedelta(0),
        )

    hours_late = math.ceil(chargeable.total_seconds() / 3600)
    days_late, remaining_hours = divmod(hours_late, 24)
    charge = days_late * rates.late_daily_cap + min(
        remaining_hours * rates.late_hourly_rate, rates.late_daily_cap
    )
    return LateReturnCharge(
        hours_late=hours_late,
        charge=round2(charge),
        grace_period_applied=True,
    )


def resolve_damage_charge(
    damage_reported: bool,
    severity: Optional[str] = None,
    custom_amount: Optional[Decimal] = None,
    *,
    rates: Optional[RateTable] = None,
) -> DamageCharge:
    rates = _rates(rates)
    if not damage_reported:
        return DamageCharge(
            reported=False,
            severity=DamageSeverity.NONE.value,
            charge=ZERO,
            requires_inspection=False,
        )

    if severity not in (DamageSeverity.MINOR, DamageSeverity.MODERATE, DamageSeverity.MAJOR):
        severity = DamageSeverity.MODERATE

    if custom_amount is not None:
        return DamageCharge(
            reported=True,
            severity=str(severity),
            charge=round2(custom_amount),
            requires_inspection=True,
        )

    return DamageCharge(
        reported=True,
        severity=str(severity),
        charge=round2(rates.damage_rates[str(severity)]),
        requires_inspection=severity == DamageSeverity.MAJOR,
    )


def resolve_cleaning_charge(
    cleaning_required: bool,
    cleaning_type: Optional[str] = None,
    *,
    rates: Optional[RateTable] = None,
) -> CleaningCharge:
    rates = _rates(rates)
    if not cleaning_required:
        return CleaningCharge(required=False, cleaning_type="", charge=ZERO)
    if cleaning_type not in CleaningType.values:
        cleaning_type = CleaningType.STANDARD
    return CleaningCharge(
        required=True,
        cleaning_type=str(cleaning_type),
        charge=round2(rates.cleaning_rates[str(cleaning_type)]),
    )


def _totals(lines: Iterable[ChargeLine], rates: RateTable) -> tuple[Decimal, Decimal, Decimal]:
    """
    Return (subtotal, taxes, total), each a whole number of cents.

    Taxes are rounded half-up to the cent before being added, so ``total`` is
    ``subtotal * (1 + tax_rate)`` only to the nearest cent: a $0.45 subtotal
    gives $0.05 tax and a $0.50 total, not $0.495.
    """
    subtotal = round2(sum((line.amount for line in lines), ZERO))
    taxes = round2(subtotal * rates.tax_rate)
    return subtotal, taxes, subtotal + taxes


def calculate_trip_charges(
    *,
    start_mileage: int,
    end_mileage: int,
    fuel_level_start: str,
    fuel_level_end: str,
    scheduled_end: datetime,
    actual_end: datetime,
    number_of_days: int,
    damage: Optional[DamageCharge] = None,
    cleaning: Optional[CleaningCharge] = None,
    extra_charges: Sequence[AdHocCharge] = (),
    rates: Optional[RateTable] = None,
) -> TripCharges:
    """Compose every calculator into one itemized TripCharges value."""
    rates = _rates(rates)
    lines: list[ChargeLine] = []

    mileage = calculate_mileage_charge(start_mileage, end_mileage, number_of_days, rates=rates)
    if mileage.charge > ZERO:
        lines.append(
            ChargeLine(
                type=ChargeCategory.MILEAGE.value,
                label="Mileage overage",
                amount=mileage.charge,
                details=(
                    f"{mileage.overage} miles over the {mileage.included} included "
                    f"at ${mileage.rate}/mile"
                ),
                quantity=Decimal(mileage.overage),
                rate=mileage.rate,
            )
        )

    fuel = calculate_fuel_charge(fuel_level_start, fuel_level_end, rates=rates)
    if fuel.charge > ZERO:
        lines.append(
            ChargeLine(
                type=ChargeCategory.FUEL.value,
                label="Fuel refill",
                amount=fuel.charge,
                details=(
                    f"{fuel.quarters} quarter tank(s) at ${rates.fuel_quarter_tank_rate} "
                    f"({fuel.start_level} to {fuel.end_level})"
                ),
                quantity=Decimal(fuel.quarters),
                rate=rates.fuel_quarter_tank_rate,
            )
        )

    late = calculate_late_return(scheduled_end, actual_end, rates=rates)
    if late.charge > ZERO:
        lines.append(
            ChargeLine(
                type=ChargeCategory.LATE_RETURN.value,
                label="Late return",
                amount=late.charge,
                details=(
                    f"{late.hours_late} hour(s) late at ${rates.late_hourly_rate}/hour, "
                    f"capped at ${rates.late_daily_cap}/day"
                ),
                quantity=Decimal(late.hours_late),
                rate=rates.late_hourly_rate,
            )
        )

    if damage is not None and damage.charge != ZERO:
        lines.append(
            ChargeLine(
                type=ChargeCategory.DAMAGE.value,
                label=f"Damage ({damage.severity})",
                amount=damage.charge,
                details="Custom amount, inspection required"
                if damage.requires_inspection
                else f"{damage.severity} damage base rate",
            )
        )

    if cleaning is not None and cleaning.charge > ZERO:
        lines.append(
            ChargeLine(
                type=ChargeCategory.CLEANING.value,
                label=f"Cleaning ({cleaning.cleaning_type})",
                amount=cleaning.charge,
                details=f"{cleaning.cleaning_type} cleaning fee",
            )
        )

    other: list[ChargeLine] = []
    for extra in extra_charges:
        category = extra.category
        if category not in (ChargeCategory.DAMAGE, ChargeCategory.CLEANING):
            category = ChargeCategory.OTHER
        line = ChargeLine(
            type=ChargeCategory(category).value,
            label=extra.description or ChargeCategory(category).label,
            amount=round2(extra.cost),
            details=extra.description,
        )
        lines.append(line)
        if category == ChargeCategory.OTHER:
            other.append(line)

    subtotal, taxes, total = _totals(lines, rates)
    return TripCharges(
        breakdown=tuple(lines),
        mileage=mileage,
        fuel=fuel,
        late=late,
        damage=damage,
        cleaning=cleaning,
        other=tuple(other),
        subtotal=subtotal,
        taxes=taxes,
        total=total,
    )


def validate_charges(
    charges: TripCharges,
    *,
    rates: Optional[RateTable] = None,
) -> ChargeValidation:
    """Advisory sanity check; callers decide whether to block or only log."""
    rates = _rates(rates)
    errors: list[str] = []
    warnings: list[str] = []

    for line in charges.breakdown:
        if line.amount < ZERO:
            errors.append(f"Invalid negative charge: {line.label}")
    if charges.total < ZERO:
        errors.append("Invalid negative total")

    if charges.mileage and charges.mileage.charge > rates.warn_mileage_charge:
        warnings.append(
            f"Mileage charge exceeds ${rates.warn_mileage_charge} - manual review recommended"
        )
    if charges.fuel and charges.fuel.charge > rates.full_tank_rate:
        warnings.append(f"Fuel charge exceeds full tank cost of ${rates.full_tank_rate}")
    if charges.late and charges.late.hours_late > rates.warn_late_hours:
        warnings.append(
            f"Late return over {rates.warn_late_hours} hours - manual review recommended"
        )
    if charges.total > rates.warn_total:
        warnings.append(f"Total exceeds ${rates.warn_total} - manual review recommended")

    return ChargeValidation(valid=not errors, errors=tuple(errors), warnings=tuple(warnings))


def apply_adjustments(
    charges: TripCharges,
    adjustments: Sequence[Adjustment],
    *,
    rates: Optional[RateTable] = None,
) -> TripCharges:
    """
    Return a new TripCharges with adjustments applied to the original breakdown.

    Items matched by an adjustment with ``included=False`` are dropped; matched
    items take the adjusted amount; unmatched items keep their amount.
    """
    rates = _rates(rates)
    surviving: list[ChargeLine] = []
    for line in charges.breakdown:
        match = next((adj for adj in adjustments if adj.matches(line)), None)
        if match is None:
            surviving.append(line)
            continue
        if not match.included:
            continue
        amount = line.amount if match.adjusted_amount is None else round2(match.adjusted_amount)
        surviving.append(replace(line, amount=amount))

    kept_types = {str(line.type) for line in surviving}
    subtotal, taxes, total = _totals(surviving, rates)
    return replace(
        charges,
        breakdown=tuple(surviving),
        mileage=charges.mileage if ChargeCategory.MILEAGE.value in kept_types else None,
        fuel=charges.fuel if ChargeCategory.FUEL.value in kept_types else None,
        late=charges.late if ChargeCategory.LATE_RETURN.value in kept_types else None,
        damage=charges.damage if ChargeCategory.DAMAGE.value in kept_types else None,
        cleaning=charges.cleaning if ChargeCategory.CLEANING.value in kept_types else None,
        other=tuple(line for line in surviving if line.type == ChargeCategory.OTHER),
        subtotal=subtotal,
        taxes=taxes,
        total=total,
    )
