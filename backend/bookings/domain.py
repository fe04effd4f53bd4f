"""Domain helpers for ending trips and routing the resulting charges."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models, transaction
from django.db.models import F
from django.utils import timezone

from disputes.services.resolution import record_dispute_lines
from notifications import tasks as notification_tasks
from notifications.dispatch import safe_notify
from payments.ledger import log_transaction
from payments.models import Transaction
from payments.stripe_api import ChargeResult, charge_off_session
from trip_charges.calculations import (
    AdHocCharge,
    ChargeValidation,
    CleaningCharge,
    DamageCharge,
    TripCharges,
    calculate_trip_charges,
    validate_charges,
)
from trip_charges.categories import FuelLevel, is_known_fuel_level
from trip_charges.models import TripCharge
from trip_charges.rates import RateTable

from .models import Booking

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


class PaymentChoice(models.TextChoices):
    PAY_NOW = "pay_now", "Pay now"
    REQUEST_REVIEW = "request_review", "Request review"
    PAY_LATER = "pay_later", "Pay later"


@dataclass(frozen=True)
class TripEndOutcome:
    booking: Booking
    charges: TripCharges
    validation: ChargeValidation
    trip_charge: Optional[TripCharge] = None
    charge_result: Optional[ChargeResult] = None


def _invalid(field: str, message: str, code: str) -> ValidationError:
    return ValidationError({field: ValidationError(message, code=code)})


def can_end_trip(booking: Booking) -> bool:
    return booking.status == Booking.Status.ACTIVE and booking.trip_in_progress


def assert_can_end_trip(booking: Booking) -> None:
    """Ensure the trip has started and has not already been ended."""
    if not booking.trip_started_at:
        raise _invalid("status", "The trip has not started yet.", "trip_not_started")
    if booking.trip_ended_at:
        raise _invalid("status", "The trip has already ended.", "trip_already_ended")
    if booking.status != Booking.Status.ACTIVE:
        raise _invalid("status", "Only active trips can be ended.", "invalid_status")


def validate_end_readings(booking: Booking, end_mileage, fuel_level_end: str) -> int:
    """Check the return odometer and fuel label; returns the odometer as an int."""
    try:
        mileage = int(end_mileage)
    except (TypeError, ValueError):
        mileage = -1
    start = booking.start_mileage or 0
    if mileage < 0 or mileage < start:
        raise _invalid(
            "end_mileage", f"End odometer must be a number no lower than {start}.", "invalid_odometer"
        )
    if not is_known_fuel_level(fuel_level_end):
        raise _invalid(
            "fuel_level_end",
            f"Fuel level must be one of: {', '.join(FuelLevel.values)}.",
            "invalid_fuel_level",
        )
    return mileage


def initial_charge_status(
    total: Decimal,
    *,
    has_disputes: bool,
    has_payment_method: bool,
    payment_choice: str,
) -> Optional[str]:
    """
    Decide where new charges start. Returns None when nothing is owed.

    PENDING with a pay_now choice means a charge attempt follows.
    """
    if total <= ZERO:
        return None
    if has_disputes:
        return TripCharge.ChargeStatus.DISPUTED
    if not has_payment_method:
        return TripCharge.ChargeStatus.UNDER_REVIEW
    if payment_choice == PaymentChoice.REQUEST_REVIEW:
        return TripCharge.ChargeStatus.UNDER_REVIEW
    return TripCharge.ChargeStatus.PENDING


_BOOKING_PAYMENT_STATUS = {
    TripCharge.ChargeStatus.CHARGED: Booking.PaymentStatus.CHARGES_PAID,
    TripCharge.ChargeStatus.FAILED: Booking.PaymentStatus.FAILED,
}


def end_trip(
    booking: Booking,
    *,
    end_mileage,
    fuel_level_end: str,
    damage: Optional[DamageCharge] = None,
    cleaning: Optional[CleaningCharge] = None,
    extra_charges: Sequence[AdHocCharge] = (),
    disputes: Sequence[dict] = (),
    payment_choice: str = PaymentChoice.PAY_LATER,
    guest_note: str = "",
    now: Optional[datetime] = None,
    rates: Optional[RateTable] = None,
) -> TripEndOutcome:
    """
    Record the return readings, compute the trip charges and route them.

    The booking is always completed. A pay_now charge is attempted once, after
    the trip end has been committed, so a processor failure never undoes it.
    """
    now = now or timezone.now()
    rates = rates or RateTable.from_settings()

    with transaction.atomic():
        booking = Booking.objects.select_for_update().select_related("guest").get(pk=booking.pk)
        assert_can_end_trip(booking)
        mileage = validate_end_readings(booking, end_mileage, fuel_level_end)

        charges = calculate_trip_charges(
            start_mileage=booking.start_mileage or 0,
            end_mileage=mileage,
            fuel_level_start=booking.fuel_level_start or FuelLevel.FULL,
            fuel_level_end=fuel_level_end,
            scheduled_end=booking.end_at,
            actual_end=now,
            number_of_days=booking.number_of_days,
            damage=damage,
            cleaning=cleaning,
            extra_charges=extra_charges,
            rates=rates,
        )
        validation = validate_charges(charges, rates=rates)
        if not validation.valid:
            raise _invalid("charges", "; ".join(validation.errors), "invalid_charges")
        if validation.warnings:
            logger.info(
                "bookings: trip charges flagged for review",
                extra={"booking_id": booking.pk, "warnings": list(validation.warnings)},
            )

        status = initial_charge_status(
            charges.total,
            has_disputes=bool(disputes),
            has_payment_method=booking.guest.has_payment_method,
            payment_choice=payment_choice,
        )

        booking.trip_ended_at = now
        booking.end_mileage = mileage
        booking.fuel_level_end = fuel_level_end
        booking.status = Booking.Status.COMPLETED
        booking.payment_status = (
            Booking.PaymentStatus.PAID if status is None else Booking.PaymentStatus.PENDING_CHARGES
        )
        booking.save(
            update_fields=[
                "trip_ended_at",
                "end_mileage",
                "fuel_level_end",
                "status",
                "payment_status",
                "updated_at",
            ]
        )

        trip_charge = None
        if status is not None:
            trip_charge = TripCharge.objects.create(
                booking=booking,
                charges=charges.to_dict(),
                subtotal=charges.subtotal,
                taxes=charges.taxes,
                total_charges=charges.total,
                original_total=charges.total,
                charge_status=status,
                requires_approval=charges.total > rates.approval_threshold,
                validation_warnings=list(validation.warnings),
                guest_note=guest_note or "",
                hold_until=(
                    now + timedelta(hours=getattr(settings, "TRIP_CHARGE_HOLD_HOURS", 24))
                    if status == TripCharge.ChargeStatus.PENDING
                    else None
                ),
                disputed_at=now if status == TripCharge.ChargeStatus.DISPUTED else None,
            )
            if status == TripCharge.ChargeStatus.DISPUTED:
                record_dispute_lines(trip_charge, disputes, raised_by=booking.guest)

    charge_result = None
    if (
        trip_charge is not None
        and trip_charge.charge_status == TripCharge.ChargeStatus.PENDING
        and payment_choice == PaymentChoice.PAY_NOW
    ):
        charge_result = _charge_trip_now(booking, trip_charge)
        trip_charge.refresh_from_db()
        booking.refresh_from_db()

    if trip_charge is not None:
        safe_notify(notification_tasks.send_trip_summary_email, booking.pk)

    logger.info(
        "bookings: trip ended",
        extra={
            "booking_id": booking.pk,
            "total": str(charges.total),
            "charge_status": trip_charge.charge_status if trip_charge else None,
        },
    )
    return TripEndOutcome(
        booking=booking,
        charges=charges,
        validation=validation,
        trip_charge=trip_charge,
        charge_result=charge_result,
    )


def _charge_trip_now(booking: Booking, trip_charge: TripCharge) -> ChargeResult:
    """One off-session attempt; the outcome decides the charge and booking states."""
    result = charge_off_session(
        user=booking.guest,
        amount=trip_charge.total_charges,
        description=f"Trip charges for booking #{booking.pk}",
        idempotency_key=f"trip_charge:{trip_charge.pk}:trip_end:{trip_charge.charge_attempts + 1}",
        metadata={"booking_id": booking.pk, "trip_charge_id": trip_charge.pk},
    )
    now = timezone.now()
    if result.succeeded:
        new_status = TripCharge.ChargeStatus.CHARGED
    elif result.status == ChargeResult.REQUIRES_ACTION:
        new_status = TripCharge.ChargeStatus.UNDER_REVIEW
    else:
        new_status = TripCharge.ChargeStatus.FAILED

    with transaction.atomic():
        updated = TripCharge.objects.filter(
            pk=trip_charge.pk,
            charge_status=TripCharge.ChargeStatus.PENDING,
            version=trip_charge.version,
        ).update(
            charge_status=new_status,
            stripe_charge_id=result.charge_id or "",
            charged_at=now if result.succeeded else None,
            charge_attempts=F("charge_attempts") + 1,
            last_charge_error=result.error or "",
            hold_until=None,
            version=F("version") + 1,
            updated_at=now,
        )
        if not updated:
            logger.warning(
                "bookings: trip charge changed before the payment outcome was stored",
                extra={"trip_charge_id": trip_charge.pk, "charge_status": result.status},
            )
            return result
        payment_status = _BOOKING_PAYMENT_STATUS.get(new_status)
        if payment_status:
            Booking.objects.filter(pk=booking.pk).update(payment_status=payment_status, updated_at=now)
        if result.succeeded:
            log_transaction(
                user=booking.guest,
                booking=booking,
                kind=Transaction.Kind.TRIP_CHARGE,
                amount=trip_charge.total_charges,
                stripe_id=result.charge_id,
            )
    return result


def first_error_code(exc: ValidationError) -> str:
    """Machine-readable code of the first error in a field-keyed ValidationError."""
    for errors in getattr(exc, "error_dict", {}).values():
        for error in errors:
            if error.code:
                return error.code
    return getattr(exc, "code", None) or "invalid"
