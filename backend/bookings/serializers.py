"""Serializers for booking-related API endpoints."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from trip_charges.calculations import AdHocCharge, resolve_cleaning_charge, resolve_damage_charge
from trip_charges.categories import CleaningType, DamageSeverity, resolve_category
from trip_charges.models import TripCharge
from trip_charges.rates import RateTable
from trip_charges.serializers import TripChargeSerializer

from .domain import PaymentChoice
from .models import Booking


class BookingSerializer(serializers.ModelSerializer):
    listing_title = serializers.CharField(source="listing.title", read_only=True)
    number_of_days = serializers.IntegerField(read_only=True)
    trip_charge = serializers.SerializerMethodField()

    class Meta:
        model = Booking
        fields = [
            "id",
            "listing",
            "listing_title",
            "host",
            "guest",
            "start_at",
            "end_at",
            "status",
            "payment_status",
            "trip_started_at",
            "trip_ended_at",
            "start_mileage",
            "end_mileage",
            "fuel_level_start",
            "fuel_level_end",
            "deposit_amount",
            "number_of_days",
            "trip_charge",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_trip_charge(self, obj: Booking):
        trip_charge = TripCharge.objects.filter(booking=obj).prefetch_related("dispute_lines").first()
        if trip_charge is None:
            return None
        return TripChargeSerializer(trip_charge).data


class DamageInputSerializer(serializers.Serializer):
    reported = serializers.BooleanField(default=True)
    severity = serializers.ChoiceField(
        choices=[c for c in DamageSeverity.choices if c[0] != DamageSeverity.NONE],
        required=False,
        allow_blank=True,
    )
    amount = serializers.DecimalField(
        max_digits=10, decimal_places=2, min_value=Decimal("0"), required=False, allow_null=True
    )
    description = serializers.CharField(required=False, allow_blank=True, max_length=500)


class CleaningInputSerializer(serializers.Serializer):
    required = serializers.BooleanField(default=True)
    cleaning_type = serializers.ChoiceField(choices=CleaningType.choices, required=False)


class ExtraChargeSerializer(serializers.Serializer):
    type = serializers.CharField(max_length=64)
    cost = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("0"))
    description = serializers.CharField(required=False, allow_blank=True, max_length=255)


class DisputeReasonSerializer(serializers.Serializer):
    category = serializers.CharField(max_length=64)
    reason = serializers.CharField(max_length=2000)


class TripEndSerializer(serializers.Serializer):
    end_mileage = serializers.IntegerField()
    fuel_level_end = serializers.CharField(max_length=8)
    damage = DamageInputSerializer(required=False)
    cleaning = CleaningInputSerializer(required=False)
    extra_charges = ExtraChargeSerializer(many=True, required=False)
    disputes = DisputeReasonSerializer(many=True, required=False)
    payment_choice = serializers.ChoiceField(
        choices=PaymentChoice.choices, default=PaymentChoice.PAY_LATER
    )
    guest_note = serializers.CharField(required=False, allow_blank=True, max_length=2000)

    def to_end_trip_kwargs(self, *, rates: RateTable | None = None) -> dict:
        """Turn validated input into the typed arguments of bookings.domain.end_trip."""
        data = self.validated_data
        rates = rates or RateTable.from_settings()

        damage = None
        damage_data = data.get("damage")
        if damage_data:
            damage = resolve_damage_charge(
                damage_data.get("reported", True),
                damage_data.get("severity") or None,
                damage_data.get("amount"),
                rates=rates,
            )

        cleaning = None
        cleaning_data = data.get("cleaning")
        if cleaning_data:
            cleaning = resolve_cleaning_charge(
                cleaning_data.get("required", True),
                cleaning_data.get("cleaning_type"),
                rates=rates,
            )

        extra_charges = [
            AdHocCharge(
                category=resolve_category(item["type"]),
                cost=item["cost"],
                description=item.get("description") or item["type"],
            )
            for item in data.get("extra_charges") or []
        ]
        return {
            "end_mileage": data["end_mileage"],
            "fuel_level_end": data["fuel_level_end"],
            "damage": damage,
            "cleaning": cleaning,
            "extra_charges": extra_charges,
            "disputes": [dict(item) for item in data.get("disputes") or []],
            "payment_choice": data["payment_choice"],
            "guest_note": data.get("guest_note", ""),
            "rates": rates,
        }


class TripDisputeSerializer(serializers.Serializer):
    disputes = DisputeReasonSerializer(many=True, allow_empty=False)
