from __future__ import annotations

from rest_framework import serializers

from disputes.models import ChargeDispute
from trip_charges.models import TripCharge


class ChargeDisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = ChargeDispute
        fields = ["id", "category", "reason", "raised_by", "created_at"]
        read_only_fields = fields


class TripChargeSerializer(serializers.ModelSerializer):
    dispute_lines = ChargeDisputeSerializer(many=True, read_only=True)
    breakdown = serializers.SerializerMethodField()

    class Meta:
        model = TripCharge
        fields = [
            "id",
            "booking",
            "charge_status",
            "breakdown",
            "subtotal",
            "taxes",
            "total_charges",
            "original_total",
            "requires_approval",
            "hold_until",
            "validation_warnings",
            "guest_note",
            "stripe_charge_id",
            "charged_at",
            "charge_attempts",
            "last_charge_error",
            "disputed_at",
            "dispute_resolution",
            "dispute_resolved_at",
            "dispute_notes",
            "waive_percentage",
            "version",
            "dispute_lines",
            "created_at",
        ]
        read_only_fields = fields

    def get_breakdown(self, obj: TripCharge) -> list:
        return list((obj.charges or {}).get("breakdown") or [])
