from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from bookings.models import Booking

from .models import Claim


class ClaimSerializer(serializers.ModelSerializer):
    outstanding_amount = serializers.DecimalField(max_digits=10, decimal_places=2, read_only=True)
    vehicle = serializers.CharField(source="booking.listing.title", read_only=True)

    class Meta:
        model = Claim
        fields = [
            "id",
            "booking",
            "host",
            "vehicle",
            "type",
            "status",
            "description",
            "incident_date",
            "estimated_cost",
            "primary_payer",
            "hierarchy",
            "deductible",
            "guest_at_fault",
            "guest_response_deadline",
            "guest_response",
            "guest_responded_at",
            "approved_amount",
            "recovered_from_guest",
            "recovery_reserved",
            "recovery_status",
            "outstanding_amount",
            "reviewed_at",
            "review_notes",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ClaimCreateSerializer(serializers.Serializer):
    booking = serializers.PrimaryKeyRelatedField(queryset=Booking.objects.select_related("listing"))
    type = serializers.ChoiceField(choices=Claim.Type.choices)
    description = serializers.CharField(max_length=5000)
    incident_date = serializers.DateField()
    estimated_cost = serializers.DecimalField(
        max_digits=10,
        decimal_places=2,
        min_value=Decimal("0"),
        required=False,
        allow_null=True,
    )


class GuestResponseSerializer(serializers.Serializer):
    response = serializers.CharField(max_length=5000)
