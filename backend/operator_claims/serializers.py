from decimal import Decimal

from rest_framework import serializers

from claims.serializers import ClaimSerializer
from payments.models import PendingTransfer


class OperatorClaimSerializer(ClaimSerializer):
    guest_email = serializers.EmailField(source="booking.guest.email", read_only=True)
    host_email = serializers.EmailField(source="host.email", read_only=True)
    reviewed_by = serializers.CharField(source="reviewed_by.username", read_only=True, default=None)

    class Meta(ClaimSerializer.Meta):
        fields = [*ClaimSerializer.Meta.fields, "guest_email", "host_email", "reviewed_by"]
        read_only_fields = fields


class PendingTransferSerializer(serializers.ModelSerializer):
    host_email = serializers.EmailField(source="host.email", read_only=True)

    class Meta:
        model = PendingTransfer
        fields = [
            "id",
            "host",
            "host_email",
            "booking",
            "claim",
            "amount",
            "currency",
            "description",
            "status",
            "source_charge_id",
            "stripe_transfer_id",
            "attempts",
            "last_error",
            "last_attempt_at",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields


class ReasonSerializer(serializers.Serializer):
    reason = serializers.CharField()
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class ApproveClaimSerializer(ReasonSerializer):
    approved_amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("0.01"))


class ChargeClaimSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("0.01"))
    reason = serializers.CharField()
