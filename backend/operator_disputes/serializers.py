from __future__ import annotations

from rest_framework import serializers

from disputes.services.resolution import DisputeAction
from trip_charges.serializers import TripChargeSerializer


class OperatorTripChargeSerializer(TripChargeSerializer):
    guest = serializers.SerializerMethodField()
    host = serializers.SerializerMethodField()
    vehicle = serializers.CharField(source="booking.listing.title", read_only=True)
    resolved_by = serializers.CharField(source="resolved_by.username", read_only=True, default=None)

    class Meta(TripChargeSerializer.Meta):
        fields = [*TripChargeSerializer.Meta.fields, "guest", "host", "vehicle", "resolved_by"]
        read_only_fields = fields

    @staticmethod
    def _party(user) -> dict:
        return {"id": user.id, "email": user.email, "username": user.username}

    def get_guest(self, obj):
        return self._party(obj.booking.guest)

    def get_host(self, obj):
        return self._party(obj.booking.host)


class ResolveDisputeSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=DisputeAction.choices)
    waive_percentage = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField()
