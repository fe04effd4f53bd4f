from django.contrib.auth import get_user_model
from rest_framework import serializers

from bookings.models import Booking
from claims.models import Claim
from operator_users.escalation import Escalation
from operator_users.models import Appeal, ModerationAction, ModerationRole
from users.models import GuestProfile, HostProfile, SuspensionLevel

User = get_user_model()


def _standing(profile):
    if profile is None:
        return None
    return profile.suspension_snapshot()


class ModerationActionSerializer(serializers.ModelSerializer):
    taken_by = serializers.CharField(source="taken_by.username", read_only=True, default=None)

    class Meta:
        model = ModerationAction
        fields = [
            "id",
            "user",
            "action",
            "role",
            "applied_roles",
            "level",
            "violation_type",
            "escalation",
            "reason",
            "expires_at",
            "related_booking",
            "related_claim",
            "cancelled_bookings",
            "taken_by",
            "lifted_at",
            "created_at",
        ]
        read_only_fields = fields


class OperatorUserListSerializer(serializers.ModelSerializer):
    guest_standing = serializers.SerializerMethodField()
    host_standing = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "can_rent",
            "can_list",
            "is_active",
            "date_joined",
            "guest_standing",
            "host_standing",
        ]
        read_only_fields = fields

    def get_guest_standing(self, obj):
        return _standing(GuestProfile.objects.filter(user=obj).first())

    def get_host_standing(self, obj):
        return _standing(HostProfile.objects.filter(user=obj).first())


class OperatorUserDetailSerializer(OperatorUserListSerializer):
    moderation_actions = serializers.SerializerMethodField()

    class Meta(OperatorUserListSerializer.Meta):
        fields = [*OperatorUserListSerializer.Meta.fields, "moderation_actions"]
        read_only_fields = fields

    def get_moderation_actions(self, obj):
        actions = ModerationAction.objects.filter(user=obj).select_related("taken_by")[:50]
        return ModerationActionSerializer(actions, many=True).data


class ModerationRequestSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=ModerationAction.Action.choices)
    role = serializers.ChoiceField(choices=ModerationRole.choices)
    reason = serializers.CharField()
    level = serializers.ChoiceField(
        choices=[SuspensionLevel.SOFT, SuspensionLevel.HARD], required=False
    )
    violation_type = serializers.CharField(required=False, allow_blank=True, default="")
    escalation = serializers.ChoiceField(
        choices=[Escalation.ROLE, Escalation.BOTH], required=False, allow_null=True
    )
    expires_at = serializers.DateTimeField(required=False, allow_null=True)
    auto_reactivate = serializers.BooleanField(required=False, default=True)
    related_booking = serializers.PrimaryKeyRelatedField(
        queryset=Booking.objects.all(), required=False, allow_null=True
    )
    related_claim = serializers.PrimaryKeyRelatedField(
        queryset=Claim.objects.all(), required=False, allow_null=True
    )

    def validate(self, attrs):
        action = attrs["action"]
        if action == ModerationAction.Action.SUSPEND and not attrs.get("level"):
            raise serializers.ValidationError({"level": "level is required to suspend."})
        if action in (ModerationAction.Action.SUSPEND, ModerationAction.Action.BAN) and not (
            attrs.get("violation_type") or ""
        ).strip():
            raise serializers.ValidationError({"violation_type": "violation_type is required."})
        return attrs

    def to_service_kwargs(self) -> dict:
        data = self.validated_data
        action = data["action"]
        kwargs = {"role": data["role"], "reason": data["reason"]}
        if action == ModerationAction.Action.UNSUSPEND:
            return kwargs
        kwargs["related_booking"] = data.get("related_booking")
        kwargs["related_claim"] = data.get("related_claim")
        kwargs["violation_type"] = data.get("violation_type", "")
        if action == ModerationAction.Action.WARN:
            return kwargs
        kwargs["escalation_override"] = data.get("escalation")
        if action == ModerationAction.Action.SUSPEND:
            kwargs["level"] = data["level"]
            kwargs["expires_at"] = data.get("expires_at")
            kwargs["auto_reactivate"] = data.get("auto_reactivate", True)
        return kwargs


class AppealSerializer(serializers.ModelSerializer):
    action = ModerationActionSerializer(read_only=True)

    class Meta:
        model = Appeal
        fields = [
            "id",
            "user",
            "action",
            "statement",
            "status",
            "decision_notes",
            "decided_at",
            "created_at",
        ]
        read_only_fields = fields


class AppealDecisionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=["approve", "deny"])
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField()
