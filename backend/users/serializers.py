from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from operator_users.models import Appeal, ModerationAction

User = get_user_model()


class ProfileSerializer(serializers.ModelSerializer):
    has_payment_method = serializers.BooleanField(read_only=True)

    class Meta:
        model = User
        fields = [
            "id",
            "username",
            "email",
            "first_name",
            "last_name",
            "phone",
            "email_verified",
            "can_rent",
            "can_list",
            "has_payment_method",
        ]
        read_only_fields = ["id", "username", "email_verified", "can_rent", "can_list"]


class AccountActionSerializer(serializers.ModelSerializer):
    """What the account holder may see about an action taken on them."""

    appeals_used = serializers.SerializerMethodField()

    class Meta:
        model = ModerationAction
        fields = [
            "id",
            "action",
            "applied_roles",
            "level",
            "reason",
            "expires_at",
            "lifted_at",
            "created_at",
            "appeals_used",
        ]
        read_only_fields = fields

    def get_appeals_used(self, obj) -> int:
        return obj.appeals.count()


class AccountAppealSerializer(serializers.ModelSerializer):
    class Meta:
        model = Appeal
        fields = ["id", "action", "statement", "status", "decision_notes", "decided_at", "created_at"]
        read_only_fields = fields


class AppealCreateSerializer(serializers.Serializer):
    action = serializers.PrimaryKeyRelatedField(queryset=ModerationAction.objects.none())
    statement = serializers.CharField(max_length=5000)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        request = self.context.get("request")
        if request is not None and request.user.is_authenticated:
            self.fields["action"].queryset = ModerationAction.objects.filter(user=request.user)
