from rest_framework import serializers

from operator_core.models import OperatorAuditEvent


class OperatorAuditEventSerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()
    before = serializers.JSONField(source="before_json", read_only=True)
    after = serializers.JSONField(source="after_json", read_only=True)
    meta = serializers.JSONField(source="meta_json", read_only=True)

    class Meta:
        model = OperatorAuditEvent
        fields = [
            "id",
            "actor",
            "action",
            "entity_type",
            "entity_id",
            "reason",
            "before",
            "after",
            "meta",
            "ip",
            "created_at",
        ]
        read_only_fields = fields

    def get_actor(self, obj):
        if obj.actor is None:
            return None
        return {"id": obj.actor_id, "username": obj.actor.username, "email": obj.actor.email}
