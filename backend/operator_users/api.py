from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from operator_core.api_base import ALLOWED_OPERATOR_ROLES, OperatorAPIView, OperatorThrottleMixin
from operator_core.audit import audit_request
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import HasOperatorRole, IsOperator
from operator_users.filters import AppealFilter, OperatorUserFilter
from operator_users.models import Appeal, ModerationAction
from operator_users.serializers import (
    AppealDecisionSerializer,
    AppealSerializer,
    ModerationActionSerializer,
    ModerationRequestSerializer,
    OperatorUserDetailSerializer,
    OperatorUserListSerializer,
)
from operator_users.services import apply_moderation, decide_appeal
from users.models import GuestProfile, HostProfile

User = get_user_model()

MODERATION_ROLES = ("operator_moderator", "operator_admin")

VALIDATION_CODES = {
    "invalid_action",
    "invalid_role",
    "invalid_level",
    "invalid_expiry",
    "invalid_escalation",
    "reason_required",
    "invalid_decision",
}

AUDIT_VERBS = {
    ModerationAction.Action.WARN: "warn",
    ModerationAction.Action.SUSPEND: "suspend",
    ModerationAction.Action.BAN: "ban",
    ModerationAction.Action.UNSUSPEND: "unsuspend",
}


class OperatorUserPagination(PageNumberPagination):
    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 200


def _error_response(result):
    code = status.HTTP_400_BAD_REQUEST if result.code in VALIDATION_CODES else status.HTTP_409_CONFLICT
    return Response({"detail": result.message, "code": result.code}, status=code)


def standing_snapshot(user) -> dict:
    guest = GuestProfile.objects.filter(user=user).first()
    host = HostProfile.objects.filter(user=user).first()
    return {
        "guest": guest.suspension_snapshot() if guest else None,
        "host": host.suspension_snapshot() if host else None,
    }


class OperatorUserListView(OperatorThrottleMixin, generics.ListAPIView):
    serializer_class = OperatorUserListSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OperatorUserFilter
    pagination_class = OperatorUserPagination
    http_method_names = ["get"]

    def get_queryset(self):
        return User.objects.order_by("-date_joined", "-id")


class OperatorUserDetailView(OperatorThrottleMixin, generics.RetrieveAPIView):
    serializer_class = OperatorUserDetailSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    http_method_names = ["get"]
    queryset = User.objects.all()


class OperatorUserModerateView(OperatorAPIView):
    """Warn, suspend, ban or reinstate a user; escalation picks the affected roles."""

    permission_classes = [IsOperator, HasOperatorRole.with_roles(MODERATION_ROLES)]
    http_method_names = ["post"]

    def post(self, request, pk: int):
        user = get_object_or_404(User, pk=pk)
        serializer = ModerationRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        action_type = serializer.validated_data["action"]

        before = standing_snapshot(user)
        result = apply_moderation(
            user, action=action_type, actor=request.user, **serializer.to_service_kwargs()
        )
        if not result.ok:
            return _error_response(result)

        after = standing_snapshot(user)
        audit_request(
            request,
            action=f"operator.user.{AUDIT_VERBS[action_type]}",
            entity_type=OperatorAuditEvent.EntityType.USER,
            entity_id=user.pk,
            reason=serializer.validated_data["reason"],
            before=before,
            after=after,
            meta={
                "moderation_action_id": result.action.pk,
                "roles": list(result.roles),
                "cancelled_bookings": result.cancelled_bookings,
            },
        )
        return Response(
            {
                "ok": True,
                "action": ModerationActionSerializer(result.action).data,
                "standing": after,
            },
            status=status.HTTP_201_CREATED,
        )


class OperatorAppealListView(OperatorThrottleMixin, generics.ListAPIView):
    serializer_class = AppealSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    filter_backends = [DjangoFilterBackend]
    filterset_class = AppealFilter
    pagination_class = OperatorUserPagination
    http_method_names = ["get"]

    def get_queryset(self):
        return Appeal.objects.select_related("action", "action__taken_by").order_by("created_at", "id")


class OperatorAppealDecideView(OperatorAPIView):
    permission_classes = [IsOperator, HasOperatorRole.with_roles(MODERATION_ROLES)]
    http_method_names = ["post"]

    def post(self, request, pk: int):
        appeal = get_object_or_404(Appeal.objects.select_related("action"), pk=pk)
        serializer = AppealDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = {"status": appeal.status, "standing": standing_snapshot(appeal.user)}
        result = decide_appeal(
            appeal, decision=data["decision"], actor=request.user, notes=data["notes"]
        )
        if not result.ok:
            return _error_response(result)

        audit_request(
            request,
            action=f"operator.appeal.{data['decision']}",
            entity_type=OperatorAuditEvent.EntityType.APPEAL,
            entity_id=appeal.pk,
            reason=data["reason"],
            before=before,
            after={"status": result.appeal.status, "standing": standing_snapshot(appeal.user)},
            meta={"moderation_action_id": appeal.action_id, "lifted_roles": result.lifted_roles},
        )
        return Response(AppealSerializer(result.appeal).data)
