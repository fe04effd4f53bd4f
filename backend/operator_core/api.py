from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics
from rest_framework.response import Response

from operator_core.api_base import ALLOWED_OPERATOR_ROLES, OperatorAPIView, OperatorThrottleMixin
from operator_core.filters import OperatorAuditEventFilter
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import HasOperatorRole, IsOperator
from operator_core.serializers import OperatorAuditEventSerializer


class OperatorMeView(OperatorAPIView):
    permission_classes = [IsOperator]

    def get(self, request):
        user = request.user
        name = (user.get_full_name() or user.username or user.email or "").strip()
        return Response(
            {
                "id": user.id,
                "email": user.email,
                "name": name,
                "is_staff": user.is_staff,
                "roles": list(user.groups.values_list("name", flat=True)),
            }
        )


class OperatorAuditEventListView(OperatorThrottleMixin, generics.ListAPIView):
    """Most recent audit events first; capped at 200 rows."""

    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    serializer_class = OperatorAuditEventSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = OperatorAuditEventFilter

    def get_queryset(self):
        return OperatorAuditEvent.objects.select_related("actor")

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())[:200]
        return Response(self.get_serializer(queryset, many=True).data)
