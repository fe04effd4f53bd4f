from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from disputes.services.resolution import resolve_charge_dispute
from operator_core.api_base import ALLOWED_OPERATOR_ROLES, OperatorAPIView, OperatorThrottleMixin
from operator_core.audit import audit_request
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import HasOperatorRole, IsOperator
from operator_disputes.filters import OperatorTripChargeFilter
from operator_disputes.serializers import OperatorTripChargeSerializer, ResolveDisputeSerializer
from trip_charges.models import TripCharge

logger = logging.getLogger(__name__)

RESOLUTION_ROLES = ("operator_support", "operator_finance", "operator_admin")

ERROR_STATUS = {
    "invalid_action": status.HTTP_400_BAD_REQUEST,
    "invalid_percentage": status.HTTP_400_BAD_REQUEST,
    "payment_failed": status.HTTP_402_PAYMENT_REQUIRED,
}


class TripChargePagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


def _base_queryset():
    return TripCharge.objects.select_related(
        "booking",
        "booking__listing",
        "booking__guest",
        "booking__host",
        "resolved_by",
    ).prefetch_related("dispute_lines")


class OperatorTripChargeListView(OperatorThrottleMixin, generics.ListAPIView):
    """Trip charges for review; oldest disputes first so nothing ages out of sight."""

    serializer_class = OperatorTripChargeSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OperatorTripChargeFilter
    pagination_class = TripChargePagination
    http_method_names = ["get"]

    def get_queryset(self):
        return _base_queryset().order_by("disputed_at", "created_at", "id")


class OperatorTripChargeDetailView(OperatorThrottleMixin, generics.RetrieveAPIView):
    serializer_class = OperatorTripChargeSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    http_method_names = ["get"]

    def get_queryset(self):
        return _base_queryset()


class OperatorTripChargeResolveView(OperatorAPIView):
    permission_classes = [IsOperator, HasOperatorRole.with_roles(RESOLUTION_ROLES)]
    http_method_names = ["post"]

    def post(self, request, pk: int):
        trip_charge = get_object_or_404(TripCharge.objects.select_related("booking"), pk=pk)
        serializer = ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = trip_charge.state_snapshot()
        result = resolve_charge_dispute(
            trip_charge,
            action=data["action"],
            actor=request.user,
            notes=data["notes"],
            waive_percentage=data.get("waive_percentage"),
        )
        if not result.ok:
            return Response(
                {"detail": result.message, "code": result.code},
                status=ERROR_STATUS.get(result.code, status.HTTP_409_CONFLICT),
            )

        audit_request(
            request,
            action=f"operator.trip_charge.{data['action']}",
            entity_type=OperatorAuditEvent.EntityType.TRIP_CHARGE,
            entity_id=trip_charge.pk,
            reason=data["reason"],
            before=before,
            after=result.trip_charge.state_snapshot(),
            meta={"booking_id": trip_charge.booking_id, "waive_percentage": data.get("waive_percentage")},
        )
        refreshed = _base_queryset().get(pk=trip_charge.pk)
        return Response(OperatorTripChargeSerializer(refreshed).data)
