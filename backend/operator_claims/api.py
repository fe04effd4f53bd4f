from __future__ import annotations

import logging

from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response

from claims.exceptions import ClaimError
from claims.models import Claim
from claims.services.recovery import approve_claim, charge_guest_for_claim, deny_claim
from operator_claims.filters import OperatorClaimFilter, PendingTransferFilter
from operator_claims.serializers import (
    ApproveClaimSerializer,
    ChargeClaimSerializer,
    OperatorClaimSerializer,
    PendingTransferSerializer,
    ReasonSerializer,
)
from operator_core.api_base import ALLOWED_OPERATOR_ROLES, OperatorAPIView, OperatorThrottleMixin
from operator_core.audit import audit_request
from operator_core.models import OperatorAuditEvent
from operator_core.permissions import HasOperatorRole, IsOperator
from payments.models import PendingTransfer
from payments.transfers import reconciliation_queue, retry_pending_transfer

logger = logging.getLogger(__name__)

FINANCE_ROLES = ("operator_finance", "operator_admin")

RECOVERY_ERROR_STATUS = {
    "invalid_amount": status.HTTP_400_BAD_REQUEST,
    "exceeds_outstanding": status.HTTP_400_BAD_REQUEST,
    "payment_failed": status.HTTP_402_PAYMENT_REQUIRED,
}


class OperatorQueuePagination(PageNumberPagination):
    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 100


def _claims():
    return Claim.objects.select_related(
        "booking", "booking__listing", "booking__guest", "host", "reviewed_by"
    )


class OperatorClaimListView(OperatorThrottleMixin, generics.ListAPIView):
    serializer_class = OperatorClaimSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OperatorClaimFilter
    pagination_class = OperatorQueuePagination
    http_method_names = ["get"]

    def get_queryset(self):
        return _claims().order_by("created_at", "id")


class OperatorClaimDetailView(OperatorThrottleMixin, generics.RetrieveAPIView):
    serializer_class = OperatorClaimSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(ALLOWED_OPERATOR_ROLES)]
    http_method_names = ["get"]

    def get_queryset(self):
        return _claims()


class OperatorClaimDecisionBase(OperatorAPIView):
    permission_classes = [IsOperator, HasOperatorRole.with_roles(FINANCE_ROLES)]
    http_method_names = ["post"]
    verb = ""

    def decide(self, claim: Claim, data: dict, actor) -> Claim:
        raise NotImplementedError

    def get_serializer(self, data):
        return ReasonSerializer(data=data)

    def post(self, request, pk: int):
        claim = get_object_or_404(_claims(), pk=pk)
        serializer = self.get_serializer(request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = claim.state_snapshot()
        try:
            claim = self.decide(claim, data, request.user)
        except ClaimError as exc:
            return Response(exc.as_response_data(), status=exc.status_code)

        audit_request(
            request,
            action=f"operator.claim.{self.verb}",
            entity_type=OperatorAuditEvent.EntityType.CLAIM,
            entity_id=claim.pk,
            reason=data["reason"],
            before=before,
            after=claim.state_snapshot(),
            meta={"booking_id": claim.booking_id},
        )
        return Response(OperatorClaimSerializer(_claims().get(pk=claim.pk)).data)


class OperatorClaimApproveView(OperatorClaimDecisionBase):
    verb = "approve"

    def get_serializer(self, data):
        return ApproveClaimSerializer(data=data)

    def decide(self, claim, data, actor):
        return approve_claim(
            claim, approved_amount=data["approved_amount"], reviewer=actor, notes=data["notes"]
        )


class OperatorClaimDenyView(OperatorClaimDecisionBase):
    verb = "deny"

    def decide(self, claim, data, actor):
        return deny_claim(claim, reviewer=actor, notes=data["notes"])


class OperatorClaimChargeView(OperatorAPIView):
    """Charge the guest toward an approved claim; the host payout follows separately."""

    permission_classes = [IsOperator, HasOperatorRole.with_roles(FINANCE_ROLES)]
    http_method_names = ["post"]

    def post(self, request, pk: int):
        claim = get_object_or_404(_claims(), pk=pk)
        serializer = ChargeClaimSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        before = claim.state_snapshot()
        result = charge_guest_for_claim(claim, data["amount"])
        if not result.ok:
            return Response(
                {"detail": result.message, "code": result.code},
                status=RECOVERY_ERROR_STATUS.get(result.code, status.HTTP_409_CONFLICT),
            )

        pending = result.pending_transfer
        audit_request(
            request,
            action="operator.claim.charge",
            entity_type=OperatorAuditEvent.EntityType.CLAIM,
            entity_id=claim.pk,
            reason=data["reason"],
            before=before,
            after=result.claim.state_snapshot(),
            meta={
                "amount": str(data["amount"]),
                "charge_id": result.charge_id,
                "pending_transfer_id": pending.pk if pending else None,
                "transfer_status": pending.status if pending else None,
            },
        )
        return Response(
            {
                "claim": OperatorClaimSerializer(_claims().get(pk=claim.pk)).data,
                "charge_id": result.charge_id,
                "pending_transfer": PendingTransferSerializer(pending).data if pending else None,
            }
        )


class PendingTransferListView(OperatorThrottleMixin, generics.ListAPIView):
    """Host payouts; defaults to the reconciliation queue (PENDING, FAILED and stuck IN_FLIGHT)."""

    serializer_class = PendingTransferSerializer
    permission_classes = [IsOperator, HasOperatorRole.with_roles(FINANCE_ROLES)]
    filter_backends = [DjangoFilterBackend]
    filterset_class = PendingTransferFilter
    pagination_class = OperatorQueuePagination
    http_method_names = ["get"]

    def get_queryset(self):
        if "status" in self.request.query_params:
            queryset = PendingTransfer.objects.select_related("host")
        else:
            queryset = reconciliation_queue()
        return queryset.order_by("created_at", "id")


class PendingTransferRetryView(OperatorAPIView):
    permission_classes = [IsOperator, HasOperatorRole.with_roles(FINANCE_ROLES)]
    http_method_names = ["post"]

    def post(self, request, pk: int):
        pending = get_object_or_404(PendingTransfer, pk=pk)
        serializer = ReasonSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        before = {"status": pending.status, "attempts": pending.attempts}
        try:
            pending = retry_pending_transfer(pending)
        except ValueError as exc:
            return Response(
                {"detail": str(exc), "code": "not_retryable"}, status=status.HTTP_409_CONFLICT
            )

        audit_request(
            request,
            action="operator.pending_transfer.retry",
            entity_type=OperatorAuditEvent.EntityType.PENDING_TRANSFER,
            entity_id=pending.pk,
            reason=serializer.validated_data["reason"],
            before=before,
            after={"status": pending.status, "attempts": pending.attempts},
            meta={"last_error": pending.last_error or None},
        )
        logger.info(
            "operator: pending transfer retried",
            extra={"pending_transfer_id": pending.pk, "transfer_status": pending.status},
        )
        return Response(PendingTransferSerializer(pending).data)
