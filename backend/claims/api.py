"""Host and guest facing claim endpoints."""

from __future__ import annotations

import logging

from django.db.models import Q
from django.shortcuts import get_object_or_404
from rest_framework import mixins, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from .exceptions import ClaimError
from .models import Claim
from .serializers import ClaimCreateSerializer, ClaimSerializer, GuestResponseSerializer
from .services.filing import file_claim, submit_guest_response
from .services.hierarchy import hierarchy_for_booking

logger = logging.getLogger(__name__)


class IsClaimParticipant(permissions.BasePermission):
    def has_object_permission(self, request, view, obj: Claim) -> bool:
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.host_id, obj.booking.guest_id)


class ClaimViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    serializer_class = ClaimSerializer
    permission_classes = (permissions.IsAuthenticated, IsClaimParticipant)

    def get_queryset(self):
        user = self.request.user
        return (
            Claim.objects.select_related("booking", "booking__listing", "host")
            .filter(Q(host=user) | Q(booking__guest=user))
            .order_by("-created_at")
        )

    def get_object(self):
        obj = get_object_or_404(
            Claim.objects.select_related("booking", "booking__listing", "host"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    def create(self, request, *args, **kwargs):
        """File a claim for one of the host's bookings."""
        serializer = ClaimCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        booking = data["booking"]
        if booking.host_id != request.user.id:
            return Response(
                {"detail": "Only the booking's host can file a claim."},
                status=status.HTTP_403_FORBIDDEN,
            )
        try:
            claim = file_claim(
                booking=booking,
                host=request.user,
                claim_type=data["type"],
                description=data["description"],
                incident_date=data["incident_date"],
                estimated_cost=data.get("estimated_cost"),
            )
        except ClaimError as exc:
            return Response(exc.as_response_data(), status=exc.status_code)
        return Response(ClaimSerializer(claim).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"], url_path="hierarchy")
    def hierarchy(self, request, *args, **kwargs):
        claim: Claim = self.get_object()
        resolved = hierarchy_for_booking(claim.booking, claim.policy)
        return Response(resolved.to_dict())

    @action(detail=True, methods=["post"], url_path="respond")
    def respond(self, request, *args, **kwargs):
        """Guest statement, accepted only before the response deadline."""
        claim: Claim = self.get_object()
        serializer = GuestResponseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            claim = submit_guest_response(
                claim, guest=request.user, response=serializer.validated_data["response"]
            )
        except ClaimError as exc:
            return Response(exc.as_response_data(), status=exc.status_code)
        return Response(ClaimSerializer(claim).data)
