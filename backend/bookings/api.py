"""API viewsets and permissions for bookings."""

from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db.models import Q
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from disputes.services.resolution import open_dispute
from trip_charges.models import TripCharge
from trip_charges.serializers import TripChargeSerializer

from .domain import can_end_trip, end_trip, first_error_code
from .models import Booking
from .serializers import BookingSerializer, TripDisputeSerializer, TripEndSerializer

logger = logging.getLogger(__name__)


class IsBookingParticipant(permissions.BasePermission):
    """Allow access only to users tied to the booking."""

    def has_permission(self, request, view) -> bool:
        return True

    def has_object_permission(self, request, view, obj: Booking) -> bool:
        user_id = getattr(request.user, "id", None)
        return user_id in (obj.host_id, obj.guest_id)


class BookingViewSet(viewsets.ReadOnlyModelViewSet):
    """Bookings visible to their host and guest, plus the trip-end flow."""

    serializer_class = BookingSerializer
    permission_classes = (permissions.IsAuthenticated, IsBookingParticipant)

    def get_queryset(self):
        user = self.request.user
        if not user.is_authenticated:
            return Booking.objects.none()
        return (
            Booking.objects.select_related("listing", "host", "guest")
            .filter(Q(host=user) | Q(guest=user))
            .order_by("-created_at")
        )

    def get_object(self):
        obj = get_object_or_404(
            Booking.objects.select_related("listing", "host", "guest"),
            pk=self.kwargs["pk"],
        )
        self.check_object_permissions(self.request, obj)
        return obj

    @action(detail=True, methods=["get", "post"], url_path="trip/end")
    def trip_end(self, request, *args, **kwargs):
        """GET reports whether the trip can be ended; POST ends it (guest-only)."""
        booking: Booking = self.get_object()
        if request.method == "GET":
            return Response(
                {
                    "can_end": can_end_trip(booking),
                    "is_late": booking.is_late(now=timezone.now()),
                    "has_payment_method": booking.guest.has_payment_method,
                    "scheduled_end": booking.end_at,
                    "start_mileage": booking.start_mileage,
                    "fuel_level_start": booking.fuel_level_start,
                }
            )

        if booking.guest_id != request.user.id:
            return Response(
                {"detail": "Only the guest can end this trip."},
                status=status.HTTP_403_FORBIDDEN,
            )
        serializer = TripEndSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            outcome = end_trip(booking, **serializer.to_end_trip_kwargs())
        except ValidationError as exc:
            return Response(
                {**exc.message_dict, "code": first_error_code(exc)},
                status=status.HTTP_400_BAD_REQUEST,
            )

        payload = {
            "booking": BookingSerializer(outcome.booking).data,
            "charges": outcome.charges.to_dict(),
            "warnings": list(outcome.validation.warnings),
            "trip_charge": (
                TripChargeSerializer(outcome.trip_charge).data if outcome.trip_charge else None
            ),
        }
        result = outcome.charge_result
        if result is not None and not result.succeeded:
            payload["payment_error"] = result.error
        return Response(payload, status=status.HTTP_200_OK)

    @action(detail=True, methods=["post"], url_path="trip/dispute")
    def trip_dispute(self, request, *args, **kwargs):
        """Let the guest contest charges that have not been collected yet."""
        booking: Booking = self.get_object()
        if booking.guest_id != request.user.id:
            return Response(
                {"detail": "Only the guest can dispute trip charges."},
                status=status.HTTP_403_FORBIDDEN,
            )
        trip_charge = TripCharge.objects.filter(booking=booking).first()
        if trip_charge is None:
            return Response(
                {"detail": "This trip has no charges to dispute."},
                status=status.HTTP_404_NOT_FOUND,
            )
        serializer = TripDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = open_dispute(
            trip_charge,
            [dict(item) for item in serializer.validated_data["disputes"]],
            raised_by=request.user,
        )
        if not result.ok:
            return Response(
                {"detail": result.message, "code": result.code},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(TripChargeSerializer(result.trip_charge).data)
