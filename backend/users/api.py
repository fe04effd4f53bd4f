"""Account endpoints: profile, moderation standing and appeals."""

from __future__ import annotations

import logging

from django.conf import settings
from rest_framework import generics, permissions, status
from rest_framework.response import Response
from rest_framework.views import APIView

from operator_users.models import Appeal, ModerationAction
from operator_users.services import submit_appeal

from .models import GuestProfile, HostProfile
from .serializers import (
    AccountActionSerializer,
    AccountAppealSerializer,
    AppealCreateSerializer,
    ProfileSerializer,
)

logger = logging.getLogger(__name__)


class MeView(generics.RetrieveUpdateAPIView):
    """Authenticated profile view for the current user."""

    serializer_class = ProfileSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_object(self):
        return self.request.user


class StandingView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request):
        user = request.user
        guest = GuestProfile.objects.filter(user=user).first()
        host = HostProfile.objects.filter(user=user).first()
        actions = ModerationAction.objects.filter(user=user).prefetch_related("appeals")[:20]
        return Response(
            {
                "guest": guest.suspension_snapshot() if guest else None,
                "host": host.suspension_snapshot() if host else None,
                "account_hold": bool(guest and guest.account_hold),
                "max_appeals_per_action": settings.MODERATION_MAX_APPEALS_PER_ACTION,
                "actions": AccountActionSerializer(actions, many=True).data,
            }
        )


class AppealListCreateView(generics.ListCreateAPIView):
    serializer_class = AccountAppealSerializer
    permission_classes = [permissions.IsAuthenticated]
    pagination_class = None

    def get_queryset(self):
        return Appeal.objects.filter(user=self.request.user).order_by("-created_at", "-id")

    def create(self, request, *args, **kwargs):
        serializer = AppealCreateSerializer(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        result = submit_appeal(
            request.user,
            serializer.validated_data["action"],
            serializer.validated_data["statement"],
        )
        if not result.ok:
            code = (
                status.HTTP_400_BAD_REQUEST
                if result.code == "statement_required"
                else status.HTTP_409_CONFLICT
            )
            return Response({"detail": result.message, "code": result.code}, status=code)
        logger.info(
            "moderation: appeal submitted",
            extra={"appeal_id": result.appeal.pk, "moderation_action_id": result.appeal.action_id},
        )
        return Response(self.get_serializer(result.appeal).data, status=status.HTTP_201_CREATED)
