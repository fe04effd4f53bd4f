from datetime import timedelta
from unittest.mock import patch

import pytest
from django.test import override_settings
from django.utils import timezone

from bookings.models import Booking
from operator_users.models import Appeal, ModerationAction
from operator_users.services import (
    ban_user,
    decide_appeal,
    lift_expired_suspensions,
    submit_appeal,
    suspend_user,
    unsuspend_user,
    warn_user,
)
from users.models import GuestProfile, HostProfile, SuspensionLevel

pytestmark = pytest.mark.django_db


@pytest.fixture(autouse=True)
def _quiet_notifications():
    with patch("operator_users.services.safe_notify") as mocked:
        yield mocked


@pytest.fixture
def future_booking(booking_factory):
    start = timezone.now() + timedelta(days=5)
    return booking_factory(
        start_at=start,
        status=Booking.Status.CONFIRMED,
        trip_started_at=None,
        start_mileage=None,
    )


def test_warn_increments_warning_count(guest_user, operator_user, _quiet_notifications):
    result = warn_user(guest_user, role="guest", reason="Late return twice", actor=operator_user)

    assert result.ok
    assert result.action.action == ModerationAction.Action.WARN
    profile = GuestProfile.objects.get(user=guest_user)
    assert profile.warning_count == 1
    assert profile.last_warning_at is not None
    assert not profile.is_suspended
    _quiet_notifications.assert_called_once()


def test_reason_is_required(guest_user):
    result = warn_user(guest_user, role="guest", reason="  ")

    assert not result.ok
    assert result.code == "reason_required"
    assert not ModerationAction.objects.exists()


def test_role_specific_soft_suspension_touches_one_profile(host_user):
    expires = timezone.now() + timedelta(days=7)

    result = suspend_user(
        host_user,
        role="host",
        level=SuspensionLevel.SOFT,
        reason="Listing photos misleading",
        violation_type="listing_misrepresentation",
        expires_at=expires,
    )

    assert result.ok
    assert result.roles == ("host",)
    host = HostProfile.objects.get(user=host_user)
    assert host.suspension_level == SuspensionLevel.SOFT
    assert host.suspension_expires_at == expires
    assert not GuestProfile.objects.filter(user=host_user, suspension_level__isnull=False).exists()


def test_severe_violation_suspends_both_roles_and_cancels_future_trips(guest_user, future_booking):
    HostProfile.objects.create(user=guest_user)

    result = suspend_user(
        guest_user,
        role="guest",
        level=SuspensionLevel.HARD,
        reason="Stolen card used at checkout",
        violation_type="payment_fraud",
    )

    assert result.ok
    assert result.roles == ("guest", "host")
    assert result.action.escalation == "both"
    assert GuestProfile.objects.get(user=guest_user).suspension_level == SuspensionLevel.HARD
    assert HostProfile.objects.get(user=guest_user).suspension_level == SuspensionLevel.HARD
    assert result.cancelled_bookings == 1
    future_booking.refresh_from_db()
    assert future_booking.status == Booking.Status.CANCELED
    assert future_booking.canceled_reason.startswith("Account suspended")


def test_soft_suspension_keeps_future_trips(guest_user, future_booking):
    result = suspend_user(
        guest_user,
        role="guest",
        level=SuspensionLevel.SOFT,
        reason="Smoking in vehicle",
        violation_type="smoking",
    )

    assert result.ok
    assert result.cancelled_bookings == 0
    future_booking.refresh_from_db()
    assert future_booking.status == Booking.Status.CONFIRMED


def test_unknown_violation_is_rejected_without_explicit_escalation(guest_user):
    result = suspend_user(
        guest_user,
        role="guest",
        level=SuspensionLevel.SOFT,
        reason="Odd behaviour",
        violation_type="tailgating",
    )

    assert not result.ok
    assert result.code == "unknown_violation_type"
    assert not GuestProfile.objects.get(user=guest_user).is_suspended


def test_past_expiry_is_invalid(guest_user):
    result = suspend_user(
        guest_user,
        role="guest",
        level=SuspensionLevel.SOFT,
        reason="Smoking",
        violation_type="smoking",
        expires_at=timezone.now() - timedelta(minutes=1),
    )

    assert result.code == "invalid_expiry"


def test_ban_is_permanent_and_blocks_suspension(guest_user, future_booking):
    banned = ban_user(guest_user, role="guest", reason="Vehicle not returned", violation_type="vehicle_theft")

    assert banned.ok
    guest = GuestProfile.objects.get(user=guest_user)
    assert guest.is_banned
    assert guest.suspension_expires_at is None
    assert guest.auto_reactivate is False
    assert banned.cancelled_bookings == 1

    again = suspend_user(
        guest_user, role="guest", level=SuspensionLevel.SOFT, reason="x", violation_type="smoking"
    )
    assert again.code == "already_banned"


def test_both_role_suspension_is_all_or_nothing(guest_user):
    HostProfile.objects.create(user=guest_user)
    banned = ban_user(guest_user, role="guest", reason="Repeated smoking", violation_type="smoking")
    assert banned.roles == ("guest",)
    actions_before = ModerationAction.objects.count()

    result = suspend_user(
        guest_user,
        role="host",
        level=SuspensionLevel.HARD,
        reason="Chargeback on a rental",
        violation_type="payment_fraud",
    )

    assert not result.ok
    assert result.code == "already_banned"
    host = HostProfile.objects.get(user=guest_user)
    assert host.suspension_level is None
    assert host.suspended_at is None
    assert host.suspended_reason == ""
    assert GuestProfile.objects.get(user=guest_user).suspension_level == SuspensionLevel.BANNED
    assert ModerationAction.objects.count() == actions_before


def test_unsuspend_clears_fields(guest_user):
    suspend_user(guest_user, role="guest", level="HARD", reason="Smoking", violation_type="smoking")

    result = unsuspend_user(guest_user, role="both", reason="Resolved with guest")

    assert result.ok
    assert result.roles == ("guest",)
    guest = GuestProfile.objects.get(user=guest_user)
    assert guest.suspension_level is None
    assert guest.suspended_reason == ""


def test_unsuspend_without_suspension_is_rejected(guest_user):
    assert unsuspend_user(guest_user, role="guest", reason="nothing").code == "not_suspended"


def test_lift_expired_suspensions_respects_auto_reactivate(guest_user, host_user):
    past = timezone.now() - timedelta(hours=1)
    GuestProfile.objects.filter(user=guest_user).update(
        suspension_level=SuspensionLevel.SOFT, suspension_expires_at=past, auto_reactivate=True
    )
    HostProfile.objects.filter(user=host_user).update(
        suspension_level=SuspensionLevel.HARD, suspension_expires_at=past, auto_reactivate=False
    )

    assert lift_expired_suspensions() == 1
    assert GuestProfile.objects.get(user=guest_user).suspension_level is None
    assert HostProfile.objects.get(user=host_user).suspension_level == SuspensionLevel.HARD


@pytest.fixture
def suspension(guest_user):
    return suspend_user(
        guest_user,
        role="guest",
        level=SuspensionLevel.HARD,
        reason="Smoking",
        violation_type="smoking",
    ).action


def test_only_one_pending_appeal(guest_user, suspension):
    first = submit_appeal(guest_user, suspension, "I do not smoke.")
    second = submit_appeal(guest_user, suspension, "Please look again.")

    assert first.ok
    assert second.code == "appeal_pending"


@override_settings(MODERATION_MAX_APPEALS_PER_ACTION=2)
def test_appeal_limit_per_action(guest_user, operator_user, suspension):
    for _ in range(2):
        appeal = submit_appeal(guest_user, suspension, "Reconsider please.").appeal
        decide_appeal(appeal, decision="deny", actor=operator_user)

    third = submit_appeal(guest_user, suspension, "Third time.")

    assert not third.ok
    assert third.code == "appeal_limit_reached"
    assert Appeal.objects.filter(action=suspension).count() == 2


def test_appeal_by_someone_else_is_rejected(host_user, suspension):
    assert submit_appeal(host_user, suspension, "Not mine").code == "not_action_owner"


def test_approved_appeal_lifts_suspension(guest_user, operator_user, suspension):
    appeal = submit_appeal(guest_user, suspension, "Odour was from the previous guest.").appeal

    result = decide_appeal(appeal, decision="approve", actor=operator_user, notes="Photos confirm")

    assert result.ok
    assert result.appeal.status == Appeal.Status.APPROVED
    assert result.lifted_roles == ["guest"]
    assert not GuestProfile.objects.get(user=guest_user).is_suspended
    suspension.refresh_from_db()
    assert suspension.lifted_at is not None
    assert ModerationAction.objects.filter(
        user=guest_user, action=ModerationAction.Action.UNSUSPEND
    ).exists()
    assert submit_appeal(guest_user, suspension, "again").code == "not_appealable"


def test_denied_appeal_keeps_suspension_and_cannot_be_redecided(guest_user, operator_user, suspension):
    appeal = submit_appeal(guest_user, suspension, "Please.").appeal

    denied = decide_appeal(appeal, decision="deny", actor=operator_user)
    again = decide_appeal(appeal, decision="approve", actor=operator_user)

    assert denied.ok
    assert GuestProfile.objects.get(user=guest_user).suspension_level == SuspensionLevel.HARD
    assert again.code == "appeal_not_pending"


def test_approved_warning_appeal_decrements_count(guest_user, operator_user):
    warning = warn_user(guest_user, role="guest", reason="Late").action
    appeal = submit_appeal(guest_user, warning, "Traffic accident on the highway.").appeal

    decide_appeal(appeal, decision="approve", actor=operator_user)

    assert GuestProfile.objects.get(user=guest_user).warning_count == 0
