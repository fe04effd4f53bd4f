from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from bookings.models import Booking
from disputes.models import ChargeDispute
from disputes.services.resolution import DisputeAction, open_dispute, resolve_charge_dispute
from notifications.models import NotificationLog
from payments.models import Transaction
from trip_charges.models import TripCharge

pytestmark = pytest.mark.django_db


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_anyway_success(mock_create, trip_charge_factory, operator_user):
    mock_create.return_value = SimpleNamespace(id="pi_dispute", status="succeeded")
    trip_charge = trip_charge_factory()

    result = resolve_charge_dispute(
        trip_charge, action=DisputeAction.CHARGE_ANYWAY, actor=operator_user, notes="Photos confirm damage"
    )

    assert result.ok
    charge = result.trip_charge
    assert charge.charge_status == TripCharge.ChargeStatus.CHARGED
    assert charge.stripe_charge_id == "pi_dispute"
    assert charge.dispute_resolution == "charge_anyway"
    assert charge.dispute_resolved_at is not None
    assert charge.resolved_by == operator_user
    assert charge.version == 1
    assert mock_create.call_args.kwargs["amount"] == 40000
    assert mock_create.call_args.kwargs["idempotency_key"] == (
        f"trip_charge:{trip_charge.pk}:dispute_charge:1"
    )
    charge.booking.refresh_from_db()
    assert charge.booking.payment_status == Booking.PaymentStatus.CHARGES_PAID
    txn = Transaction.objects.get(kind=Transaction.Kind.TRIP_CHARGE)
    assert txn.amount == Decimal("400.00")
    assert txn.stripe_id == "pi_dispute"
    assert NotificationLog.objects.filter(type="trip_charge_resolution").exists()


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_anyway_failure_leaves_charge_disputed(mock_create, trip_charge_factory):
    mock_create.side_effect = stripe.CardError("Declined", param=None, code="card_declined")
    trip_charge = trip_charge_factory()

    result = resolve_charge_dispute(trip_charge, action=DisputeAction.CHARGE_ANYWAY)

    assert not result.ok
    assert result.code == "payment_failed"
    trip_charge.refresh_from_db()
    assert trip_charge.charge_status == TripCharge.ChargeStatus.DISPUTED
    assert trip_charge.version == 0
    assert trip_charge.charge_attempts == 1
    assert trip_charge.last_charge_error
    assert trip_charge.dispute_resolved_at is None
    assert not Transaction.objects.exists()


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_anyway_retry_after_decline_uses_new_key(mock_create, trip_charge_factory):
    mock_create.side_effect = stripe.CardError("Declined", param=None, code="card_declined")
    trip_charge = trip_charge_factory()

    first = resolve_charge_dispute(trip_charge, action=DisputeAction.CHARGE_ANYWAY)
    second = resolve_charge_dispute(trip_charge, action=DisputeAction.CHARGE_ANYWAY)
    mock_create.side_effect = None
    mock_create.return_value = SimpleNamespace(id="pi_new_card", status="succeeded")
    third = resolve_charge_dispute(trip_charge, action=DisputeAction.CHARGE_ANYWAY)

    assert (first.code, second.code) == ("payment_failed", "payment_failed")
    assert third.ok
    keys = [call.kwargs["idempotency_key"] for call in mock_create.call_args_list]
    assert keys == [f"trip_charge:{trip_charge.pk}:dispute_charge:{n}" for n in (1, 2, 3)]
    assert third.trip_charge.charge_attempts == 3


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_captured_after_concurrent_waive_is_still_recorded(mock_create, trip_charge_factory):
    trip_charge = trip_charge_factory()

    def _waived_during_charge(**kwargs):
        TripCharge.objects.filter(pk=trip_charge.pk).update(
            charge_status=TripCharge.ChargeStatus.WAIVED, version=5
        )
        return SimpleNamespace(id="pi_captured", status="succeeded")

    mock_create.side_effect = _waived_during_charge

    result = resolve_charge_dispute(trip_charge, action=DisputeAction.CHARGE_ANYWAY)

    assert not result.ok
    assert result.code == "charged_but_stale"
    charge = result.trip_charge
    assert charge.charge_status == TripCharge.ChargeStatus.WAIVED
    assert charge.stripe_charge_id == "pi_captured"
    assert charge.requires_approval is True
    assert charge.version == 6
    txn = Transaction.objects.get(kind=Transaction.Kind.TRIP_CHARGE)
    assert txn.stripe_id == "pi_captured"
    assert txn.amount == Decimal("400.00")
    assert not NotificationLog.objects.filter(type="trip_charge_resolution").exists()


def test_waive_zeroes_charge_and_marks_booking(trip_charge_factory):
    trip_charge = trip_charge_factory()

    result = resolve_charge_dispute(trip_charge, action=DisputeAction.WAIVE, notes="Goodwill")

    assert result.ok
    assert result.trip_charge.charge_status == TripCharge.ChargeStatus.WAIVED
    assert result.trip_charge.total_charges == Decimal("0.00")
    assert result.trip_charge.original_total == Decimal("400.00")
    booking = Booking.objects.get(pk=trip_charge.booking_id)
    assert booking.payment_status == Booking.PaymentStatus.CHARGES_WAIVED


def test_partial_waive_quarter_of_four_hundred(trip_charge_factory):
    trip_charge = trip_charge_factory(total=Decimal("400.00"))

    result = resolve_charge_dispute(trip_charge, action=DisputeAction.PARTIAL_WAIVE, waive_percentage=25)

    assert result.ok
    assert result.trip_charge.charge_status == TripCharge.ChargeStatus.ADJUSTED
    assert result.trip_charge.total_charges == Decimal("300.00")
    assert result.trip_charge.waive_percentage == 25


@pytest.mark.parametrize("pct", [0, 100, -5, "abc", None, 12.5])
def test_partial_waive_rejects_out_of_range_percentage(trip_charge_factory, pct):
    trip_charge = trip_charge_factory()

    result = resolve_charge_dispute(trip_charge, action=DisputeAction.PARTIAL_WAIVE, waive_percentage=pct)

    assert result.code == "invalid_percentage"
    trip_charge.refresh_from_db()
    assert trip_charge.charge_status == TripCharge.ChargeStatus.DISPUTED
    assert trip_charge.total_charges == Decimal("400.00")


def test_escalate_keeps_dispute_open(trip_charge_factory, operator_user):
    trip_charge = trip_charge_factory()

    first = resolve_charge_dispute(
        trip_charge, action=DisputeAction.ESCALATE, actor=operator_user, notes="Needs finance"
    )
    second = resolve_charge_dispute(trip_charge, action=DisputeAction.ESCALATE, notes="Still open")

    assert first.ok and second.ok
    charge = second.trip_charge
    assert charge.charge_status == TripCharge.ChargeStatus.DISPUTED
    assert charge.requires_approval is True
    assert "escalated by operator: Needs finance" in charge.dispute_notes
    assert charge.dispute_notes.count("escalated by") == 2
    assert charge.dispute_resolved_at is None
    assert not NotificationLog.objects.filter(type="trip_charge_resolution").exists()


@pytest.mark.parametrize(
    "status",
    [TripCharge.ChargeStatus.WAIVED, TripCharge.ChargeStatus.CHARGED, TripCharge.ChargeStatus.PENDING],
)
@pytest.mark.parametrize("action", DisputeAction.values)
def test_resolution_requires_disputed_status(trip_charge_factory, status, action):
    trip_charge = trip_charge_factory(charge_status=status)

    result = resolve_charge_dispute(trip_charge, action=action, waive_percentage=50)

    assert not result.ok
    assert result.code == "not_disputed"
    trip_charge.refresh_from_db()
    assert trip_charge.charge_status == status
    assert trip_charge.version == 0


def test_stale_version_loses_the_race(trip_charge_factory):
    trip_charge = trip_charge_factory()
    # Another operator resolved between our read and write.
    original_refresh = TripCharge.refresh_from_db
    calls = {"n": 0}

    def _refresh(self, *args, **kwargs):
        original_refresh(self, *args, **kwargs)
        calls["n"] += 1
        if calls["n"] == 1:
            TripCharge.objects.filter(pk=self.pk).update(version=5)

    with patch.object(TripCharge, "refresh_from_db", _refresh):
        result = resolve_charge_dispute(trip_charge, action=DisputeAction.WAIVE)

    assert result.code == "stale_status"
    trip_charge.refresh_from_db()
    assert trip_charge.charge_status == TripCharge.ChargeStatus.DISPUTED
    assert trip_charge.total_charges == Decimal("400.00")


def test_unknown_action_is_rejected(trip_charge_factory):
    trip_charge = trip_charge_factory()

    result = resolve_charge_dispute(trip_charge, action="refund")

    assert result.code == "invalid_action"


def test_open_dispute_records_lines(trip_charge_factory, guest_user):
    trip_charge = trip_charge_factory(charge_status=TripCharge.ChargeStatus.PENDING)

    result = open_dispute(
        trip_charge,
        [
            {"category": "damage", "reason": "That scratch was already there"},
            {"type": "Interior cleaning fee", "reason": "Car was clean"},
            {"category": "fuel", "reason": "   "},
        ],
        raised_by=guest_user,
    )

    assert result.ok
    assert result.trip_charge.charge_status == TripCharge.ChargeStatus.DISPUTED
    assert result.trip_charge.disputed_at is not None
    lines = list(ChargeDispute.objects.filter(trip_charge=trip_charge))
    assert [line.category for line in lines] == ["damage", "cleaning"]
    assert all(line.raised_by == guest_user for line in lines)


def test_open_dispute_rejects_terminal_charge(trip_charge_factory):
    trip_charge = trip_charge_factory(charge_status=TripCharge.ChargeStatus.ADJUSTED)

    result = open_dispute(trip_charge, [{"category": "other", "reason": "Too high"}])

    assert result.code == "not_disputable"
    assert not ChargeDispute.objects.exists()


def test_open_dispute_requires_reason(trip_charge_factory):
    trip_charge = trip_charge_factory(charge_status=TripCharge.ChargeStatus.PENDING)

    result = open_dispute(trip_charge, [])

    assert result.code == "no_reasons"
