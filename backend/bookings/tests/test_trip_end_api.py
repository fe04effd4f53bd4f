from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from bookings.models import Booking
from trip_charges.models import TripCharge

pytestmark = pytest.mark.django_db

User = get_user_model()


def _client(user) -> APIClient:
    client = APIClient()
    client.force_authenticate(user=user)
    return client


def test_trip_end_status_for_guest(booking_factory, guest_user):
    booking = booking_factory()

    resp = _client(guest_user).get(f"/api/bookings/{booking.id}/trip/end/")

    assert resp.status_code == 200
    assert resp.data["can_end"] is True
    assert resp.data["is_late"] is False
    assert resp.data["has_payment_method"] is True


def test_guest_ends_trip_with_damage_line(booking_factory, guest_user):
    booking = booking_factory()

    resp = _client(guest_user).post(
        f"/api/bookings/{booking.id}/trip/end/",
        {
            "end_mileage": 1400,
            "fuel_level_end": "3/4",
            "damage": {"reported": True, "severity": "minor"},
            "guest_note": "Small scuff on rear bumper",
        },
        format="json",
    )

    assert resp.status_code == 200, resp.data
    trip_charge = TripCharge.objects.get(booking=booking)
    # fuel 75 + minor damage 250, plus 10% tax
    assert trip_charge.total_charges == Decimal("357.50")
    assert trip_charge.charge_status == TripCharge.ChargeStatus.PENDING
    assert trip_charge.guest_note == "Small scuff on rear bumper"
    assert resp.data["trip_charge"]["charge_status"] == "PENDING"
    assert [line["type"] for line in resp.data["charges"]["breakdown"]] == ["fuel", "damage"]
    assert resp.data["booking"]["status"] == Booking.Status.COMPLETED


def test_guest_disputes_at_trip_end(booking_factory, guest_user):
    booking = booking_factory()

    resp = _client(guest_user).post(
        f"/api/bookings/{booking.id}/trip/end/",
        {
            "end_mileage": 1800,
            "fuel_level_end": "Full",
            "extra_charges": [{"type": "Deep clean", "cost": "150.00"}],
            "disputes": [{"category": "cleaning", "reason": "Interior was spotless"}],
        },
        format="json",
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["trip_charge"]["charge_status"] == "DISPUTED"
    assert resp.data["trip_charge"]["dispute_lines"][0]["category"] == "cleaning"


def test_invalid_odometer_returns_code(booking_factory, guest_user):
    booking = booking_factory()

    resp = _client(guest_user).post(
        f"/api/bookings/{booking.id}/trip/end/",
        {"end_mileage": 10, "fuel_level_end": "Full"},
        format="json",
    )

    assert resp.status_code == 400
    assert resp.data["code"] == "invalid_odometer"
    assert "end_mileage" in resp.data


def test_host_cannot_end_trip(booking_factory, host_user):
    booking = booking_factory()

    resp = _client(host_user).post(
        f"/api/bookings/{booking.id}/trip/end/",
        {"end_mileage": 1100, "fuel_level_end": "Full"},
        format="json",
    )

    assert resp.status_code == 403


def test_stranger_cannot_see_trip(booking_factory):
    booking = booking_factory()
    stranger = User.objects.create_user(username="stranger", password="x")

    resp = _client(stranger).get(f"/api/bookings/{booking.id}/trip/end/")

    assert resp.status_code == 403


def test_guest_disputes_pending_charges_later(trip_charge_factory, guest_user):
    trip_charge = trip_charge_factory(charge_status=TripCharge.ChargeStatus.PENDING, disputed_at=None)

    resp = _client(guest_user).post(
        f"/api/bookings/{trip_charge.booking_id}/trip/dispute/",
        {"disputes": [{"category": "damage", "reason": "Damage was pre-existing"}]},
        format="json",
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["charge_status"] == "DISPUTED"


def test_disputing_charged_trip_conflicts(trip_charge_factory, guest_user):
    trip_charge = trip_charge_factory(charge_status=TripCharge.ChargeStatus.CHARGED)

    resp = _client(guest_user).post(
        f"/api/bookings/{trip_charge.booking_id}/trip/dispute/",
        {"disputes": [{"category": "damage", "reason": "Too expensive"}]},
        format="json",
    )

    assert resp.status_code == 409
    assert resp.data["code"] == "not_disputable"


def test_booking_list_is_scoped_to_participants(booking_factory, guest_user):
    booking_factory()

    resp = _client(guest_user).get("/api/bookings/")

    assert resp.status_code == 200
    results = resp.data["results"] if isinstance(resp.data, dict) else resp.data
    assert len(results) == 1
    assert results[0]["listing_title"] == "2021 Toyota Corolla"
