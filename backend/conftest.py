"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import importlib
from datetime import timedelta
from decimal import Decimal
from typing import Callable

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.urls import clear_url_caches
from django.utils import timezone
from rest_framework.test import APIClient

from bookings.models import Booking
from listings.models import Listing
from payments.models import HostPayoutAccount
from trip_charges.models import TripCharge
from users.models import GuestProfile, HostProfile

User = get_user_model()


@pytest.fixture
def api_client():
    """DRF API client for request/response helpers."""
    return APIClient()


@pytest.fixture
def host_user(db):
    user = User.objects.create_user(
        username="host",
        email="host@example.com",
        password="testpass",
        can_list=True,
        email_verified=True,
    )
    HostProfile.objects.create(user=user)
    HostPayoutAccount.objects.create(
        user=user,
        stripe_account_id="acct_test_host",
        payouts_enabled=True,
        last_synced_at=timezone.now(),
    )
    return user


@pytest.fixture
def guest_user(db):
    user = User.objects.create_user(
        username="guest",
        email="guest@example.com",
        password="testpass",
        can_rent=True,
        email_verified=True,
        stripe_customer_id="cus_test_guest",
        default_payment_method_id="pm_test_card",
    )
    GuestProfile.objects.create(user=user)
    return user


@pytest.fixture
def listing(host_user):
    return Listing.objects.create(
        owner=host_user,
        make="Toyota",
        model="Corolla",
        year=2021,
        daily_price=Decimal("65.00"),
        city="Phoenix",
        is_active=True,
    )


@pytest.fixture
def booking_factory(listing, host_user, guest_user) -> Callable[..., Booking]:
    """Build an in-progress three day trip; keyword overrides win."""

    def _create(**overrides) -> Booking:
        now = timezone.now()
        start = overrides.pop("start_at", now - timedelta(days=3) + timedelta(hours=2))
        data = {
            "listing": listing,
            "host": host_user,
            "guest": guest_user,
            "start_at": start,
            "end_at": start + timedelta(days=3),
            "status": Booking.Status.ACTIVE,
            "payment_status": Booking.PaymentStatus.PAID,
            "trip_started_at": start,
            "start_mileage": 1000,
            "fuel_level_start": "Full",
            "deposit_amount": Decimal("200.00"),
        }
        data.update(overrides)
        return Booking.objects.create(**data)

    return _create


@pytest.fixture
def trip_charge_factory(booking_factory) -> Callable[..., TripCharge]:
    """A finished trip with a single $400 line, disputed by default."""

    def _create(*, total=Decimal("400.00"), **overrides) -> TripCharge:
        booking = overrides.pop("booking", None) or booking_factory(
            status=Booking.Status.COMPLETED,
            payment_status=Booking.PaymentStatus.PENDING_CHARGES,
            trip_ended_at=timezone.now(),
            end_mileage=1600,
            fuel_level_end="Full",
        )
        amount = Decimal(total)
        data = {
            "booking": booking,
            "charges": {
                "breakdown": [
                    {
                        "type": "damage",
                        "label": "Damage Charge",
                        "amount": str(amount),
                        "details": "Scratched bumper",
                        "quantity": None,
                        "rate": None,
                    }
                ],
                "subtotal": str(amount),
                "taxes": "0.00",
                "total": str(amount),
            },
            "subtotal": amount,
            "taxes": Decimal("0.00"),
            "total_charges": amount,
            "original_total": amount,
            "charge_status": TripCharge.ChargeStatus.DISPUTED,
            "disputed_at": timezone.now(),
        }
        data.update(overrides)
        return TripCharge.objects.create(**data)

    return _create


def _operator(username: str, group_name: str) -> User:
    group, _ = Group.objects.get_or_create(name=group_name)
    user = User.objects.create_user(
        username=username,
        email=f"{username}@example.com",
        password="pass123",
        is_staff=True,
    )
    user.groups.add(group)
    return user


@pytest.fixture
def operator_user(db):
    return _operator("operator", "operator_support")


@pytest.fixture
def operator_admin(db):
    return _operator("operator-admin", "operator_admin")


@pytest.fixture
def staff_user_no_group(db):
    return User.objects.create_user(
        username="staff-nogroup",
        email="staff-nogroup@example.com",
        password="pass123",
        is_staff=True,
    )


@pytest.fixture
def enable_operator_routes(settings):
    import driveshare.urls as driveshare_urls

    original_enable = settings.ENABLE_OPERATOR
    original_hosts = getattr(settings, "OPS_ALLOWED_HOSTS", [])
    original_allowed_hosts = list(getattr(settings, "ALLOWED_HOSTS", []))

    settings.ENABLE_OPERATOR = True
    settings.OPS_ALLOWED_HOSTS = ["ops.example.com"]
    settings.ALLOWED_HOSTS = ["ops.example.com", "public.example.com", "testserver"]
    clear_url_caches()
    importlib.reload(driveshare_urls)
    yield
    settings.ENABLE_OPERATOR = original_enable
    settings.OPS_ALLOWED_HOSTS = original_hosts
    settings.ALLOWED_HOSTS = original_allowed_hosts
    clear_url_caches()
    importlib.reload(driveshare_urls)


@pytest.fixture
def ops_client() -> Callable[[User], APIClient]:
    def _client(user: User) -> APIClient:
        client = APIClient()
        client.defaults["HTTP_HOST"] = "ops.example.com"
        client.force_authenticate(user=user)
        return client

    return _client
