from datetime import date
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe

from bookings.models import Booking
from claims.models import Claim, InsurancePolicy
from claims.services.filing import file_claim
from operator_core.models import OperatorAuditEvent
from payments.models import PendingTransfer

pytestmark = [pytest.mark.django_db, pytest.mark.usefixtures("enable_operator_routes")]


@pytest.fixture(autouse=True)
def _quiet_notifications():
    with patch("claims.services.filing.safe_notify"), patch("claims.services.recovery.safe_notify"):
        yield


@pytest.fixture
def claim(booking_factory, host_user):
    booking = booking_factory(status=Booking.Status.COMPLETED)
    InsurancePolicy.objects.create(booking=booking)
    return file_claim(
        booking=booking,
        host=host_user,
        claim_type=Claim.Type.ACCIDENT,
        description="Rear bumper dented in a parking lot.",
        incident_date=date.today(),
    )


def _approve(client, claim, amount="500"):
    return client.post(
        f"/api/operator/claims/{claim.pk}/approve/",
        {"approved_amount": amount, "reason": "Repair estimate verified", "notes": "Shop quote attached"},
        format="json",
    )


def test_queue_visible_to_support(ops_client, operator_user, claim):
    resp = ops_client(operator_user).get("/api/operator/claims/", {"status": "PENDING"})

    assert resp.status_code == 200
    assert resp.data["count"] == 1
    row = resp.data["results"][0]
    assert row["id"] == claim.pk
    assert row["guest_email"] == "guest@example.com"
    assert row["host_email"] == "host@example.com"


def test_detail_returns_404_for_unknown_claim(ops_client, operator_user):
    assert ops_client(operator_user).get("/api/operator/claims/9999/").status_code == 404


def test_support_role_cannot_approve(ops_client, operator_user, claim):
    resp = _approve(ops_client(operator_user), claim)

    assert resp.status_code == 403
    claim.refresh_from_db()
    assert claim.status == Claim.Status.PENDING


def test_approve_records_audit_event(ops_client, operator_admin, claim):
    resp = _approve(ops_client(operator_admin), claim)

    assert resp.status_code == 200, resp.data
    assert resp.data["status"] == Claim.Status.APPROVED
    assert resp.data["reviewed_by"] == "operator-admin"
    event = OperatorAuditEvent.objects.get()
    assert event.action == "operator.claim.approve"
    assert event.entity_type == OperatorAuditEvent.EntityType.CLAIM
    assert event.entity_id == str(claim.pk)
    assert event.before_json["status"] == Claim.Status.PENDING
    assert event.after_json["status"] == Claim.Status.APPROVED


def test_approve_requires_reason(ops_client, operator_admin, claim):
    resp = ops_client(operator_admin).post(
        f"/api/operator/claims/{claim.pk}/approve/", {"approved_amount": "100"}, format="json"
    )

    assert resp.status_code == 400
    assert not OperatorAuditEvent.objects.exists()


def test_deny_after_approval_conflicts(ops_client, operator_admin, claim):
    client = ops_client(operator_admin)
    _approve(client, claim)

    resp = client.post(
        f"/api/operator/claims/{claim.pk}/deny/", {"reason": "Changed my mind"}, format="json"
    )

    assert resp.status_code == 409
    assert resp.data["code"] == "invalid_status"
    assert OperatorAuditEvent.objects.count() == 1


@patch("payments.stripe_api.stripe.Transfer.create")
@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_collects_and_queues_host_payout(mock_create, mock_transfer, ops_client, operator_admin, claim):
    mock_create.return_value = SimpleNamespace(id="pi_claim", status="succeeded")
    mock_transfer.return_value = SimpleNamespace(id="tr_claim")
    client = ops_client(operator_admin)
    _approve(client, claim)

    resp = client.post(
        f"/api/operator/claims/{claim.pk}/charge/",
        {"amount": "200", "reason": "First instalment"},
        format="json",
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["charge_id"] == "pi_claim"
    assert resp.data["claim"]["recovered_from_guest"] == "200.00"
    assert resp.data["pending_transfer"]["status"] == PendingTransfer.Status.SUCCEEDED
    event = OperatorAuditEvent.objects.filter(action="operator.claim.charge").get()
    assert event.meta_json["amount"] == "200.00"


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_charge_over_outstanding_is_rejected(mock_create, ops_client, operator_admin, claim):
    client = ops_client(operator_admin)
    _approve(client, claim, amount="100")

    resp = client.post(
        f"/api/operator/claims/{claim.pk}/charge/", {"amount": "150", "reason": "Too much"}, format="json"
    )

    assert resp.status_code == 400
    assert resp.data["code"] == "exceeds_outstanding"
    mock_create.assert_not_called()


@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_declined_charge_returns_402(mock_create, ops_client, operator_admin, claim):
    mock_create.side_effect = stripe.CardError("Your card was declined.", param=None, code="card_declined")
    client = ops_client(operator_admin)
    _approve(client, claim)

    resp = client.post(
        f"/api/operator/claims/{claim.pk}/charge/", {"amount": "100", "reason": "Recovery"}, format="json"
    )

    assert resp.status_code == 402
    assert resp.data["code"] == "payment_failed"
    assert not OperatorAuditEvent.objects.filter(action="operator.claim.charge").exists()


@patch("payments.stripe_api.stripe.Transfer.create")
@patch("payments.stripe_api.stripe.PaymentIntent.create")
def test_failed_payout_lands_in_queue_and_can_be_retried(
    mock_create, mock_transfer, ops_client, operator_admin, claim
):
    mock_create.return_value = SimpleNamespace(id="pi_claim", status="succeeded")
    mock_transfer.side_effect = stripe.APIConnectionError("timeout")
    client = ops_client(operator_admin)
    _approve(client, claim)
    client.post(
        f"/api/operator/claims/{claim.pk}/charge/", {"amount": "500", "reason": "Recovery"}, format="json"
    )

    queue = client.get("/api/operator/transfers/")
    assert queue.status_code == 200
    assert queue.data["count"] == 1
    pending_id = queue.data["results"][0]["id"]
    assert queue.data["results"][0]["status"] == PendingTransfer.Status.FAILED

    mock_transfer.side_effect = None
    mock_transfer.return_value = SimpleNamespace(id="tr_retry")
    resp = client.post(
        f"/api/operator/transfers/{pending_id}/retry/", {"reason": "Stripe recovered"}, format="json"
    )

    assert resp.status_code == 200, resp.data
    assert resp.data["status"] == PendingTransfer.Status.SUCCEEDED
    assert resp.data["attempts"] == 2
    first_key, retry_key = (call.kwargs["idempotency_key"] for call in mock_transfer.call_args_list)
    assert first_key == retry_key
    event = OperatorAuditEvent.objects.get(action="operator.pending_transfer.retry")
    assert event.entity_type == OperatorAuditEvent.EntityType.PENDING_TRANSFER
    assert event.before_json["status"] == PendingTransfer.Status.FAILED

    again = client.post(
        f"/api/operator/transfers/{pending_id}/retry/", {"reason": "Double click"}, format="json"
    )
    assert again.status_code == 409
    assert again.data["code"] == "not_retryable"
