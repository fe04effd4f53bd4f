from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe
from django.utils import timezone

from payments.models import HostPayoutAccount, PendingTransfer, Transaction
from payments.tasks import retry_failed_transfers
from payments.transfers import (
    IN_FLIGHT_STALE_AFTER,
    attempt_pending_transfer,
    reconciliation_queue,
    record_pending_transfer,
    retry_pending_transfer,
)

pytestmark = pytest.mark.django_db


@pytest.fixture
def pending(booking_factory, host_user):
    booking = booking_factory()
    return record_pending_transfer(
        host=host_user,
        booking=booking,
        amount=Decimal("300.00"),
        source_charge_id="pi_source",
    )


def test_record_pending_transfer_defaults(pending):
    assert pending.status == PendingTransfer.Status.PENDING
    assert pending.attempts == 0
    assert pending.description == f"Host payout for booking #{pending.booking_id}"
    assert list(reconciliation_queue()) == [pending]


@patch("payments.stripe_api.stripe.Transfer.create")
def test_attempt_pending_transfer_success(mock_transfer, pending, host_user):
    mock_transfer.return_value = SimpleNamespace(id="tr_123")

    result = attempt_pending_transfer(pending.pk)

    assert result.status == PendingTransfer.Status.SUCCEEDED
    assert result.stripe_transfer_id == "tr_123"
    assert result.attempts == 1
    assert result.completed_at is not None
    kwargs = mock_transfer.call_args.kwargs
    assert kwargs["amount"] == 30000
    assert kwargs["destination"] == "acct_test_host"
    assert kwargs["transfer_group"] == f"booking:{pending.booking_id}:host_payout"
    assert kwargs["idempotency_key"] == f"pending_transfer:{pending.pk}:host_payout_v1"
    payout = Transaction.objects.get(kind=Transaction.Kind.HOST_PAYOUT)
    assert payout.user == host_user
    assert payout.amount == Decimal("300.00")
    assert payout.stripe_id == "tr_123"
    assert list(reconciliation_queue()) == []


@patch("payments.stripe_api.stripe.Transfer.create")
def test_failed_transfer_stays_queued_and_retries_with_same_key(mock_transfer, pending):
    mock_transfer.side_effect = stripe.APIConnectionError("timeout")

    failed = attempt_pending_transfer(pending.pk)

    assert failed.status == PendingTransfer.Status.FAILED
    assert failed.last_error
    assert list(reconciliation_queue()) == [failed]
    assert not Transaction.objects.exists()

    mock_transfer.side_effect = None
    mock_transfer.return_value = SimpleNamespace(id="tr_retry")
    retried = retry_pending_transfer(failed)

    assert retried.status == PendingTransfer.Status.SUCCEEDED
    assert retried.attempts == 2
    assert retried.last_error == ""
    keys = [call.kwargs["idempotency_key"] for call in mock_transfer.call_args_list]
    assert keys == [f"pending_transfer:{pending.pk}:host_payout_v1"] * 2


@patch("payments.stripe_api.stripe.Transfer.create")
def test_in_flight_transfer_is_not_sent_again(mock_transfer, pending):
    PendingTransfer.objects.filter(pk=pending.pk).update(
        status=PendingTransfer.Status.IN_FLIGHT,
        attempts=1,
        last_attempt_at=timezone.now(),
    )

    result = attempt_pending_transfer(pending.pk)

    assert result.status == PendingTransfer.Status.IN_FLIGHT
    assert result.attempts == 1
    mock_transfer.assert_not_called()
    assert list(reconciliation_queue()) == []
    with pytest.raises(ValueError):
        retry_pending_transfer(result)


@patch("payments.stripe_api.stripe.Transfer.create")
def test_stale_in_flight_transfer_is_reclaimed(mock_transfer, pending):
    PendingTransfer.objects.filter(pk=pending.pk).update(
        status=PendingTransfer.Status.IN_FLIGHT,
        attempts=1,
        last_attempt_at=timezone.now() - IN_FLIGHT_STALE_AFTER - timedelta(minutes=1),
    )
    pending.refresh_from_db()
    assert list(reconciliation_queue()) == [pending]
    mock_transfer.return_value = SimpleNamespace(id="tr_reclaimed")

    result = retry_failed_transfers()

    assert result == {"succeeded": 1, "checked": 1}
    pending.refresh_from_db()
    assert pending.status == PendingTransfer.Status.SUCCEEDED
    assert pending.attempts == 2
    assert mock_transfer.call_args.kwargs["idempotency_key"] == f"pending_transfer:{pending.pk}:host_payout_v1"


def test_transfer_without_payout_account_fails(pending, host_user):
    HostPayoutAccount.objects.filter(user=host_user).update(payouts_enabled=False)

    result = attempt_pending_transfer(pending.pk)

    assert result.status == PendingTransfer.Status.FAILED
    assert "payout-enabled" in result.last_error


@patch("payments.stripe_api.stripe.Transfer.create")
def test_retry_rejects_succeeded_transfer(mock_transfer, pending):
    mock_transfer.return_value = SimpleNamespace(id="tr_done")
    done = attempt_pending_transfer(pending.pk)

    with pytest.raises(ValueError):
        retry_pending_transfer(done)
    assert mock_transfer.call_count == 1


@patch("payments.stripe_api.stripe.Transfer.create")
def test_retry_failed_transfers_task(mock_transfer, pending):
    PendingTransfer.objects.filter(pk=pending.pk).update(status=PendingTransfer.Status.FAILED)
    mock_transfer.return_value = SimpleNamespace(id="tr_task")

    result = retry_failed_transfers()

    assert result == {"succeeded": 1, "checked": 1}
    pending.refresh_from_db()
    assert pending.status == PendingTransfer.Status.SUCCEEDED
