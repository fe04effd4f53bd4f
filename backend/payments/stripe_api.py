"""Stripe helpers for off-session guest charges and host payout transfers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import stripe
from django.conf import settings
from django.contrib.auth import get_user_model

from payments.models import HostPayoutAccount

logger = logging.getLogger(__name__)
IDEMPOTENCY_VERSION = "v1"
User = get_user_model()


class StripeConfigurationError(Exception):
    """Stripe is not configured correctly in the environment."""


class StripeTransientError(Exception):
    """Temporary Stripe/API issue that should be retried."""


class StripePaymentError(Exception):
    """Permanent payment failure (declines, invalid requests)."""


@dataclass(frozen=True)
class ChargeResult:
    """Outcome of a single off-session charge attempt."""

    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"

    status: str
    charge_id: Optional[str] = None
    error: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == self.SUCCEEDED


def _get_stripe_api_key() -> str:
    """Return the configured Stripe API key or raise if missing."""
    api_key = getattr(settings, "STRIPE_SECRET_KEY", "")
    if not api_key:
        raise StripeConfigurationError("Stripe secret key not configured.")
    return api_key


def _currency() -> str:
    return (getattr(settings, "STRIPE_CURRENCY", "usd") or "usd").lower()


def _env_label() -> str:
    return getattr(settings, "STRIPE_ENV", "dev") or "dev"


def to_cents(amount: Decimal) -> int:
    """Convert Decimal dollars to integer cents, rounding to the nearest cent."""
    cents = (amount * Decimal("100")).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def _handle_stripe_error(exc: stripe.StripeError) -> None:
    """Map Stripe SDK errors onto internal exception types."""
    if isinstance(exc, stripe.CardError):
        message = exc.user_message or "Your card was declined."
        raise StripePaymentError(message) from exc
    if isinstance(
        exc,
        (
            stripe.RateLimitError,
            stripe.APIConnectionError,
            stripe.APIError,
        ),
    ):
        raise StripeTransientError("Temporary Stripe error, please retry.") from exc
    if isinstance(exc, (stripe.AuthenticationError, stripe.PermissionError)):
        raise StripeConfigurationError("Stripe credentials are invalid or unauthorized.") from exc
    if isinstance(exc, stripe.InvalidRequestError):
        raise StripePaymentError(exc.user_message or "Invalid payment request.") from exc
    raise StripePaymentError(exc.user_message or "Stripe payment failure.") from exc


def charge_off_session(
    *,
    user: User,
    amount: Decimal,
    description: str,
    idempotency_key: str,
    metadata: Optional[dict] = None,
) -> ChargeResult:
    """
    Charge the user's stored payment method once, without the user present.

    Never raises for processor failures; the returned ChargeResult carries the
    outcome so state handlers can leave records untouched on failure.
    """
    if amount <= Decimal("0"):
        return ChargeResult(ChargeResult.FAILED, error="Charge amount must be greater than zero.")

    customer_id = (getattr(user, "stripe_customer_id", "") or "").strip()
    payment_method_id = (getattr(user, "default_payment_method_id", "") or "").strip()
    if not customer_id or not payment_method_id:
        return ChargeResult(ChargeResult.FAILED, error="No payment method on file.")

    try:
        stripe.api_key = _get_stripe_api_key()
    except StripeConfigurationError as exc:
        logger.error("stripe: off-session charge skipped, %s", exc)
        return ChargeResult(ChargeResult.FAILED, error=str(exc))

    payload_metadata = {"env": _env_label(), "user_id": str(user.pk)}
    payload_metadata.update({key: str(value) for key, value in (metadata or {}).items()})

    try:
        intent = stripe.PaymentIntent.create(
            amount=to_cents(amount),
            currency=_currency(),
            customer=customer_id,
            payment_method=payment_method_id,
            description=description,
            confirm=True,
            off_session=True,
            metadata=payload_metadata,
            idempotency_key=idempotency_key,
        )
    except stripe.CardError as exc:
        if getattr(exc, "code", None) == "authentication_required":
            return ChargeResult(
                ChargeResult.REQUIRES_ACTION,
                error=exc.user_message or "Card requires authentication.",
            )
        return _failed_result(exc, idempotency_key)
    except stripe.StripeError as exc:
        return _failed_result(exc, idempotency_key)

    intent_status = getattr(intent, "status", "")
    if intent_status == "succeeded":
        return ChargeResult(ChargeResult.SUCCEEDED, charge_id=intent.id)
    if intent_status in ("requires_action", "processing"):
        return ChargeResult(ChargeResult.REQUIRES_ACTION, charge_id=intent.id)
    return ChargeResult(
        ChargeResult.FAILED,
        charge_id=intent.id,
        error=f"Payment ended in status '{intent_status}'.",
    )


def _failed_result(exc: stripe.StripeError, idempotency_key: str) -> ChargeResult:
    try:
        _handle_stripe_error(exc)
    except (StripePaymentError, StripeTransientError, StripeConfigurationError) as mapped:
        logger.warning(
            "stripe: off-session charge failed",
            extra={"idempotency_key": idempotency_key, "error_type": type(mapped).__name__},
        )
        return ChargeResult(ChargeResult.FAILED, error=str(mapped))
    return ChargeResult(ChargeResult.FAILED, error="Stripe payment failure.")


def create_host_transfer(
    *,
    host: User,
    amount: Decimal,
    description: str,
    transfer_group: str,
    idempotency_key: str,
    metadata: Optional[dict] = None,
) -> str:
    """Transfer ``amount`` to the host's Connect account and return the transfer id."""
    if amount <= Decimal("0"):
        raise StripePaymentError("Transfer amount must be greater than zero.")

    payout_account = HostPayoutAccount.objects.filter(user=host).first()
    if (
        payout_account is None
        or not payout_account.stripe_account_id
        or not payout_account.payouts_enabled
    ):
        raise StripePaymentError("Host has no payout-enabled Stripe account.")

    stripe.api_key = _get_stripe_api_key()
    payload_metadata = {"env": _env_label(), "host_id": str(host.pk)}
    payload_metadata.update({key: str(value) for key, value in (metadata or {}).items()})

    try:
        transfer = stripe.Transfer.create(
            amount=to_cents(amount),
            currency=_currency(),
            destination=payout_account.stripe_account_id,
            description=description,
            metadata=payload_metadata,
            transfer_group=transfer_group,
            idempotency_key=idempotency_key,
        )
    except stripe.StripeError as exc:
        _handle_stripe_error(exc)

    transfer_id = getattr(transfer, "id", None)
    if transfer_id is None and hasattr(transfer, "get"):
        transfer_id = transfer.get("id")
    return transfer_id
