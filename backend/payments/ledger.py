from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.conf import settings

from .models import Transaction

CENT = Decimal("0.01")


def log_transaction(
    *,
    user,
    booking,
    kind: str,
    amount: Decimal,
    claim=None,
    currency: Optional[str] = None,
    stripe_id: Optional[str] = None,
) -> Transaction:
    """
    Append a money movement to the ledger.

    Callers write the row only after Stripe confirmed the charge, refund or
    transfer, so every ledger entry has a matching processor object.
    """
    return Transaction.objects.create(
        user=user,
        booking=booking,
        claim=claim,
        kind=kind,
        amount=Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP),
        currency=currency or settings.STRIPE_CURRENCY,
        stripe_id=stripe_id,
    )


def has_transaction(*, kind: str, stripe_id: Optional[str]) -> bool:
    # Stripe returns the same transfer id for a replayed idempotency key.
    if not stripe_id:
        return False
    return Transaction.objects.filter(kind=kind, stripe_id=stripe_id).exists()
