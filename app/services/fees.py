from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

Q = Decimal("0.01")
WHOLE = Decimal("1")

DEFAULT_FEE_PERCENT = 20


def _money(v) -> Decimal:
    return Decimal(str(v or 0)).quantize(Q, rounding=ROUND_HALF_UP)


def _half_fee_cents(base_cents: int, fee_percent: int) -> int:
    """Half of the platform fee on `base_cents`, rounded half-up to whole cents."""
    if base_cents < 0:
        raise ValueError("amount must be non-negative")
    if not 0 <= fee_percent <= 100:
        raise ValueError("fee percent must be between 0 and 100")
    half = Decimal(base_cents) * (Decimal(fee_percent) / 2) / 100
    return int(half.quantize(WHOLE, rounding=ROUND_HALF_UP))


def price_with_buyer_surcharge(base_cents: int, fee_percent: int = DEFAULT_FEE_PERCENT) -> int:
    """What the buyer is charged: base price plus the buyer's half of the fee."""
    return base_cents + _half_fee_cents(base_cents, fee_percent)


def seller_net_earnings(base_cents: int, fee_percent: int = DEFAULT_FEE_PERCENT) -> int:
    """What the seller keeps: base price minus the seller's half of the fee.

    Computed independently of the buyer surcharge, so the two sides are not
    guaranteed to sum to exactly twice the base after rounding.
    """
    return base_cents - _half_fee_cents(base_cents, fee_percent)


def to_cents(dollars) -> int:
    return int((Decimal(str(dollars)) * 100).quantize(WHOLE, rounding=ROUND_HALF_UP))


def to_dollars(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(Q)


def calc_instant_payout_fee(amount: Decimal) -> tuple[Decimal, Decimal]:
    """
    Returns (fee, net_amount) for an instant payout of `amount` dollars.
    """
    pct = Decimal(str(current_app.config.get("INSTANT_PAYOUT_FEE_PERCENT", "1.00"))) / 100
    fee = (amount * pct).quantize(Q, rounding=ROUND_HALF_UP)

    fee_min = Decimal(str(current_app.config.get("INSTANT_PAYOUT_FEE_MIN", "0.50")))
    fee = max(fee, fee_min)

    fee_max = current_app.config.get("INSTANT_PAYOUT_FEE_MAX")
    if fee_max is not None:
        fee = min(fee, Decimal(str(fee_max)))

    # Balances under the minimum fee net nothing
    net = max((amount - fee).quantize(Q, rounding=ROUND_HALF_UP), Decimal("0.00"))
    return fee, net


def payout_quote(amount, method: str) -> dict:
    """Gross / fee / net for a withdrawal. Shared by the quote endpoint and settlement."""
    gross = _money(amount)
    if method == "instant":
        fee, net = calc_instant_payout_fee(gross)
    else:
        fee, net = Decimal("0.00"), gross
    return {"amount": gross, "fee": fee, "net_amount": net, "method": method}
