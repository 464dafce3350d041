# bakequote/money.py
"""Fixed-point money helpers.

Amounts are ``decimal.Decimal`` throughout.  Floats are only accepted at the
edges (JSON payloads) and are converted through ``str`` so ``0.1`` stays
``Decimal('0.1')`` instead of its binary approximation.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal('0')

# ISO 4217 currencies without a minor unit
ZERO_DECIMAL_CURRENCIES = frozenset({
    'BIF', 'CLP', 'DJF', 'GNF', 'ISK', 'JPY', 'KMF', 'KRW', 'PYG',
    'RWF', 'UGX', 'VND', 'VUV', 'XAF', 'XOF', 'XPF',
})


def to_money(value) -> Decimal:
    """Coerce ``value`` into a Decimal; ``None`` and ``''`` become zero."""
    if value is None or value == '':
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def minor_units(currency: str | None) -> int:
    if currency and currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return 0
    return 2


def quantize(amount, currency: str | None = 'USD') -> Decimal:
    """Round ``amount`` half-up to the currency's minor unit."""
    exp = Decimal(1).scaleb(-minor_units(currency))
    return to_money(amount).quantize(exp, rounding=ROUND_HALF_UP)


def percent_of(amount, pct, currency: str | None = 'USD') -> Decimal:
    return quantize(to_money(amount) * to_money(pct) / Decimal(100), currency)


def money_str(amount) -> str:
    """Serialise an amount for JSON responses without float conversion."""
    return str(to_money(amount))
