"""Conversion between gateway minor units and persisted major units.

The gateway reports every amount as an integer in the currency's smallest
unit (cents for EUR/USD, yen for JPY).  The billing store and all
human-facing output use ``Decimal`` major units.  Conversion happens
exactly once, at the persistence boundary, through these two helpers.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# Currencies the gateway treats as having no minor unit.
# https://docs.stripe.com/currencies#zero-decimal
ZERO_DECIMAL_CURRENCIES: frozenset[str] = frozenset(
    {
        "bif",
        "clp",
        "djf",
        "gnf",
        "jpy",
        "kmf",
        "krw",
        "mga",
        "pyg",
        "rwf",
        "ugx",
        "vnd",
        "vuv",
        "xaf",
        "xof",
        "xpf",
    }
)


def currency_exponent(currency: str | None) -> int:
    """Return the number of decimal places used by *currency*."""
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return 0
    return 2


def to_major(amount_minor: int | None, currency: str | None = None) -> Decimal:
    """Convert an integer minor-unit amount to a quantized ``Decimal``.

    ``None`` is treated as zero so that absent amounts on a recognised
    event never abort a transition.
    """
    exponent = currency_exponent(currency)
    quantum = Decimal(1).scaleb(-exponent)
    value = Decimal(int(amount_minor or 0)).scaleb(-exponent)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor(amount_major: Decimal | int | str, currency: str | None = None) -> int:
    """Inverse of :func:`to_major`."""
    exponent = currency_exponent(currency)
    value = Decimal(str(amount_major)).scaleb(exponent)
    return int(value.to_integral_value(rounding=ROUND_HALF_UP))


def format_amount(amount_major: Decimal, currency: str | None) -> str:
    """Render an amount for e-mail bodies, e.g. ``1,234.50 EUR``."""
    exponent = currency_exponent(currency)
    code = (currency or "").upper()
    return f"{amount_major:,.{exponent}f} {code}".strip()
