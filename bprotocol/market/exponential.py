"""Pure fixed-point helpers for market accounting — no I/O.

All amounts are integers in the smallest unit of their asset. Rates,
prices and factors are mantissas scaled by ``EXP_SCALE`` (1e18).
"""
from __future__ import annotations

from decimal import Decimal

EXP_SCALE = 10**18

# Share tokens always carry 8 decimals.
SHARE_DECIMALS = 8


def mul_scalar_truncate(mantissa: int, scalar: int) -> int:
    """``mantissa * scalar / 1e18``, truncated."""
    return mantissa * scalar // EXP_SCALE


def div_scalar_by_exp_truncate(scalar: int, mantissa: int) -> int:
    """``scalar * 1e18 / mantissa``, truncated."""
    return scalar * EXP_SCALE // mantissa


def shares_for_underlying(amount: int, exchange_rate: int) -> int:
    """Convert an underlying amount into share units at ``exchange_rate``.

    Examples:
        1000 * 10**18 at 2 * 10**26 → 5000 * 10**8
    """
    return div_scalar_by_exp_truncate(amount, exchange_rate)


def underlying_for_shares(shares: int, exchange_rate: int) -> int:
    """Convert share units back into underlying at ``exchange_rate``."""
    return mul_scalar_truncate(exchange_rate, shares)


def exchange_rate(
    cash: int, total_borrows: int, total_supply: int, initial_rate: int
) -> int:
    """Compound's exchange rate: ``(cash + borrows) * 1e18 / supply``.

    Falls back to the market's initial rate while no shares exist.
    """
    if total_supply == 0:
        return initial_rate
    return (cash + total_borrows) * EXP_SCALE // total_supply


def to_mantissa(value: float | str | Decimal) -> int:
    """Scale a human-readable factor (e.g. ``0.75``) to a 1e18 mantissa."""
    return int(Decimal(str(value)) * EXP_SCALE)


def price_mantissa(price: float | str | Decimal, underlying_decimals: int) -> int:
    """Scale a USD price per whole token to an oracle mantissa.

    Oracle prices are quoted per smallest underlying unit and scaled by
    ``1e(36 - decimals)``, so ``amount * price / 1e18`` is a USD value with
    18 decimals whatever the underlying precision.
    """
    return int(Decimal(str(price)) * (10 ** (36 - underlying_decimals)))


def usd_value(amount: int, price: int) -> int:
    """USD value (1e18-scaled) of ``amount`` base units at oracle ``price``."""
    return mul_scalar_truncate(price, amount)


def format_units(amount: int, decimals: int) -> str:
    """Render an integer amount as a decimal string with ``decimals`` places."""
    scaled = Decimal(amount) / (Decimal(10) ** decimals)
    return f"{scaled.normalize():f}"


def parse_units(value: int | float | str | Decimal, decimals: int) -> int:
    """Inverse of :func:`format_units`: ``"1.5"`` at 18 decimals → 1.5e18."""
    return int(Decimal(str(value)) * (Decimal(10) ** decimals))
