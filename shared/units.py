"""
Token unit conversion helpers.

Human-readable amounts are converted to base units by truncating toward
zero, so a profitability estimate never assumes more tokens than the
decimals can represent.

Usage:
    from shared.units import format_units, parse_units

    base = parse_units("1000", 18)     # 1000 * 10**18
    human = format_units(base, 18)     # Decimal("1000")
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext

UINT256_PRECISION = 78  # enough digits for any uint256


def parse_units(amount: str | Decimal | int, decimals: int) -> int:
    """Convert a human-readable amount into integer base units (truncating)."""
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid token amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Invalid token amount: {amount!r}")
    if value < 0:
        raise ValueError(f"Token amount must be non-negative, got {amount!r}")

    with localcontext() as ctx:
        ctx.prec = UINT256_PRECISION
        scaled = value.scaleb(decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_units(amount: int, decimals: int) -> Decimal:
    """Convert integer base units into an exact human-readable Decimal."""
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    with localcontext() as ctx:
        ctx.prec = UINT256_PRECISION
        return Decimal(int(amount)).scaleb(-decimals)


def to_plain_string(amount: Decimal) -> str:
    """Render a Decimal without exponent notation (e.g. for API bodies)."""
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
