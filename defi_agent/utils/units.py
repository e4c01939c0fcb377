"""Conversions between human readable token amounts and atomic integers."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext

MAX_UINT256 = 2**256 - 1
MAX_UINT128 = 2**128 - 1


def parse_units(amount: str, decimals: int) -> int:
    """Convert ``"1.5"`` with 6 decimals into ``1500000``.

    Raises:
        ValueError: if the amount is not a non-negative decimal number or has
            more fractional digits than the token supports.
    """
    text = str(amount).strip()
    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount!r}")

    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise ValueError(
                f"Amount {amount!r} has more than {decimals} decimal places"
            )
        return int(scaled)


def format_units(value: int, decimals: int) -> str:
    """Convert an atomic integer back into a trimmed decimal string."""
    if decimals == 0:
        return str(value)
    negative = value < 0
    digits = str(abs(int(value))).rjust(decimals + 1, "0")
    whole, fraction = digits[:-decimals], digits[-decimals:].rstrip("0")
    text = f"{whole}.{fraction}" if fraction else whole
    return f"-{text}" if negative else text


__all__ = ["MAX_UINT128", "MAX_UINT256", "format_units", "parse_units"]
