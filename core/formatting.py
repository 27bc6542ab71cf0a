"""
formatting.py
--------------
Presentation-boundary number formatting. Pure functions, no state.

Rules:
    - Money is shown in whole units, rounded half-up. Sub-unit precision is
      never displayed.
    - Compact: >= 1,000,000 -> "X.YM", >= 100,000 -> "XK", otherwise grouped
      thousands ("12,345").

Metrics stay full-precision Decimals everywhere else. Only these functions
round.
"""

from decimal import ROUND_HALF_UP, Decimal

from config.config_loader import get_formatting_config

_ONE = Decimal("1")


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def round_half_up(value, places: int = 0) -> Decimal:
    """Round to `places` decimals, halves away from zero (2.5 -> 3, -2.5 -> -3)."""
    exponent = _ONE.scaleb(-places)
    return _to_decimal(value).quantize(exponent, rounding=ROUND_HALF_UP)


def format_whole(value) -> str:
    """1234.5 -> '1,235'."""
    return f"{int(round_half_up(value)):,}"


def format_money(value, currency: str) -> str:
    """1234.5, 'SSP' -> 'SSP 1,235'."""
    return f"{currency} {format_whole(value)}"


def format_compact(value) -> str:
    """
    2_345_678 -> '2.3M', 456_789 -> '457K', 45_678 -> '45,678'.
    """
    cfg = get_formatting_config()
    amount = _to_decimal(value)
    magnitude = abs(amount)

    thousands = round_half_up(amount / Decimal(1_000))
    # 999,500 rounds to 1,000K; show it as 1.0M instead.
    if magnitude >= cfg["compact_million"] or abs(thousands) * 1_000 >= cfg["compact_million"]:
        return f"{format(round_half_up(amount / Decimal(1_000_000), 1), 'f')}M"
    if magnitude >= cfg["compact_thousand"]:
        return f"{int(thousands):,}K"
    return format_whole(amount)


def format_percent(value, digits: int = 1, signed: bool = False) -> str:
    """12.345 -> '12.3%'. With signed=True positive values get a leading '+'."""
    rounded = round_half_up(value, digits)
    text = format(rounded, "f")
    if signed and rounded > 0:
        text = "+" + text
    return f"{text}%"
