"""
Currency symbols and price formatting used by every listing screen.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CURRENCY_SYMBOLS = {
    "NPR": "Rs. ",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "INR": "₹",
}

CURRENCY_NAMES = {
    "NPR": "Nepali Rupee",
    "USD": "US Dollar",
    "EUR": "Euro",
    "GBP": "British Pound",
    "INR": "Indian Rupee",
}


_LEADING_NUMBER = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")

# en-US currency display; other codes render as "<CODE> 1,234.50"
_LOCALE_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "INR": "₹",
}


def get_currency_symbol(currency: str | None) -> str:
    if not currency:
        return ""
    return CURRENCY_SYMBOLS.get(currency, currency)


def _to_decimal(price) -> Decimal | None:
    if isinstance(price, Decimal):
        return price if price.is_finite() else None
    if price is None or isinstance(price, bool):
        return None
    if isinstance(price, str):
        # leading number only, so "12abc" reads as 12
        m = _LEADING_NUMBER.match(price)
        if not m:
            return None
        price = m.group(1)
    try:
        value = Decimal(str(price).strip())
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def format_price(
    price,
    currency: str = "USD",
    *,
    decimals: int = 2,
    show_symbol: bool = True,
    symbol_position: str = "before",
) -> str:
    """
    Format a price with its currency symbol.

    Invalid numbers render as zero. `symbol_position="after"` yields "12.50 $".
    """
    value = _to_decimal(price)
    if value is None:
        return f"{get_currency_symbol(currency)}0.00" if show_symbol else "0.00"

    quant = Decimal(1).scaleb(-decimals) if decimals > 0 else Decimal(1)
    formatted = str(value.quantize(quant, rounding=ROUND_HALF_UP))

    if not show_symbol:
        return formatted

    symbol = get_currency_symbol(currency)
    if symbol_position == "after":
        return f"{formatted} {symbol}"
    return f"{symbol}{formatted}"


def parse_price(text: str | None) -> float:
    """Strip currency symbols and separators; 0 when nothing numeric is left."""
    cleaned = re.sub(r"[^0-9.]", "", text or "")
    try:
        return float(cleaned)
    except ValueError:
        # "1.2.3" style leftovers: keep the leading valid number
        m = re.match(r"\d*\.?\d+", cleaned)
        return float(m.group(0)) if m else 0.0


def format_price_locale(price, currency: str = "USD") -> str:
    """
    en-US style currency display with thousands separators, e.g. "$1,234.50".

    Codes that are not ISO-shaped fall back to `format_price`.
    """
    value = _to_decimal(price)
    if value is None:
        return format_price(0, currency)
    code = (currency or "").strip().upper()
    if len(code) != 3 or not code.isalpha():
        return format_price(value, currency)

    amount = f"{abs(value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)):,.2f}"
    symbol = _LOCALE_SYMBOLS.get(code, f"{code} ")
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{amount}"
