from decimal import Decimal

from app.backoffice.currency import format_price, format_price_locale, get_currency_symbol, parse_price


def test_currency_symbols():
    assert get_currency_symbol("NPR") == "Rs. "
    assert get_currency_symbol("EUR") == "€"
    assert get_currency_symbol("JPY") == "JPY"
    assert get_currency_symbol(None) == ""


def test_format_price_defaults():
    assert format_price(12.5) == "$12.50"
    assert format_price(Decimal("1999.999"), "INR") == "₹2000.00"
    assert format_price("7", "NPR") == "Rs. 7.00"


def test_format_price_options():
    assert format_price(3, "GBP", decimals=0) == "£3"
    assert format_price(3, "GBP", show_symbol=False) == "3.00"
    assert format_price(3, "EUR", symbol_position="after") == "3.00 €"


def test_format_price_invalid_input():
    assert format_price("abc", "USD") == "$0.00"
    assert format_price(None, "NPR") == "Rs. 0.00"
    assert format_price(float("nan")) == "$0.00"


def test_parse_price():
    assert parse_price("$1,234.50") == 1234.50
    assert parse_price("NPR 99") == 99.0
    assert parse_price("") == 0
    assert parse_price("free") == 0


def test_format_price_reads_leading_number():
    assert format_price("12abc") == "$12.00"
    assert format_price("  3.5 each", "GBP") == "£3.50"
    assert format_price("abc12") == "$0.00"


def test_format_price_locale():
    assert format_price_locale(1234.5) == "$1,234.50"
    assert format_price_locale("1234567.891", "INR") == "₹1,234,567.89"
    assert format_price_locale(Decimal("-5"), "EUR") == "-€5.00"
    assert format_price_locale(99, "NPR") == "NPR 99.00"
    assert format_price_locale("oops", "USD") == "$0.00"
    # not a currency code: plain formatting
    assert format_price_locale(2, "Rupees") == "Rupees2.00"
