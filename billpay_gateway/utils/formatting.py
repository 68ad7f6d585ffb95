"""Currency and phone formatting helpers"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Tuple

# (thousands separator, decimal separator)
LOCALE_SEPARATORS: Dict[str, Tuple[str, str]] = {
    "en_US": (",", "."),
    "en_GB": (",", "."),
    "en_UG": (",", "."),
    "en_KE": (",", "."),
    "de_DE": (".", ","),
    "fr_FR": ("\u202f", ","),
}

COUNTRY_DIALING_CODES: Dict[str, str] = {
    "UG": "256",
    "KE": "254",
    "TZ": "255",
    "RW": "250",
}


def normalize_currency_code(code: str | None, default: str = "UGX") -> str:
    """Strip enum-style prefixes: "CurrencyCode.UGX" -> "UGX" """
    if not code:
        return default
    return str(code).split(".")[-1].strip().upper() or default


def format_amount(amount: Decimal, locale: str = "en_US") -> str:
    """Group thousands and show at most two decimals, dropping trailing zeros"""
    thousands, decimal_sep = LOCALE_SEPARATORS.get(locale, LOCALE_SEPARATORS["en_US"])
    quantized = Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{quantized:,.2f}"
    whole, fraction = text.split(".")
    fraction = fraction.rstrip("0")
    whole = whole.replace(",", thousands)
    return f"{whole}{decimal_sep}{fraction}" if fraction else whole


def format_currency(amount: Decimal, currency: str, locale: str = "en_US") -> str:
    """
    Format an amount with its currency code.

    Example:
        format_currency(Decimal("1250000"), "UGX") -> "UGX 1,250,000"
        format_currency(Decimal("10.5"), "USD", "de_DE") -> "USD 10,5"
    """
    return f"{normalize_currency_code(currency)} {format_amount(amount, locale)}"


def format_phone(number: str, country_code: str = "UG") -> str:
    """
    Render a mobile number in international form.

    Local numbers with a leading 0 get the country's dialing code. Numbers
    that cannot be recognised are returned stripped but otherwise unchanged.
    """
    digits = "".join(ch for ch in number if ch.isdigit())
    dialing = COUNTRY_DIALING_CODES.get(country_code.upper())
    if not digits or dialing is None:
        return number.strip()

    if digits.startswith(dialing) and len(digits) == len(dialing) + 9:
        national = digits[len(dialing):]
    elif digits.startswith("0") and len(digits) == 10:
        national = digits[1:]
    elif len(digits) == 9:
        national = digits
    else:
        return number.strip()

    return f"+{dialing} {national[:3]} {national[3:6]} {national[6:]}"
