"""
PRICE HELPERS
=============

WooCommerce speaks money three ways:
- Store API: integer strings in minor units ("1250" with currency_minor_unit=2)
- wc/v3 API: decimal strings ("12.50")
- Add-on labels: "Gold (+ $15.00)", sometimes HTML-escaped ("&#36;")
"""

import html
import re
from typing import Any, Tuple

DEFAULT_MINOR_UNIT = 2
DEFAULT_SYMBOL = "$"

# "(+ $15.00)" / "(+&#36;1,290.00)" / "(+ 5)" at the end of a label
PRICE_SUFFIX_RE = re.compile(r"\s*\(\+\s*\$?\s*([0-9][0-9,]*(?:\.[0-9]+)?)\s*\)\s*$")
NON_NUMERIC_RE = re.compile(r"[^0-9.\-]+")


def money(value: float) -> float:
    """Round to cents"""
    return round(float(value), 2)


def minor_to_major(amount: Any, minor_unit: int = DEFAULT_MINOR_UNIT) -> float:
    """Convert a Store API minor-unit amount ("1250") to a decimal amount (12.5)"""
    if amount is None or amount == "":
        return 0.0
    try:
        value = float(str(amount).strip())
    except ValueError:
        return 0.0
    return money(value / (10 ** int(minor_unit)))


def raw_price(amount: Any, minor_unit: int = DEFAULT_MINOR_UNIT) -> str:
    return f"{minor_to_major(amount, minor_unit):.2f}"


def format_price(
    amount: Any,
    minor_unit: int = DEFAULT_MINOR_UNIT,
    symbol: str = DEFAULT_SYMBOL
) -> str:
    """Store API minor units -> "$12.50" """
    return f"{symbol}{minor_to_major(amount, minor_unit):.2f}"


def format_money(value: float) -> str:
    """12345.5 -> "12,345.50" """
    return f"{money(value):,.2f}"


def parse_price(value: Any) -> float:
    """
    Parse a display price into a number.

    Accepts numbers, "$1,290.00", "&#36;5", "12.50". Anything unparseable is 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)

    text = html.unescape(str(value))
    cleaned = NON_NUMERIC_RE.sub("", text)
    if not cleaned:
        return 0.0
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def split_price_label(text: Any) -> Tuple[str, float]:
    """
    Split an add-on label into its label and price delta.

        "Gold (+ $15.00)"          -> ("Gold", 15.0)
        "3.7 (+ &#36;585.00)"      -> ("3.7", 585.0)
        "Zipper (+$1,250.50)"      -> ("Zipper", 1250.5)
        "Plain"                    -> ("Plain", 0.0)
    """
    if text is None:
        return "", 0.0

    decoded = html.unescape(str(text))
    match = PRICE_SUFFIX_RE.search(decoded)
    if not match:
        return decoded.strip(), 0.0

    label = decoded[:match.start()].strip()
    price = float(match.group(1).replace(",", ""))
    return label, price


def prices_match(a: float, b: float, tolerance: float = 0.01) -> bool:
    return abs(float(a) - float(b)) <= tolerance + 1e-9
