"""
Helpers for Vietnamese Dong amounts.

VND has no minor unit in everyday use, so every amount here is a whole
number of đồng. Display uses a dot as the thousands separator
("1.000.000 ₫"); user input may also arrive in shorthand like "50k",
"30 nghìn" or "2.5tr".
"""

import re

_SYMBOLS_RE = re.compile(r"₫|đ|vnd|vnđ", re.IGNORECASE)

# Multipliers for spoken/shorthand amounts
_MULTIPLIERS = {
    "k": 1_000,
    "nghìn": 1_000,
    "nghin": 1_000,
    "ngàn": 1_000,
    "ngan": 1_000,
    "tr": 1_000_000,
    "triệu": 1_000_000,
    "trieu": 1_000_000,
    "củ": 1_000_000,
    "m": 1_000_000,
    "tỷ": 1_000_000_000,
    "ty": 1_000_000_000,
}

_SHORTHAND_RE = re.compile(
    r"^(?P<number>\d+(?:[.,]\d+)*)\s*(?P<unit>"
    + "|".join(sorted((re.escape(k) for k in _MULTIPLIERS), key=len, reverse=True))
    + r")?$",
    re.IGNORECASE,
)

# A number with an optional unit, not glued to a following word ("50k", not "5kg")
_PRICE_TOKEN_RE = re.compile(
    r"\d[\d.,]*\s*(?:"
    + "|".join(sorted((re.escape(k) for k in _MULTIPLIERS), key=len, reverse=True))
    + r")?(?![a-zà-ỹ])",
    re.IGNORECASE,
)


def _group_thousands(value: int) -> str:
    return f"{value:,}".replace(",", ".")


def format_vnd(amount) -> str:
    """
    Formats an amount as "1.000.000 ₫".
    None, NaN and negative values render as "0 ₫".
    """
    if amount is None:
        return "0 ₫"
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return "0 ₫"
    if value != value or value < 0:
        return "0 ₫"
    return f"{_group_thousands(int(round(value)))} ₫"


def format_vnd_short(amount) -> str:
    """Compact spoken form: '2.5 triệu', '50k', '500 đ'."""
    value = float(amount or 0)
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f} triệu"
    if value >= 1_000:
        return f"{value / 1_000:.0f}k"
    return f"{value:.0f} đ"


def _to_number(number: str, has_unit: bool) -> float:
    # With a unit suffix a single separator followed by 1-2 digits is a
    # decimal point ("2.5tr", "1,2 triệu"); otherwise separators group thousands.
    if has_unit and re.fullmatch(r"\d+[.,]\d{1,2}", number):
        return float(number.replace(",", "."))
    return float(re.sub(r"[.,]", "", number))


def parse_vnd(text) -> int:
    """
    Parses a VND string into whole đồng.

    Accepts "1.000.000đ", "1,000,000", "50k", "30 nghìn", "2.5tr",
    "2 triệu". Returns 0 for anything unparseable.
    """
    if text is None:
        return 0
    if isinstance(text, (int, float)):
        return int(round(text)) if text == text else 0

    cleaned = _SYMBOLS_RE.sub("", str(text)).strip().lower()
    cleaned = re.sub(r"\s+", " ", cleaned)
    if not cleaned:
        return 0

    match = _SHORTHAND_RE.match(cleaned)
    if not match:
        return 0

    unit = match.group("unit")
    value = _to_number(match.group("number"), has_unit=bool(unit))
    if unit:
        value *= _MULTIPLIERS[unit.lower()]
    return int(round(value))


def extract_price(text: str) -> int:
    """First price-looking token in free text, parsed; 0 when there is none."""
    if not text:
        return 0
    cleaned = _SYMBOLS_RE.sub(" ", text)
    match = _PRICE_TOKEN_RE.search(cleaned)
    if not match:
        return 0
    return parse_vnd(match.group(0).strip().rstrip(".,"))
