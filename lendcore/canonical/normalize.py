"""Text normalization helpers for codification.

Everything that turns a human label into a lookup key lives here so the Fast
Pass index, the alias registry and the Data Library agree on one definition.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from lendcore.models import (
    BooleanValue,
    DataType,
    ListValue,
    NumberValue,
    TextValue,
    as_raw_value,
)

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# Noise fragments stripped before label comparison (order matters)
_STRIP_PATTERNS = [
    re.compile(r"\d+(\.\d+)?%"),  # 7.5%, 10%
    re.compile(r"\bx\s?\d+", re.IGNORECASE),  # x4, x 12
    re.compile(r"\(\d+\s*bed(room)?s?\)", re.IGNORECASE),  # (5 bed)
    re.compile(r"-\s*\d+\s*bed(room)?s?(\s+\w+)?", re.IGNORECASE),  # - 5 bed detached
    re.compile(r"\d+\s*bed(room)?s?(\s+\w+)?", re.IGNORECASE),  # 3 bedroom semi
    re.compile(r"\([^)]*\)"),  # (notes)
    re.compile(
        r"\s*\b(detached|semi-detached|semi|terraced|apartment|flat|house)\b\s*",
        re.IGNORECASE,
    ),
]

_SEPARATORS = re.compile(r"[._-]+")

_PLURAL_TO_SINGULAR = {
    "costs": "cost",
    "rates": "rate",
    "fees": "fee",
    "works": "work",
    "duties": "duty",
    "charges": "charge",
    "expenses": "expense",
    "payments": "payment",
    "amounts": "amount",
    "values": "value",
    "prices": "price",
    "totals": "total",
    "sales": "sale",
    "profits": "profit",
    "loans": "loan",
    "units": "unit",
    "plots": "plot",
    "sites": "site",
    "buildings": "building",
    "services": "service",
    "externals": "external",
    "utilities": "utility",
    "preliminaries": "preliminary",
    "prelims": "prelim",
}

_ITEM_CODE = re.compile(r"^<[a-z0-9_]+(\.[a-z0-9_]+)*>$")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_CURRENCY_MARKERS = ("£", "$", "€", "gbp", "usd", "eur")
_COMPOUND = re.compile(r"[&,/]|\s+and\s+", re.IGNORECASE)


def normalize_alias(text: str | None) -> str:
    """Alias key: lowercase, trim, collapse internal whitespace."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.strip().lower())


def normalize_label(text: str | None) -> str:
    """Aggressive label key used as the Fast Pass second probe.

    Strips noise (percentages, multipliers, bedroom counts, parentheses,
    property types), folds ``._-`` to spaces and plurals to singular.

    Examples:
        >>> normalize_label("Build Costs (x4 plots)")
        'build cost'
        >>> normalize_label("Stamp_Duties 5%")
        'stamp duty'
    """
    if not text:
        return ""

    normalized = text.lower().strip()
    for pattern in _STRIP_PATTERNS:
        normalized = pattern.sub(" ", normalized)

    normalized = _SEPARATORS.sub(" ", normalized)
    normalized = _WHITESPACE.sub(" ", normalized).strip()
    if not normalized:
        return ""

    return " ".join(_PLURAL_TO_SINGULAR.get(word, word) for word in normalized.split(" "))


def normalize_category(name: str | None) -> str:
    """Category key: lowercase, whitespace to dots, drop anything not [a-z0-9.]."""
    if not name:
        return ""
    lowered = _WHITESPACE.sub(".", name.strip().lower())
    return re.sub(r"[^a-z0-9.]", "", lowered)


def category_to_slug(category: str | None) -> str:
    """Slug used inside total codes.

    ``"Construction Costs"`` -> ``"construction.costs"``. Dots count as
    separators, so a slug re-slugs to itself.
    """
    if not category:
        return ""
    cleaned = re.sub(r"[^a-z0-9\s.]", "", category.lower())
    return ".".join(word for word in re.split(r"[\s.]+", cleaned) if word)


def get_category_total_code(category: str) -> str:
    """Deterministic total code for a category: ``<total.<slug>>``."""
    return f"<total.{category_to_slug(category)}>"


def is_total_code(code: str | None) -> bool:
    return bool(code) and code.startswith("<total.") and code.endswith(">")


def is_item_code(text: str | None) -> bool:
    """True if ``text`` follows the ``<segment(.segment)*>`` code grammar."""
    return bool(text) and bool(_ITEM_CODE.match(text))


def strip_brackets(code: str) -> str:
    """``<stamp.duty>`` -> ``stamp.duty``."""
    return code[1:-1] if code.startswith("<") and code.endswith(">") else code


def is_compound_item(text: str) -> bool:
    """Label looks like several items combined ("Legal & Valuation Fees")."""
    return bool(_COMPOUND.search(text))


def parse_number(text: str) -> float:
    """Keep digits, dot and minus then parse; unparsable -> 0.0."""
    cleaned = _NON_NUMERIC.sub("", text)
    try:
        return float(cleaned)
    except ValueError:
        logger.debug("Unparsable numeric value %r normalized to 0", text)
        return 0.0


def normalize_numeric(value: Any) -> float:
    """Normalize a raw extracted value to a float. Never raises.

    - number: passed through
    - text: non-numeric characters stripped, then parsed (``"£12,500"`` -> 12500.0)
    - boolean: 1.0 / 0.0
    - list: 0.0 (no scalar meaning)
    """
    raw = as_raw_value(value)

    if isinstance(raw, NumberValue):
        return float(raw.payload)
    if isinstance(raw, TextValue):
        return parse_number(raw.payload)
    if isinstance(raw, BooleanValue):
        return 1.0 if raw.payload else 0.0
    if isinstance(raw, ListValue):
        return 0.0
    raise TypeError(f"Unsupported raw value kind: {raw!r}")


def detect_data_type(value: Any) -> DataType:
    """Guess the data type of an extracted value.

    Currency markers win; ``%`` or a bare fraction in (0, 1) is a percentage;
    other numerics are numbers; anything else is a string.
    """
    raw = as_raw_value(value)

    if isinstance(raw, NumberValue):
        return DataType.PERCENTAGE if 0 < raw.payload < 1 else DataType.NUMBER
    if not isinstance(raw, TextValue):
        return DataType.STRING

    text = raw.payload.strip().lower()
    if any(marker in text for marker in _CURRENCY_MARKERS):
        return DataType.CURRENCY
    if text.endswith("%"):
        return DataType.PERCENTAGE
    if re.fullmatch(r"-?[\d,]+(\.\d+)?", text):
        number = parse_number(text)
        return DataType.PERCENTAGE if 0 < number < 1 else DataType.NUMBER
    return DataType.STRING


def slugify_words(text: str) -> str:
    """Dot-joined lowercase words (used for generated codes)."""
    words = re.findall(r"[a-z0-9]+", text.lower())
    return ".".join(words)
