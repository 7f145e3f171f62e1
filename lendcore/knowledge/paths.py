"""Field path helpers shared by the knowledge store and migration."""

from __future__ import annotations

import re
from typing import Any, Iterator

from lendcore.models import KnowledgeValueType

_CURRENCY_HINTS = ("cost", "value", "price", "amount", "worth", "assets", "gdv", "loan")
_PERCENTAGE_HINTS = ("ltv", "ltc", "margin", "rate", "percentage")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_CAMEL_BOUNDARY = re.compile(r"([A-Z])")

LONG_TEXT_LENGTH = 200


def get_category_from_path(field_path: str) -> str:
    """First path segment, ``custom`` when empty."""
    return field_path.split(".")[0] or "custom"


def get_label_from_path(field_path: str) -> str:
    """Last path segment as Title Case words.

    >>> get_label_from_path("financial.netWorth")
    'Net Worth'
    """
    last = field_path.split(".")[-1]
    spaced = _CAMEL_BOUNDARY.sub(r" \1", last).strip()
    return spaced[:1].upper() + spaced[1:]


def infer_value_type(value: Any, field_path: str) -> KnowledgeValueType:
    """Guess the knowledge value type from the value and its field path."""
    if value is None:
        return KnowledgeValueType.STRING
    if isinstance(value, (list, tuple)):
        return KnowledgeValueType.ARRAY
    if isinstance(value, bool):
        return KnowledgeValueType.BOOLEAN

    path = field_path.lower()
    if isinstance(value, (int, float)):
        if any(hint in path for hint in _CURRENCY_HINTS):
            return KnowledgeValueType.CURRENCY
        if any(hint in path for hint in _PERCENTAGE_HINTS):
            return KnowledgeValueType.PERCENTAGE
        return KnowledgeValueType.NUMBER

    if isinstance(value, str):
        if "date" in path or _ISO_DATE.match(value):
            return KnowledgeValueType.DATE
        if len(value) > LONG_TEXT_LENGTH:
            return KnowledgeValueType.TEXT
    return KnowledgeValueType.STRING


def flatten_object(data: dict[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    """Yield ``(dotted_path, value)`` leaves of a nested dict.

    Lists are leaves. ``None`` values are dropped.
    """
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else key
        if value is None:
            continue
        if isinstance(value, dict):
            yield from flatten_object(value, path)
        else:
            yield path, value
