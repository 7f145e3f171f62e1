"""Fill spreadsheet templates from codified values.

A template is ``{sheet_name: rows}`` where each row is a list of cell values.
Placeholders are ``<...>`` tokens inside text cells:

- ``<category.item>`` / ``<total.category>``: one specific code
- ``<all.{category}.name>`` / ``<all.{category}.value>``: default fallback slots,
  filled row by row with the category's items not already placed by code
- ``<all.{category}.name.{N}>`` / ``<all.{category}.value.{N}>``: numbered sets,
  filled with every item of the category

Population runs in three passes (specific codes, fallback slots, cleanup) and
never mutates the input grids.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from lendcore.canonical.normalize import parse_number, strip_brackets
from lendcore.models import (
    CodifiedExtraction,
    DataType,
    KnowledgeItem,
    KnowledgeStatus,
    KnowledgeValueType,
    MappingStatus,
    OverflowReport,
    PopulationItem,
    PopulationResult,
    PopulationStats,
    ProjectLibrary,
    raw_payload,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"<([^<>]+)>")
WHOLE_PLACEHOLDER_PATTERN = re.compile(r"^<[^<>]+>$")
NUMBERED_SET_PATTERN = re.compile(r"^<all\.([a-z.]+)\.(name|value)\.(\d+)>$", re.IGNORECASE)
CATEGORY_FALLBACK_PATTERN = re.compile(r"^<all\.([a-z.]+)\.(name|value)>$", re.IGNORECASE)

# Display category or template spelling -> fallback slot category
CATEGORY_NORMALIZATIONS: dict[str, str] = {
    "site costs": "site.costs",
    "purchase costs": "site.costs",
    "land costs": "site.costs",
    "land acquisition": "site.costs",
    "acquisition costs": "site.costs",
    "site": "site.costs",
    "professional fees": "professional.fees",
    "professional": "professional.fees",
    "fees": "professional.fees",
    "consultants": "professional.fees",
    "consultant fees": "professional.fees",
    "profesional fees": "professional.fees",
    "profesional.fees": "professional.fees",
    "profesional": "professional.fees",
    "professioal fees": "professional.fees",
    "professioal.fees": "professional.fees",
    "professioal": "professional.fees",
    "construction costs": "construction.costs",
    "net construction costs": "construction.costs",
    "build costs": "construction.costs",
    "construction": "construction.costs",
    "building costs": "construction.costs",
    "build": "construction.costs",
    "development costs": "construction.costs",
    "development": "construction.costs",
    "dev costs": "construction.costs",
    "financing costs": "financing.costs",
    "financing/legal fees": "financing.costs",
    "financing.legal fees": "financing.costs",
    "financing legal fees": "financing.costs",
    "financing": "financing.costs",
    "finance": "financing.costs",
    "finance costs": "financing.costs",
    "loan costs": "financing.costs",
    "interest": "financing.costs",
    "legal fees": "financing.costs",
    "disposal costs": "disposal.costs",
    "disposal fees": "disposal.costs",
    "disposal": "disposal.costs",
    "sales costs": "disposal.costs",
    "selling costs": "disposal.costs",
    "marketing": "disposal.costs",
    "marketing costs": "disposal.costs",
    "plots": "plots",
    "plot": "plots",
    "units": "plots",
    "unit": "plots",
    "houses": "plots",
    "house": "plots",
    "developments": "plots",
    "homes": "plots",
    "home": "plots",
    "properties": "plots",
    "property": "plots",
    "dwellings": "plots",
    "revenue": "revenue",
    "sales": "revenue",
    "income": "revenue",
    "gross development value": "revenue",
    "gdv": "revenue",
    "profit": "profit",
    "profits": "profit",
    "margin": "profit",
    "returns": "profit",
    "other": "other",
    "uncategorized": "other",
    "miscellaneous": "other",
    "misc": "other",
    "general": "other",
}

_NUMERIC_TYPES = (DataType.CURRENCY, DataType.NUMBER, DataType.PERCENTAGE)


def normalize_fallback_category(category: str) -> str:
    lowered = category.strip().lower()
    return CATEGORY_NORMALIZATIONS.get(lowered) or re.sub(r"\s+", ".", lowered)


def format_value(value: Any, data_type: DataType) -> Any:
    """Cell value for an item: numbers stay numbers, percentages become fractions."""
    if value is None:
        return ""
    if DataType(data_type) not in _NUMERIC_TYPES:
        return str(value)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        number = float(value)
    else:
        number = parse_number(str(value))

    if data_type == DataType.PERCENTAGE and number > 1:
        return number / 100
    if number.is_integer():
        return int(number)
    return number


@dataclass
class _Slot:
    sheet: str
    row: int
    category: str
    set_number: int | None
    name_col: int | None = None
    value_col: int | None = None


class _CodeLookup:
    """Exact, case-insensitive, then bracketless lookup of items by code."""

    def __init__(self, items: list[PopulationItem]):
        self.exact: dict[str, PopulationItem] = {}
        for item in items:
            self.exact.setdefault(item.item_code, item)
            self.exact.setdefault(strip_brackets(item.item_code), item)
        self.lowered = {}
        for code, item in self.exact.items():
            self.lowered.setdefault(code.lower(), item)

    def find(self, placeholder: str) -> PopulationItem | None:
        inner = placeholder[1:-1]
        for key in (placeholder, inner):
            if key in self.exact:
                return self.exact[key]
            if key.lower() in self.lowered:
                return self.lowered[key.lower()]
        return None


def populate_sheets(
    sheets: dict[str, list[list[Any]]], items: list[PopulationItem]
) -> PopulationResult:
    """Replace placeholders in ``sheets`` with item values.

    Items that do not fit a category's fallback slots are reported in
    ``overflow``; every placeholder left after both passes is cleared.
    """
    grids = {name: [list(row) for row in rows] for name, rows in sheets.items()}
    lookup = _CodeLookup(items)
    stats = PopulationStats()
    matched: list[str] = []
    unmatched: list[str] = []
    placed: set[int] = set()
    slots: list[_Slot] = []

    # Pass 1: specific codes; fallback tokens are only recorded
    for sheet_name, rows in grids.items():
        for r, row in enumerate(rows):
            for c, cell in enumerate(row):
                if not isinstance(cell, str) or "<" not in cell:
                    continue
                new_value: Any = cell
                for match in PLACEHOLDER_PATTERN.finditer(cell):
                    placeholder = match.group(0)
                    stats.placeholders_found += 1

                    if _record_slot(slots, sheet_name, r, c, placeholder):
                        continue

                    item = lookup.find(placeholder)
                    if item is None:
                        if placeholder not in unmatched:
                            unmatched.append(placeholder)
                        continue

                    formatted = format_value(item.value, item.data_type)
                    if cell == placeholder:
                        new_value = formatted
                    else:
                        new_value = str(new_value).replace(placeholder, str(formatted), 1)
                    placed.add(id(item))
                    stats.placeholders_filled += 1
                    if placeholder not in matched:
                        matched.append(placeholder)
                row[c] = new_value

    # Pass 2: category fallback slots
    by_category: dict[str, list[PopulationItem]] = defaultdict(list)
    for item in items:
        if item.is_computed:
            continue
        by_category[normalize_fallback_category(item.category)].append(item)

    groups: dict[tuple[str, str, int | None], list[_Slot]] = defaultdict(list)
    for slot in sorted(slots, key=lambda s: (s.sheet, s.row, s.set_number or -1)):
        groups[(slot.sheet, slot.category, slot.set_number)].append(slot)

    overflow: list[OverflowReport] = []
    for (sheet_name, category, set_number), group in groups.items():
        candidates = by_category.get(category) or by_category.get(
            normalize_fallback_category(category), []
        )
        if set_number is None:
            candidates = [item for item in candidates if id(item) not in placed]

        rows = grids[sheet_name]
        for slot, item in zip(group, candidates):
            if slot.name_col is not None:
                rows[slot.row][slot.name_col] = item.original_name
            if slot.value_col is not None:
                rows[slot.row][slot.value_col] = format_value(item.value, item.data_type)
            stats.fallback_slots_filled += 1

        if len(candidates) > len(group):
            report = OverflowReport(
                sheet=sheet_name,
                category=category,
                set_number=set_number,
                slots=len(group),
                items=len(candidates),
                overflow_items=candidates[len(group):],
            )
            overflow.append(report)
            logger.warning(
                "%d %s item(s) did not fit %d slot(s) on sheet %s",
                len(report.overflow_items),
                category,
                len(group),
                sheet_name,
            )

    # Pass 3: clear whatever is left
    for rows in grids.values():
        for row in rows:
            for c, cell in enumerate(row):
                if not isinstance(cell, str) or not PLACEHOLDER_PATTERN.search(cell):
                    continue
                if WHOLE_PLACEHOLDER_PATTERN.match(cell):
                    row[c] = ""
                else:
                    row[c] = PLACEHOLDER_PATTERN.sub("", cell).strip()
                stats.placeholders_cleared += 1

    logger.info(
        "Template populated: %d matched, %d unmatched, %d fallback rows, %d cleared",
        len(matched),
        len(unmatched),
        stats.fallback_slots_filled,
        stats.placeholders_cleared,
    )
    return PopulationResult(
        sheets=grids,
        matched=matched,
        unmatched=unmatched,
        overflow=overflow,
        stats=stats,
    )


def _record_slot(slots: list[_Slot], sheet: str, row: int, col: int, placeholder: str) -> bool:
    numbered = NUMBERED_SET_PATTERN.match(placeholder)
    fallback = None if numbered else CATEGORY_FALLBACK_PATTERN.match(placeholder)
    match = numbered or fallback
    if match is None:
        return False

    category = match.group(1).lower()
    set_number = int(numbered.group(3)) if numbered else None
    slot = next(
        (
            s
            for s in slots
            if s.sheet == sheet and s.row == row and s.category == category
            and s.set_number == set_number
        ),
        None,
    )
    if slot is None:
        slot = _Slot(sheet=sheet, row=row, category=category, set_number=set_number)
        slots.append(slot)
    if match.group(2).lower() == "name":
        slot.name_col = col
    else:
        slot.value_col = col
    return True


# ---------------------------------------------------------------------------
# Item sources
# ---------------------------------------------------------------------------


def items_from_extraction(extraction: CodifiedExtraction) -> list[PopulationItem]:
    """Matched and confirmed items of one extraction."""
    items = []
    for item in extraction.items:
        if item.mapping_status not in (MappingStatus.MATCHED, MappingStatus.CONFIRMED):
            continue
        if not item.item_code:
            continue
        items.append(
            PopulationItem(
                item_code=item.item_code,
                original_name=item.original_name,
                value=raw_payload(item.value),
                data_type=item.data_type,
                category=item.category,
            )
        )
    return items


_KNOWLEDGE_TYPES = {
    KnowledgeValueType.CURRENCY: DataType.CURRENCY,
    KnowledgeValueType.NUMBER: DataType.NUMBER,
    KnowledgeValueType.PERCENTAGE: DataType.PERCENTAGE,
}


def items_from_library(
    library: ProjectLibrary, knowledge: list[KnowledgeItem] | None = None
) -> list[PopulationItem]:
    """Ledger rows, category totals and active knowledge items as population items.

    Numeric ledger values use the normalized figure. Knowledge items are
    addressed by their field path (``<financials.gdv>``).
    """
    items: list[PopulationItem] = []
    for row in [*library.items, *library.totals]:
        if row.is_deleted:
            continue
        data_type = row.current_data_type
        value = (
            row.current_value_normalized
            if data_type in _NUMERIC_TYPES
            else raw_payload(row.current_value)
        )
        items.append(
            PopulationItem(
                item_code=row.item_code,
                original_name=row.original_name,
                value=value,
                data_type=data_type,
                category=row.category,
                is_computed=row.item_code.startswith("<total."),
            )
        )

    for entry in knowledge or []:
        if entry.status != KnowledgeStatus.ACTIVE:
            continue
        value = entry.value
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        items.append(
            PopulationItem(
                item_code=f"<{entry.field_path}>",
                original_name=entry.label,
                value=value,
                data_type=_KNOWLEDGE_TYPES.get(entry.value_type, DataType.STRING),
                category=entry.category,
            )
        )
    return items
