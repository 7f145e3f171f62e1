"""Spreadsheet template population."""

from lendcore.templates.populator import (
    items_from_extraction,
    items_from_library,
    populate_sheets,
)
from lendcore.templates.workbook import (
    fetch_template,
    load_workbook_grids,
    populate_workbook,
    write_workbook_grids,
)

__all__ = [
    "fetch_template",
    "items_from_extraction",
    "items_from_library",
    "load_workbook_grids",
    "populate_sheets",
    "populate_workbook",
    "write_workbook_grids",
]
