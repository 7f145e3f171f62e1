"""Workbook I/O for template population (openpyxl, httpx)."""

from __future__ import annotations

import logging
import zipfile
from io import BytesIO
from typing import Any

import httpx
from openpyxl import load_workbook

from lendcore.models import PopulationItem, PopulationResult
from lendcore.templates.populator import populate_sheets

logger = logging.getLogger(__name__)

VBA_PART = "xl/vbaProject.bin"


def _has_macros(data: bytes) -> bool:
    with zipfile.ZipFile(BytesIO(data)) as archive:
        return VBA_PART in archive.namelist()


def load_workbook_grids(data: bytes) -> dict[str, list[list[Any]]]:
    """Read every sheet into a grid anchored at A1. Formulas come back as text."""
    workbook = load_workbook(BytesIO(data), data_only=False)
    grids: dict[str, list[list[Any]]] = {}
    for sheet in workbook.worksheets:
        grids[sheet.title] = [
            list(row)
            for row in sheet.iter_rows(
                min_row=1,
                min_col=1,
                max_row=sheet.max_row,
                max_col=sheet.max_column,
                values_only=True,
            )
        ]
    return grids


def write_workbook_grids(template_bytes: bytes, sheets: dict[str, list[list[Any]]]) -> BytesIO:
    """Write populated grids back into the template.

    Only changed cells are touched so styles, formulas elsewhere and (for
    ``.xlsm``) macros survive. Empty strings clear the cell.
    """
    workbook = load_workbook(BytesIO(template_bytes), keep_vba=_has_macros(template_bytes))

    changed = 0
    for name, rows in sheets.items():
        if name not in workbook.sheetnames:
            logger.warning("Sheet %s not in template, skipping", name)
            continue
        sheet = workbook[name]
        for r, row in enumerate(rows, start=1):
            for c, value in enumerate(row, start=1):
                cell = sheet.cell(row=r, column=c)
                new_value = None if value == "" else value
                if cell.value != new_value:
                    cell.value = new_value
                    changed += 1

    output = BytesIO()
    workbook.save(output)
    output.seek(0)
    logger.info("Wrote %d changed cells", changed)
    return output


async def fetch_template(
    url: str, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None
) -> bytes:
    """Download a template file.

    Raises:
        httpx.HTTPStatusError: Non-2xx response
    """
    async with httpx.AsyncClient(
        timeout=timeout, follow_redirects=True, transport=transport
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
    logger.info("Fetched template from %s (%d bytes)", url, len(response.content))
    return response.content


def populate_workbook(
    template_bytes: bytes, items: list[PopulationItem]
) -> tuple[BytesIO, PopulationResult]:
    """Load, populate and re-serialize a template in one call."""
    result = populate_sheets(load_workbook_grids(template_bytes), items)
    return write_workbook_grids(template_bytes, result.sheets), result


async def populate_workbook_from_url(
    url: str, items: list[PopulationItem]
) -> tuple[BytesIO, PopulationResult]:
    return populate_workbook(await fetch_template(url), items)
