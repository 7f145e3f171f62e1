"""Integration tests for workbook population with openpyxl and httpx."""

from __future__ import annotations

from io import BytesIO

import httpx
import pytest
from openpyxl import Workbook, load_workbook

from lendcore.models import DataType, PopulationItem
from lendcore.templates import (
    fetch_template,
    load_workbook_grids,
    populate_workbook,
    write_workbook_grids,
)


@pytest.fixture
def template_bytes() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Appraisal"
    sheet["A1"], sheet["B1"] = "Stamp Duty", "<stamp.duty>"
    sheet["B1"].number_format = "£#,##0"
    sheet["A2"], sheet["B2"] = "Interest", "<interest.rate>"
    sheet["A3"], sheet["B3"] = "<all.site.costs.name>", "<all.site.costs.value>"
    sheet["A4"], sheet["B4"] = "Check", "=SUM(B1:B3)"
    sheet["A5"], sheet["B5"] = "Unknown", "<missing.code>"
    workbook.create_sheet("Notes")["A1"] = "Prepared for credit committee"

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def items() -> list[PopulationItem]:
    return [
        PopulationItem(item_code="<stamp.duty>", original_name="Stamp Duty", value=125000, category="Site Costs"),
        PopulationItem(
            item_code="<interest.rate>",
            original_name="Interest Rate",
            value="7.5",
            data_type=DataType.PERCENTAGE,
            category="Financing Costs",
        ),
        PopulationItem(item_code="<legal.fees>", original_name="Legal Fees", value=15000, category="Site Costs"),
    ]


class TestWorkbookGrids:
    def test_load_reads_every_sheet(self, template_bytes):
        grids = load_workbook_grids(template_bytes)

        assert set(grids) == {"Appraisal", "Notes"}
        assert grids["Appraisal"][0] == ["Stamp Duty", "<stamp.duty>"]
        assert grids["Appraisal"][3][1] == "=SUM(B1:B3)"
        assert grids["Notes"] == [["Prepared for credit committee"]]

    def test_write_skips_unknown_sheets(self, template_bytes):
        output = write_workbook_grids(template_bytes, {"Missing": [["x"]], "Notes": [["Updated"]]})

        workbook = load_workbook(output)
        assert workbook.sheetnames == ["Appraisal", "Notes"]
        assert workbook["Notes"]["A1"].value == "Updated"


class TestPopulateWorkbook:
    def test_round_trip(self, template_bytes, items):
        """Test placeholders are filled while formulas and formats survive."""
        output, result = populate_workbook(template_bytes, items)

        sheet = load_workbook(output)["Appraisal"]
        assert sheet["B1"].value == 125000
        assert sheet["B1"].number_format == "£#,##0"
        assert sheet["B2"].value == 0.075
        assert sheet["A3"].value == "Legal Fees"
        assert sheet["B3"].value == 15000
        assert sheet["B4"].value == "=SUM(B1:B3)"
        assert sheet["B5"].value is None
        assert result.unmatched == ["<missing.code>"]
        assert result.stats.fallback_slots_filled == 1


class TestFetchTemplate:
    @pytest.mark.asyncio
    async def test_fetch(self, template_bytes):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/templates/appraisal.xlsx"
            return httpx.Response(200, content=template_bytes)

        data = await fetch_template(
            "https://files.example.test/templates/appraisal.xlsx",
            transport=httpx.MockTransport(handler),
        )

        assert data == template_bytes

    @pytest.mark.asyncio
    async def test_fetch_error(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        with pytest.raises(httpx.HTTPStatusError):
            await fetch_template("https://files.example.test/missing.xlsx", transport=transport)
