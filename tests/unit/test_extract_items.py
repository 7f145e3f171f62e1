"""Unit tests for flattening structured extraction payloads into line items."""

from __future__ import annotations

from lendcore.codification.pipeline import extract_items_from_data
from lendcore.models import DataType


class TestExtractItemsFromData:
    def test_all_sections(self):
        payload = {
            "detected_currency": "GBP",
            "costs": [
                {"type": "Stamp Duty", "amount": 125000, "category": "Site Costs"},
                {"type": "Missing Amount"},
            ],
            "cost_categories": {
                "site_costs": {
                    "items": [
                        {"type": "Stamp Duties", "amount": 125000},
                        {"type": "Legal Fees", "amount": 15000},
                    ]
                },
                "professional_fees": {"items": [{"type": "Architect", "amount": 40000}]},
                "custom_section": {"items": [{"type": "Party Wall", "amount": 2000}]},
                "broken": None,
            },
            "financing": {"loan_amount": 3000000, "interest_rate": 0.085},
            "plots": [{"name": "Plot 1", "cost": 350000}, {"name": "Plot 2"}],
            "revenue": {"total_sales": 4500000},
            "profit": {"total": 900000},
            "units": {"count": 12},
        }

        items = extract_items_from_data(payload)

        by_name = {item.original_name: item for item in items}
        assert list(by_name) == [
            "Stamp Duty",
            "Legal Fees",
            "Architect",
            "Party Wall",
            "Loan Amount",
            "Interest Rate",
            "Plot: Plot 1",
            "Total Sales",
            "Total Profit",
            "Unit Count",
        ]
        assert by_name["Legal Fees"].category == "Site Costs"
        assert by_name["Architect"].category == "Professional Fees"
        assert by_name["Party Wall"].category == "custom_section"
        assert by_name["Loan Amount"].data_type == DataType.CURRENCY
        assert by_name["Interest Rate"].data_type == DataType.PERCENTAGE
        assert by_name["Unit Count"].data_type == DataType.NUMBER
        assert by_name["Plot: Plot 1"].category == "Plots"

    def test_empty_payload(self):
        assert extract_items_from_data({}) == []

    def test_costs_default_category(self):
        [item] = extract_items_from_data({"costs": [{"type": "Sundries", "amount": "TBC"}]})

        assert item.category == "Other"
        assert item.data_type == DataType.CURRENCY
        assert item.value.payload == "TBC"
