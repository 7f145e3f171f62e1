"""Unit tests for the YAML mapping resources."""

from __future__ import annotations

import pytest

from lendcore.errors import ConfigurationError
from lendcore.models import DataType, OwnerType
from lendcore.resources import (
    load_checklist_templates,
    load_field_hints,
    load_legacy_paths,
    load_vocabulary,
)


class TestPackagedResources:
    """The YAML files shipped in lendcore/data load cleanly."""

    def test_vocabulary(self):
        vocabulary = load_vocabulary()

        names = [category.name for category in vocabulary.categories]
        assert "Site Costs" in names
        assert "Other" in names

        codes = {code.code: code for code in vocabulary.codes}
        assert "SDLT" in codes["<stamp.duty>"].aliases
        assert codes["<interest.rate>"].data_type == DataType.PERCENTAGE

    def test_field_hints(self):
        hints = load_field_hints()

        assert "financial.netWorth" in hints["Financial Statement"]

    def test_legacy_paths(self):
        paths = load_legacy_paths()

        assert paths[OwnerType.CLIENT]["identity.legalName"] == "company.name"
        assert "location.siteAddress" in paths[OwnerType.PROJECT]

    def test_checklist_templates(self):
        templates = load_checklist_templates()

        client = templates["borrower_client"]
        assert client.owner_type == OwnerType.CLIENT
        assert client.requirements
        assert all(req.order > 0 for req in client.requirements)
        assert templates["borrower_project"].owner_type == OwnerType.PROJECT


class TestResourceErrors:
    """Broken resource files fail fast with ConfigurationError."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_vocabulary(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "vocabulary.yaml"
        path.write_text("categories: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_vocabulary(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Expected a mapping"):
            load_field_hints(path)

    def test_code_needs_category(self, tmp_path):
        path = tmp_path / "vocabulary.yaml"
        path.write_text("codes:\n  - code: <gdv>\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="needs 'code' and 'category'"):
            load_vocabulary(path)

    def test_unknown_data_type(self, tmp_path):
        path = tmp_path / "vocabulary.yaml"
        path.write_text(
            "codes:\n  - code: <gdv>\n    category: Revenue\n    data_type: money\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigurationError, match="<gdv>"):
            load_vocabulary(path)

    def test_hint_must_be_list(self, tmp_path):
        path = tmp_path / "hints.yaml"
        path.write_text("hints:\n  Appraisal: financials.gdv\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="must list field paths"):
            load_field_hints(path)

    def test_template_owner_type(self, tmp_path):
        path = tmp_path / "templates.yaml"
        path.write_text(
            "templates:\n  broken:\n    owner_type: lender\n    requirements: []\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigurationError, match="broken"):
            load_checklist_templates(path)

    def test_defaults_applied(self, tmp_path):
        path = tmp_path / "templates.yaml"
        path.write_text(
            "templates:\n"
            "  minimal:\n"
            "    requirements:\n"
            "      - name: Appraisal\n"
            "      - name: Valuation\n"
            "        category: Valuation\n",
            encoding="utf-8",
        )

        template = load_checklist_templates(path)["minimal"]

        assert template.owner_type == OwnerType.PROJECT
        assert [req.order for req in template.requirements] == [1, 2]
        assert template.requirements[0].category == "Other"
        assert template.requirements[0].priority == "required"
