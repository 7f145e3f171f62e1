"""Integration tests for the lendcore CLI against a file-backed SQLite database."""

from __future__ import annotations

import json
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from lendcore.cli import app
from lendcore.config import reset_config

runner = CliRunner()


@pytest.fixture
def cli_db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'lendcore.db'}")
    reset_config()
    result = runner.invoke(app, ["init"])
    assert result.exit_code == 0, result.output
    return tmp_path


class TestCli:
    def test_init_and_seed(self, cli_db):
        result = runner.invoke(app, ["seed"])

        assert result.exit_code == 0, result.output
        assert "Registry Seed" in result.output

    def test_codify_without_smart_pass(self, cli_db):
        runner.invoke(app, ["seed"])
        payload = cli_db / "appraisal.json"
        payload.write_text(
            json.dumps(
                {
                    "costs": [
                        {"type": "SDLT", "amount": 125000, "category": "Site Costs"},
                        {"type": "Widget Levy", "amount": 1200},
                    ]
                }
            ),
            encoding="utf-8",
        )

        result = runner.invoke(
            app,
            ["codify", str(payload), "--document", "doc-1", "--project", "p1", "--no-smart-pass"],
        )

        assert result.exit_code == 0, result.output
        assert "Matched: 1" in result.output
        assert "Pending review: 1" in result.output

    def test_empty_library(self, cli_db):
        result = runner.invoke(app, ["library", "p1"])

        assert result.exit_code == 0, result.output
        assert "No items found" in result.output

    def test_unknown_extraction_exits_with_error(self, cli_db):
        result = runner.invoke(app, ["merge", str(uuid4())])

        assert result.exit_code == 1
        assert "not found" in result.output.lower()

    def test_migrate_dry_run(self, cli_db):
        records = cli_db / "records.json"
        records.write_text(
            json.dumps(
                [
                    {
                        "owner_type": "client",
                        "owner_id": "c1",
                        "intelligence": {"identity": {"legalName": "Acme Ltd"}},
                    }
                ]
            ),
            encoding="utf-8",
        )

        result = runner.invoke(app, ["migrate", str(records), "--dry-run"])

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert "Items added: 1" in result.output
