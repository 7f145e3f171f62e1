"""lendcore CLI - async commands over the codification engine.

Commands:
- init: Initialize database schema
- seed: Load default categories, codes and aliases
- codify: Run Fast Pass / Smart Pass over an extraction payload (JSON)
- confirm: Confirm suggested codes on an extraction
- merge: Merge a codified extraction into its project library
- library: Show a project's data library with category totals
- revert-document: Undo a document's contribution to a project library
- populate: Fill a spreadsheet template from a project library
- migrate: Migrate legacy intelligence records into the knowledge store
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from uuid import UUID

import structlog
import typer
from rich.console import Console
from rich.table import Table

from lendcore.codification import CodificationPipeline, ExtractionService, extract_items_from_data
from lendcore.config import get_config
from lendcore.core.logging import configure_logging
from lendcore.db.connection import close_db, get_session, init_db
from lendcore.errors import ConfigurationError, InvalidStateError, NotFoundError
from lendcore.knowledge.items import KnowledgeStore
from lendcore.knowledge.migration import LegacyIntelligence, migrate_all_intelligence
from lendcore.library.ledger import DataLibrary
from lendcore.library.totals import get_project_library
from lendcore.matching.classifier import build_classifier
from lendcore.models import KnowledgeOwner, OwnerType
from lendcore.registry.seed import seed_registry
from lendcore.templates import fetch_template, items_from_library, populate_workbook

app = typer.Typer(
    name="lendcore",
    help="lendcore - Codification and reconciliation for development finance data",
    no_args_is_help=True,
)

console = Console()
logger = structlog.get_logger()


def _run(coro) -> None:
    """Run a command coroutine; domain errors exit with status 1."""

    async def _wrapped():
        try:
            await coro
        finally:
            await close_db()

    try:
        asyncio.run(_wrapped())
    except (NotFoundError, InvalidStateError, ConfigurationError) as e:
        console.print(f"[bold red]✗[/bold red] {e}")
        raise typer.Exit(1) from e


@app.callback()
def main_callback(
    log_level: str | None = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    configure_logging(log_level)


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")

    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def seed(
    vocabulary: Path | None = typer.Option(
        None, "--vocabulary", help="vocabulary.yaml (defaults to the packaged file)"
    ),
):
    """Load system categories, default item codes and their aliases."""

    async def _seed():
        async with get_session() as session:
            result = await seed_registry(session, path=vocabulary)

        table = Table(title="Registry Seed")
        table.add_column("Entity", style="cyan")
        table.add_column("Created", justify="right", style="green")
        table.add_column("Skipped", justify="right", style="yellow")
        table.add_row("Categories", str(result.categories_created), "-")
        table.add_row("Codes", str(result.codes_created), str(result.codes_skipped))
        table.add_row("Aliases", str(result.aliases_created), str(result.aliases_skipped))
        console.print(table)

    _run(_seed())


@app.command()
def codify(
    payload: Path = typer.Argument(..., help="Structured extraction payload (JSON)"),
    document_id: str = typer.Option(..., "--document", help="Source document ID"),
    project_id: str | None = typer.Option(None, "--project", help="Project ID"),
    document_name: str | None = typer.Option(None, "--name", help="Document display name"),
    smart_pass: bool = typer.Option(True, "--smart-pass/--no-smart-pass", help="Classify misses"),
):
    """Codify the line items of one extracted document."""
    config = get_config()
    data = json.loads(payload.read_text(encoding="utf-8"))
    items = extract_items_from_data(data)
    console.print(f"[bold]Codifying:[/bold] document={document_id}, {len(items)} items")

    async def _codify():
        classifier = (
            build_classifier(config.llm, config.matching.fuzzy_min_score) if smart_pass else None
        )
        async with get_session() as session:
            pipeline = CodificationPipeline(session, classifier=classifier, config=config.matching)
            extraction = await pipeline.codify(
                document_id=document_id,
                items=items,
                document_name=document_name or payload.name,
                project_id=project_id,
            )

        table = Table(title=f"Extraction {extraction.id}")
        table.add_column("Item", style="cyan")
        table.add_column("Status", style="bold")
        table.add_column("Code")
        table.add_column("Confidence", justify="right")

        for item in extraction.items:
            code = item.item_code or item.suggested_code or ""
            if item.is_new_code:
                code = f"{code} [yellow](new)[/yellow]"
            table.add_row(
                item.original_name,
                item.mapping_status.value,
                code,
                f"{item.confidence:.2f}",
            )

        console.print(table)
        stats = extraction.stats
        console.print("\n[bold]Summary:[/bold]")
        console.print(f"  Matched: {stats.matched}")
        console.print(f"  Suggested: {stats.suggested}")
        console.print(f"  Pending review: {stats.pending_review}")
        console.print(f"  Unmatched: {stats.unmatched}")
        logger.info("codify_finished", extraction_id=str(extraction.id), total=stats.total)

    _run(_codify())


@app.command()
def confirm(
    extraction_id: UUID = typer.Argument(..., help="Extraction ID"),
    item_id: str | None = typer.Option(None, "--item", help="Confirm a single item"),
    code: str | None = typer.Option(None, "--code", help="Code to confirm (with --item)"),
    learn: bool = typer.Option(True, "--learn/--no-learn", help="Learn confirmed labels as aliases"),
):
    """Confirm suggested codes (all of them, or one item)."""

    async def _confirm():
        async with get_session() as session:
            service = ExtractionService(session)
            if item_id:
                extraction = await service.confirm_item(
                    extraction_id, item_id, item_code=code, learn_alias=learn
                )
                console.print(f"[bold green]✓[/bold green] Confirmed item {item_id}")
            else:
                confirmed = await service.confirm_all_suggested(extraction_id, learn_alias=learn)
                extraction = await service.get(extraction_id)
                console.print(f"[bold green]✓[/bold green] Confirmed {len(confirmed)} items")

        remaining = extraction.stats.pending_review + extraction.stats.suggested
        if remaining:
            console.print(f"[yellow]⚠[/yellow] {remaining} items still need review")

    _run(_confirm())


@app.command()
def merge(
    extraction_id: UUID = typer.Argument(..., help="Extraction ID"),
    project_id: str | None = typer.Option(None, "--project", help="Override target project"),
):
    """Merge a codified extraction into its project library."""

    async def _merge():
        async with get_session() as session:
            result = await DataLibrary(session).merge_extraction(
                extraction_id, project_id=project_id
            )

        console.print(
            f"[bold green]✓[/bold green] Merged {result.merged} items "
            f"({result.created} created, {result.updated} updated)"
        )

    _run(_merge())


@app.command()
def library(
    project_id: str = typer.Argument(..., help="Project ID"),
):
    """Show a project's data library grouped by category."""

    async def _library():
        async with get_session() as session:
            project_library = await get_project_library(session, project_id)

        if not project_library.items and not project_library.totals:
            console.print("[yellow]No items found for project[/yellow]")
            return

        table = Table(title=f"Data Library: {project_id}")
        table.add_column("Category", style="cyan")
        table.add_column("Code")
        table.add_column("Name")
        table.add_column("Value", justify="right")
        table.add_column("Source")
        table.add_column("Flags", style="yellow")

        for item in sorted(project_library.items, key=lambda i: (i.category, i.item_code)):
            flags = []
            if item.manual_override_note is not None:
                flags.append("override")
            if item.value_variance is not None:
                flags.append(f"variance {item.value_variance:.1f}%")
            table.add_row(
                item.category,
                item.item_code,
                item.original_name,
                f"{item.current_value_normalized:,.2f}",
                item.current_source_document_name or "",
                ", ".join(flags),
            )

        for total in project_library.totals:
            table.add_row(
                f"[bold]{total.category}[/bold]",
                total.item_code,
                total.original_name,
                f"[bold]{total.current_value_normalized:,.2f}[/bold]",
                "",
                "override" if total.manual_override_note is not None else "",
            )

        console.print(table)

    _run(_library())


@app.command(name="revert-document")
def revert_document_cmd(
    project_id: str = typer.Argument(..., help="Project ID"),
    document_id: str = typer.Argument(..., help="Document to remove"),
):
    """Undo everything a document contributed to a project library."""

    async def _revert():
        async with get_session() as session:
            result = await DataLibrary(session).revert_document_addition(project_id, document_id)

        console.print(
            f"[bold green]✓[/bold green] {result.reverted} items reverted, "
            f"{result.deleted} items deleted"
        )

    _run(_revert())


@app.command()
def populate(
    project_id: str = typer.Argument(..., help="Project ID"),
    template: str = typer.Argument(..., help="Template path or URL (.xlsx / .xlsm)"),
    output: Path = typer.Option(..., "--out", "-o", help="Output workbook"),
    with_knowledge: bool = typer.Option(
        True, "--knowledge/--no-knowledge", help="Include project knowledge items"
    ),
):
    """Fill a spreadsheet template from a project's data library."""

    async def _populate():
        if template.startswith(("http://", "https://")):
            template_bytes = await fetch_template(template)
        else:
            template_bytes = Path(template).read_bytes()

        async with get_session() as session:
            project_library = await get_project_library(session, project_id)
            knowledge = None
            if with_knowledge:
                knowledge = await KnowledgeStore(session).get_items(
                    KnowledgeOwner.project(project_id)
                )

        workbook, result = populate_workbook(
            template_bytes, items_from_library(project_library, knowledge)
        )
        output.write_bytes(workbook.getvalue())

        stats = result.stats
        console.print(f"[bold green]✓[/bold green] Wrote {output}")
        console.print(f"  Placeholders filled: {stats.placeholders_filled}/{stats.placeholders_found}")
        console.print(f"  Fallback slots filled: {stats.fallback_slots_filled}")
        console.print(f"  Placeholders cleared: {stats.placeholders_cleared}")
        for report in result.overflow:
            console.print(
                f"[yellow]⚠[/yellow] {report.sheet}: {report.category} has {report.items} items "
                f"for {report.slots} slots"
            )

    _run(_populate())


@app.command()
def migrate(
    records_file: Path = typer.Argument(..., help="Legacy intelligence records (JSON list)"),
    limit: int = typer.Option(100, "--limit", help="Maximum records to process"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Report without writing"),
):
    """Migrate legacy client/project intelligence into knowledge items.

    Each record is ``{"owner_type": "client"|"project", "owner_id": ..., "intelligence": {...}}``.
    """
    raw = json.loads(records_file.read_text(encoding="utf-8"))
    records = [
        LegacyIntelligence(
            owner=KnowledgeOwner(
                owner_type=OwnerType(entry["owner_type"]), owner_id=str(entry["owner_id"])
            ),
            payload=entry.get("intelligence") or {},
        )
        for entry in raw
    ]
    console.print(f"[bold]Migrating intelligence:[/bold] {len(records)} records")

    async def _migrate():
        async with get_session() as session:
            summary = await migrate_all_intelligence(session, records, limit=limit, dry_run=dry_run)

        if dry_run:
            console.print("[yellow]Dry run: nothing was written[/yellow]")
        console.print(f"  Clients migrated: {summary.clients_migrated}")
        console.print(f"  Projects migrated: {summary.projects_migrated}")
        console.print(f"  Items added: {summary.items_added}")
        console.print(f"  Items skipped: {summary.items_skipped}")
        console.print(f"  Already migrated: {summary.already_migrated}")
        if summary.errors:
            console.print(f"[yellow]⚠[/yellow] {len(summary.errors)} errors")
            for err in summary.errors[:5]:
                console.print(f"      {err}", style="dim")

    _run(_migrate())


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
