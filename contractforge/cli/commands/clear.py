"""``contractforge clear``: reset providers to "not generated"."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.progress import Progress
from rich.table import Table

from contractforge.cli.runtime import build_runtime
from contractforge.config import config
from contractforge.models.bulk import BulkProgress, BulkResult

console = Console()


def clear_cmd(
    provider_ids: list[str] = typer.Option(
        None, "--provider", "-p", help="Provider id (repeatable). Defaults to every provider."
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Clear generation records; stored contract versions are kept."""
    result = asyncio.run(_clear(provider_ids or [], yes))
    if result is None:
        return

    if result.failed:
        table = Table(title="Records not cleared")
        table.add_column("Record", style="cyan")
        table.add_column("Error", style="red")
        for item in result.results:
            if not item.success:
                table.add_row(item.id, item.error or "")
        console.print(table)
    console.print(
        f"Cleared [bold]{result.successful}[/bold] of {result.total_processed} record(s); "
        "those contracts now read as not generated."
    )
    if result.failed:
        raise typer.Exit(code=1)


async def _clear(provider_ids: list[str], yes: bool) -> BulkResult | None:
    runtime = await build_runtime(config)
    records = await asyncio.to_thread(runtime.log.live_records, provider_ids or None)
    if not records:
        console.print("[yellow]No generation records to clear.[/yellow]")
        return None
    if not yes:
        typer.confirm(f"Clear {len(records)} generation record(s)?", abort=True)

    with Progress(console=console, transient=True) as progress:
        task = progress.add_task("Clearing", total=len(records))

        def _on_progress(update: BulkProgress) -> None:
            progress.update(task, completed=update.completed)

        return await runtime.orchestrator.clear_generated(records, on_progress=_on_progress)
