"""``contractforge generate``: bulk-generate contracts from the records directory."""

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


def generate_cmd(
    provider_ids: list[str] = typer.Option(
        None,
        "--provider",
        "-p",
        help="Provider id to generate (repeatable). Defaults to every provider.",
    ),
    template_id: str = typer.Option(
        None,
        "--template",
        "-t",
        help="Global template for providers without a manual assignment.",
    ),
    notify: str = typer.Option(None, "--notify", help="Email a summary to this address."),
) -> None:
    """Generate contracts for providers using their assigned templates."""
    result = asyncio.run(_generate(provider_ids or [], template_id, notify))

    table = Table(title="Bulk generation")
    table.add_column("Provider", style="cyan")
    table.add_column("Status")
    table.add_column("File")
    table.add_column("Error", style="red")
    for item in result.results:
        status = item.status.value if item.status else "FAILED"
        colour = "green" if item.success else "red"
        table.add_row(item.id, f"[{colour}]{status}[/{colour}]", item.file_name, item.error or "")
    console.print(table)
    console.print(
        f"[bold]{result.successful}[/bold] of {result.total_processed} succeeded, "
        f"[bold red]{result.failed}[/bold red] failed."
    )
    if result.failed:
        raise typer.Exit(code=1)


async def _generate(provider_ids: list[str], template_id: str | None, notify: str | None) -> BulkResult:
    runtime = await build_runtime(config, selected_template_id=template_id)
    providers = runtime.providers
    if provider_ids:
        wanted = set(provider_ids)
        providers = [p for p in providers if p.id in wanted]

    with Progress(console=console, transient=True) as progress:
        task = progress.add_task("Generating", total=len(providers))

        def _on_progress(update: BulkProgress) -> None:
            progress.update(task, completed=update.completed)

        return await runtime.orchestrator.generate_for_providers(
            providers, on_progress=_on_progress, notify=notify
        )
