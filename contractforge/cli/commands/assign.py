"""``contractforge assign``: smart-assign or bulk-assign templates."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from contractforge.cli.runtime import build_runtime
from contractforge.config import config
from contractforge.errors import DataError

console = Console()


def assign_cmd(
    provider_ids: list[str] = typer.Option(
        None, "--provider", "-p", help="Provider id (repeatable). Defaults to every provider."
    ),
    template_id: str = typer.Option(
        None, "--template", "-t", help="Assign this template instead of smart-assigning."
    ),
    clear: bool = typer.Option(False, "--clear", help="Clear assignments for the providers."),
) -> None:
    """Assign templates to providers and print the resulting map."""
    try:
        assignments = asyncio.run(_assign(provider_ids or [], template_id, clear))
    except DataError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Template assignments")
    table.add_column("Provider", style="cyan")
    table.add_column("Template", style="green")
    for provider_id, assigned in sorted(assignments.items()):
        table.add_row(provider_id, assigned)
    console.print(table)


async def _assign(provider_ids: list[str], template_id: str | None, clear: bool) -> dict[str, str]:
    runtime = await build_runtime(config)
    tracker = runtime.tracker
    ids = provider_ids or [p.id for p in runtime.providers]

    if clear:
        await tracker.clear_many_filtered(ids)
    elif template_id:
        await tracker.assign_many_filtered(template_id, ids)
    else:
        result = await tracker.smart_assign(ids)
        console.print(
            f"Smart-assigned [bold]{result.assigned_count}[/bold] provider(s); "
            f"{len(result.already_assigned)} already assigned, {len(result.unmatched)} unmatched."
        )
    return dict(tracker.store.assignments)
