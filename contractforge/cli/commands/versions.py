"""``contractforge versions CONTRACT_ID``: list stored versions of a contract."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from contractforge.cli.runtime import build_store
from contractforge.config import config
from contractforge.errors import ContractForgeError

console = Console()


def versions_cmd(
    contract_id: str = typer.Argument(..., help="Contract id: providerId-templateId-year."),
) -> None:
    """List every immutable version of a contract, newest first."""
    store = build_store(config)
    try:
        versions = asyncio.run(store.list_versions(contract_id))
    except ContractForgeError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    if not versions:
        console.print(f"[dim]No stored versions of {contract_id}.[/dim]")
        return

    table = Table(title=f"Versions of {contract_id}")
    table.add_column("Generated at", style="cyan")
    table.add_column("File")
    table.add_column("Size", justify="right")
    table.add_column("SHA-256", style="dim")
    for meta in versions:
        table.add_row(meta.generated_at, meta.file_name, f"{meta.file_size:,}", meta.file_hash[:16])
    console.print(table)
