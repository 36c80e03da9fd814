"""``contractforge download PROVIDER_ID TEMPLATE_ID``: resolve a download URL."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from contractforge.cli.runtime import build_runtime
from contractforge.config import config
from contractforge.core.retrieval import RetrievalResult
from contractforge.errors import ContractForgeError

console = Console()


def download_cmd(
    provider_id: str = typer.Argument(..., help="Provider id."),
    template_id: str = typer.Argument(..., help="Template id."),
) -> None:
    """Print a signed URL for the latest generated contract."""
    try:
        result = asyncio.run(_resolve(provider_id, template_id))
    except ContractForgeError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        console.print(f"[dim]Suggested action: {exc.remedy}[/dim]")
        raise typer.Exit(code=1)

    if result.tier != "immutable":
        console.print(f"[yellow]Served from the {result.tier} tier.[/yellow]")
    console.print(result.url)


async def _resolve(provider_id: str, template_id: str) -> RetrievalResult:
    runtime = await build_runtime(config)
    provider = next((p for p in runtime.providers if p.id == provider_id), None)
    if provider is None:
        console.print(f"[bold red]Unknown provider:[/bold red] {provider_id}")
        raise typer.Exit(code=1)
    return await runtime.orchestrator.download_url(provider, template_id)
