"""``contractforge verify``: check stored bytes and the generation log chain."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console

from contractforge.cli.runtime import build_store
from contractforge.config import config
from contractforge.core.generation_log import GenerationLog, LogIntegrityError
from contractforge.errors import ContractForgeError

console = Console()


def verify_cmd(
    contract_id: str = typer.Argument(None, help="Contract id to re-hash. Omit to check the log only."),
    verify_chain: bool = typer.Option(
        True,
        "--verify-chain/--no-verify-chain",
        help="Verify the generation log hash chain.",
    ),
) -> None:
    """Verify artifact integrity and the generation log."""
    failed = False

    if verify_chain:
        try:
            GenerationLog(config.generation_log_path).verify_chain()
            console.print("[green]Generation log chain intact.[/green]")
        except LogIntegrityError as exc:
            console.print(f"[bold red]Generation log broken:[/bold red] {exc}")
            failed = True

    if contract_id:
        store = build_store(config)

        async def _verify_all() -> int:
            bad = 0
            for meta in await store.list_versions(contract_id):
                try:
                    await store.verify_integrity(contract_id, meta.generated_at, meta.file_name)
                    console.print(f"[green]OK[/green]       {meta.generated_at}  {meta.file_name}")
                except ContractForgeError as exc:
                    console.print(f"[red]FAILED[/red]   {meta.generated_at}  {exc}")
                    bad += 1
            return bad

        try:
            failed = asyncio.run(_verify_all()) > 0 or failed
        except ContractForgeError as exc:
            console.print(f"[bold red]{exc}[/bold red]")
            failed = True

    if failed:
        raise typer.Exit(code=1)
