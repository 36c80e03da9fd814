"""Main Typer application: registers all CLI commands.

Entry point: ``contractforge`` (configured in pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from contractforge.cli.commands.assign import assign_cmd
from contractforge.cli.commands.clear import clear_cmd
from contractforge.cli.commands.download import download_cmd
from contractforge.cli.commands.generate import generate_cmd
from contractforge.cli.commands.verify import verify_cmd
from contractforge.cli.commands.versions import versions_cmd
from contractforge.cli.runtime import configure_logging
from contractforge.config import config

app = typer.Typer(
    name="contractforge",
    help="contractforge: provider contract generation and immutable storage.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

app.command(name="generate", help="Bulk-generate contracts.")(generate_cmd)
app.command(name="download", help="Resolve a download URL for a contract.")(download_cmd)
app.command(name="versions", help="List stored versions of a contract.")(versions_cmd)
app.command(name="verify", help="Verify stored contracts and the generation log.")(verify_cmd)
app.command(name="assign", help="Assign templates to providers.")(assign_cmd)
app.command(name="clear", help="Reset contracts to not generated.")(clear_cmd)


@app.callback()
def _setup(
    log_level: str = typer.Option(None, "--log-level", help="Override CONTRACTFORGE_LOG_LEVEL."),
) -> None:
    configure_logging(log_level or config.log_level)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
