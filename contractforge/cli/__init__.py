"""contractforge CLI: Typer-based command-line interface.

Provides the ``contractforge`` command with subcommands for bulk
generation, download URL resolution, version listing, integrity checks
and template assignment.

All output uses Rich for formatted terminal display.
"""
