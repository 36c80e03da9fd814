"""Tests for CLI command registration and help output."""

from __future__ import annotations

import pytest
from typer.testing import CliRunner

from contractforge.cli.app import app

runner = CliRunner()


class TestCliHelp:
    def test_root_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for name in ("generate", "download", "versions", "verify", "assign"):
            assert name in result.output

    @pytest.mark.parametrize("command", ["generate", "download", "versions", "verify", "assign"])
    def test_command_help(self, command):
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0
        assert "Usage" in result.output
