"""End-to-end: records directory -> assign -> generate -> download -> verify.

Runs the CLI against a temporary workspace with the local object store and
the python-docx backend.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from contractforge.cli.app import app
from contractforge.config import ForgeConfig
from contractforge.core.generation_log import GenerationLog

runner = CliRunner()

COMMAND_MODULES = (
    "contractforge.cli.app",
    "contractforge.cli.commands.generate",
    "contractforge.cli.commands.download",
    "contractforge.cli.commands.versions",
    "contractforge.cli.commands.verify",
    "contractforge.cli.commands.assign",
    "contractforge.cli.commands.clear",
)


def _write(root: Path, kind: str, record: dict) -> None:
    directory = root / kind
    directory.mkdir(parents=True, exist_ok=True)
    record_id = record.get("id") or record["templateId"]
    (directory / f"{record_id}.json").write_text(json.dumps(record), encoding="utf-8")


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> ForgeConfig:
    base = tmp_path / "forge"
    cfg = ForgeConfig(
        storage_path=base / "objects",
        generation_log_path=base / "generation_log.db",
        audit_path=base / "audit",
        session_path=base / "session" / "assignments.json",
        records_path=base / "records",
        batch_delay_seconds=0.0,
        retry_base_delay_seconds=0.0,
    )
    for module in COMMAND_MODULES:
        monkeypatch.setattr(f"{module}.config", cfg)

    records = cfg.records_path
    _write(records, "templates", {
        "id": "t1",
        "name": "Standard Physician",
        "contractYear": "2024",
        "tags": ["physician"],
        "editedContent": (
            "<h1>Employment Agreement</h1>"
            "<p>This agreement is made with {{ProviderName}}.</p>"
            "<p>Base salary: {{BaseSalary}}</p>"
            "{{FTEBreakdown}}"
        ),
    })
    _write(records, "providers", {
        "id": "p1",
        "name": "Dr. Jane Smith",
        "specialty": "Physician",
        "Base Salary": 250000,
        "Clinical FTE": 0.8,
        "Administrative FTE": 0.2,
    })
    _write(records, "providers", {"id": "p2", "name": "Dr. Lee", "specialty": "Physician", "Base Salary": 200000})
    _write(records, "mappings", {
        "templateId": "t1",
        "entries": [
            {"placeholder": "{{ProviderName}}", "mappedColumn": "name"},
            {"placeholder": "{{BaseSalary}}", "mappedColumn": "Base Salary"},
            {"placeholder": "{{FTEBreakdown}}", "mappedDynamicBlock": "FTEBreakdown"},
        ],
    })
    return cfg


def test_full_pipeline(workspace: ForgeConfig):
    assigned = runner.invoke(app, ["assign"])
    assert assigned.exit_code == 0, assigned.output
    assert "Smart-assigned" in assigned.output

    generated = runner.invoke(app, ["generate"])
    assert generated.exit_code == 0, generated.output
    assert "2 of 2 succeeded" in generated.output

    downloaded = runner.invoke(app, ["download", "p1", "t1"])
    assert downloaded.exit_code == 0, downloaded.output
    assert "file://" in downloaded.output

    versions = runner.invoke(app, ["versions", "p1-t1-2024"])
    assert versions.exit_code == 0, versions.output
    assert "Versions of p1-t1-2024" in versions.output

    verified = runner.invoke(app, ["verify", "p1-t1-2024"])
    assert verified.exit_code == 0, verified.output
    assert "chain intact" in verified.output

    log = GenerationLog(workspace.generation_log_path)
    assert log.find_latest("p1", "t1").status.value == "SUCCESS"
    audit_files = list(workspace.audit_path.rglob("*.json"))
    assert audit_files


def test_download_before_generation(workspace: ForgeConfig):
    result = runner.invoke(app, ["download", "p1", "t1"])
    assert result.exit_code == 1
    assert "regenerate" in result.output


def test_unknown_provider(workspace: ForgeConfig):
    result = runner.invoke(app, ["download", "nobody", "t1"])
    assert result.exit_code == 1
    assert "Unknown provider" in result.output


def test_clear_resets_generation(workspace: ForgeConfig):
    assert runner.invoke(app, ["assign"]).exit_code == 0
    assert runner.invoke(app, ["generate"]).exit_code == 0

    declined = runner.invoke(app, ["clear", "--provider", "p1"], input="n\n")
    assert declined.exit_code == 1
    log = GenerationLog(workspace.generation_log_path)
    assert log.find_latest("p1", "t1") is not None

    cleared = runner.invoke(app, ["clear", "--provider", "p1", "--yes"])
    assert cleared.exit_code == 0, cleared.output
    assert "Cleared 1 of 1" in cleared.output

    assert log.find_latest("p1", "t1") is None
    assert log.find_latest("p2", "t1") is not None
    assert log.verify_chain()

    downloaded = runner.invoke(app, ["download", "p1", "t1"])
    assert downloaded.exit_code == 1
    assert "regenerate" in downloaded.output

    versions = runner.invoke(app, ["versions", "p1-t1-2024"])
    assert versions.exit_code == 0, versions.output

    nothing_left = runner.invoke(app, ["clear", "--provider", "p1", "--yes"])
    assert nothing_left.exit_code == 0
    assert "No generation records" in nothing_left.output
