"""Shared test fixtures for contractforge."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from contractforge.bridge.audit_bridge import AuditBridge, MemoryAuditSink
from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.assignment import AssignmentStore, AssignmentTracker, JsonSessionPersistence
from contractforge.core.field_mapper import normalize_mapping
from contractforge.core.generation_log import GenerationLog
from contractforge.core.object_store import LocalObjectStore
from contractforge.core.orchestrator import GenerationOrchestrator
from contractforge.core.packager import DocumentPackager
from contractforge.core.retry import RetryPolicy
from contractforge.models.mappings import TemplateMapping
from contractforge.models.templates import Provider, Template

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


class PlainTextBackend:
    """Packaging backend that returns the markup itself as the document."""

    def render(self, markup: str, *, title: str, created: datetime) -> tuple[bytes, list[str]]:
        return f"{title}\n{created.isoformat()}\n{markup}".encode("utf-8"), []


async def _no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Three attempts, no waiting between them."""
    return RetryPolicy(max_attempts=3, base_delay=0.0, sleep=_no_sleep)


@pytest.fixture
def object_store(tmp_dir: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_dir / "objects", signing_secret="test-secret")


@pytest.fixture
def contract_store(object_store: LocalObjectStore, fast_retry: RetryPolicy) -> ImmutableContractStore:
    return ImmutableContractStore(object_store, retry=fast_retry)


@pytest.fixture
def generation_log(tmp_dir: Path) -> GenerationLog:
    """Provide a fresh GenerationLog backed by a temp SQLite database."""
    return GenerationLog(tmp_dir / "generation_log.db")


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink: MemoryAuditSink) -> AuditBridge:
    return AuditBridge([audit_sink])


@pytest.fixture
def template() -> Template:
    return Template(
        id="t1",
        name="Standard Physician",
        contract_year="2024",
        edited_content="Hello {{ProviderName}}",
        tags=["physician"],
    )


@pytest.fixture
def provider() -> Provider:
    return Provider(id="p1", name="Dr. Smith")


@pytest.fixture
def mapping() -> TemplateMapping:
    return normalize_mapping("t1", [{"placeholder": "{{ProviderName}}", "mappedColumn": "name"}])


@pytest.fixture
def text_packager() -> DocumentPackager:
    return DocumentPackager(PlainTextBackend())


@pytest_asyncio.fixture
async def assignment_store(tmp_dir: Path) -> AssignmentStore:
    return await AssignmentStore.open(JsonSessionPersistence(tmp_dir / "session" / "assignments.json"))


@pytest.fixture
def orchestrator(
    contract_store: ImmutableContractStore,
    generation_log: GenerationLog,
    text_packager: DocumentPackager,
    mapping: TemplateMapping,
    audit: AuditBridge,
) -> GenerationOrchestrator:
    """Orchestrator wired to temp storage, a plain-text packager and a fixed clock."""
    return GenerationOrchestrator(
        contract_store,
        packager=text_packager,
        log=generation_log,
        mappings={"t1": mapping},
        audit=audit,
        batch_size=2,
        batch_delay=0.0,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def make_tracker(assignment_store: AssignmentStore, audit: AuditBridge):
    """Factory for an AssignmentTracker over the shared session store."""

    def _make(templates, providers=(), selected=None) -> AssignmentTracker:
        return AssignmentTracker(
            assignment_store,
            templates,
            providers=providers,
            selected_template=selected,
            audit=audit,
            batch_size=10,
            batch_delay=0.0,
        )

    return _make
