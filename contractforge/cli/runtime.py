"""Wiring shared by the CLI commands: logging and component construction."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from rich.logging import RichHandler

from contractforge.bridge.audit_bridge import AuditBridge, LocalFileAuditSink
from contractforge.bridge.notifier import BulkSummaryNotifier, SesSender
from contractforge.config import ForgeConfig
from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.assignment import AssignmentStore, AssignmentTracker, JsonSessionPersistence
from contractforge.core.generation_log import GenerationLog
from contractforge.core.object_store import build_object_store
from contractforge.core.orchestrator import GenerationOrchestrator
from contractforge.core.production_guard import enforce_production_constraints
from contractforge.core.records import (
    JsonRecordSource,
    load_mappings,
    load_providers,
    load_templates,
)
from contractforge.core.retrieval import ContractRetriever
from contractforge.core.retry import RetryPolicy
from contractforge.models.templates import Provider, Template


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def build_store(cfg: ForgeConfig) -> ImmutableContractStore:
    enforce_production_constraints(cfg)
    return ImmutableContractStore(
        build_object_store(cfg),
        retry=RetryPolicy.from_config(cfg),
        contract_url_ttl=cfg.contract_url_ttl_seconds,
    )


@dataclass
class Runtime:
    """Everything a command needs, built from one configuration."""

    config: ForgeConfig
    store: ImmutableContractStore
    log: GenerationLog
    assignments: AssignmentStore
    tracker: AssignmentTracker
    orchestrator: GenerationOrchestrator
    providers: list[Provider]
    templates: list[Template]


async def build_runtime(cfg: ForgeConfig, *, selected_template_id: str | None = None) -> Runtime:
    store = build_store(cfg)
    records = JsonRecordSource(cfg.records_path)
    templates = await load_templates(records)
    providers = await load_providers(records)
    mappings = await load_mappings(records)

    audit = AuditBridge([LocalFileAuditSink(cfg.audit_path)])
    assignments = await AssignmentStore.open(JsonSessionPersistence(cfg.session_path))
    selected = next((t for t in templates if t.id == selected_template_id), None)
    tracker = AssignmentTracker(
        assignments,
        templates,
        providers=providers,
        selected_template=selected,
        audit=audit,
        batch_size=cfg.batch_size,
        batch_delay=cfg.batch_delay_seconds,
    )
    log = GenerationLog(cfg.generation_log_path)
    orchestrator = GenerationOrchestrator(
        store,
        log=log,
        retriever=ContractRetriever.default(store, generic_url_ttl=cfg.generic_url_ttl_seconds),
        tracker=tracker,
        mappings=mappings,
        audit=audit,
        notifier=BulkSummaryNotifier(
            SesSender(cfg.mail_sender, region=cfg.aws_region),
            from_address=cfg.mail_sender,
        ),
        batch_size=cfg.batch_size,
        batch_delay=cfg.batch_delay_seconds,
    )
    return Runtime(
        config=cfg,
        store=store,
        log=log,
        assignments=assignments,
        tracker=tracker,
        orchestrator=orchestrator,
        providers=providers,
        templates=templates,
    )
