"""Audit bridge: fire-and-forget delivery of audit events to sinks.

Callers await :meth:`AuditBridge.record` but never see its failures.  A
sink that raises is logged and skipped; the operation being audited is
unaffected.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from contractforge.core.hasher import canonical_json_bytes
from contractforge.models.audit import AuditCategory, AuditEvent, AuditSeverity

logger = logging.getLogger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    """Destination for audit events.  ``accept`` may block."""

    @property
    def sink_name(self) -> str:
        ...

    def accept(self, event: AuditEvent) -> None:
        ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class LocalFileAuditSink:
    """Writes each event as canonical JSON.

    Layout: ``{base_path}/{resource_type}/{YYYYMMDD}/{event_id}.json``
    """

    def __init__(self, base_path: Path | str | None = None) -> None:
        self._base = Path(base_path) if base_path else Path(".contractforge/audit")
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def sink_name(self) -> str:
        return "local_file"

    def accept(self, event: AuditEvent) -> None:
        target_dir = self._base / event.resource_type / event.timestamp_utc.strftime("%Y%m%d")
        target_dir.mkdir(parents=True, exist_ok=True)
        target_file = target_dir / f"{event.event_id}.json"
        target_file.write_bytes(canonical_json_bytes(event.model_dump(mode="json")))
        logger.debug("LocalFileAuditSink: wrote %s to %s", event.action, target_file)

    def list_events(self, resource_type: str | None = None) -> list[Path]:
        root = self._base / resource_type if resource_type else self._base
        if not root.exists():
            return []
        return sorted(root.rglob("*.json"))

    def read_event(self, path: Path) -> dict:
        return json.loads(path.read_bytes())


class MemoryAuditSink:
    """Keeps events in a list; used by tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    @property
    def sink_name(self) -> str:
        return "memory"

    def accept(self, event: AuditEvent) -> None:
        self.events.append(event)

    def by_action(self, action: str) -> list[AuditEvent]:
        return [e for e in self.events if e.action == action]


# ---------------------------------------------------------------------------
# Bridge
# ---------------------------------------------------------------------------


class AuditBridge:
    """Fans audit events out to every configured sink.

    Parameters
    ----------
    sinks:
        Destinations, each called in turn.  An empty list makes the bridge a
        no-op.
    """

    def __init__(self, sinks: list[AuditSink] | None = None) -> None:
        self.sinks: list[AuditSink] = list(sinks or [])

    async def record(
        self,
        action: str,
        *,
        resource_type: str,
        resource_id: str,
        severity: AuditSeverity = AuditSeverity.LOW,
        category: AuditCategory = AuditCategory.DATA,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Build and deliver one event.  Returns ``None`` if it could not be built."""
        try:
            event = AuditEvent(
                action=str(getattr(action, "value", action)),
                severity=severity,
                category=category,
                resource_type=resource_type,
                resource_id=resource_id,
                metadata=metadata or {},
            )
        except Exception:
            logger.exception("Could not build audit event %s for %s", action, resource_id)
            return None

        for sink in self.sinks:
            try:
                await asyncio.to_thread(sink.accept, event)
            except Exception:
                logger.exception(
                    "Audit sink %s failed for %s; the audited operation is unaffected",
                    getattr(sink, "sink_name", type(sink).__name__), event.action,
                )
        return event
