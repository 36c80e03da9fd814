"""Tests for the audit bridge and its sinks."""

from __future__ import annotations

import pytest

from contractforge.bridge.audit_bridge import AuditBridge, LocalFileAuditSink, MemoryAuditSink
from contractforge.models.audit import AuditAction, AuditSeverity


class ExplodingSink:
    sink_name = "exploding"

    def accept(self, event):
        raise OSError("sink offline")


class TestAuditBridge:
    @pytest.mark.asyncio
    async def test_failing_sink_does_not_raise(self, audit_sink: MemoryAuditSink):
        bridge = AuditBridge([ExplodingSink(), audit_sink])
        event = await bridge.record(
            AuditAction.TEMPLATE_ASSIGNED, resource_type="TEMPLATE_ASSIGNMENT", resource_id="p1"
        )
        assert event is not None
        assert audit_sink.events == [event]

    @pytest.mark.asyncio
    async def test_no_sinks_is_noop(self):
        event = await AuditBridge().record("CUSTOM", resource_type="X", resource_id="1")
        assert event.action == "CUSTOM"

    @pytest.mark.asyncio
    async def test_file_sink_layout(self, tmp_dir):
        sink = LocalFileAuditSink(tmp_dir / "audit")
        event = await AuditBridge([sink]).record(
            AuditAction.CONTRACT_GENERATED,
            resource_type="CONTRACT",
            resource_id="p1-t1-2024",
            severity=AuditSeverity.LOW,
            metadata={"fileName": "a.docx"},
        )
        paths = sink.list_events("CONTRACT")
        assert len(paths) == 1
        assert paths[0].name == f"{event.event_id}.json"
        assert paths[0].parent.name == event.timestamp_utc.strftime("%Y%m%d")
        stored = sink.read_event(paths[0])
        assert stored["action"] == "CONTRACT_GENERATED"
        assert stored["metadata"] == {"fileName": "a.docx"}

    def test_file_sink_empty(self, tmp_dir):
        assert LocalFileAuditSink(tmp_dir / "audit").list_events("CONTRACT") == []
