"""Template assignment: which template each provider is generated from.

The assignment map (``provider_id -> template_id``) lives in an
:class:`AssignmentStore` owned by the session.  It is opened when a session
starts and cleared on logout.  Every change builds a new map and swaps it in
under a lock, then mirrors it to the persistence tier, so each operation
is atomic with respect to every other.

Resolution precedence for a provider:

1. a manual assignment, used only if its template is still valid; an
   assignment to a missing or invalid template resolves to *no template*;
2. otherwise the active global template, if valid;
3. otherwise no template.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from pathlib import Path
from types import MappingProxyType
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from contractforge.bridge.audit_bridge import AuditBridge
from contractforge.errors import DataError
from contractforge.models.audit import AuditAction, AuditSeverity
from contractforge.models.bulk import BulkProgress
from contractforge.models.templates import Provider, Template

logger = logging.getLogger(__name__)

NO_TEMPLATE = "no-template"
RESOURCE_TYPE = "TEMPLATE_ASSIGNMENT"

ProgressCallback = Callable[[BulkProgress], None]


# ---------------------------------------------------------------------------
# Session persistence
# ---------------------------------------------------------------------------


class SessionPersistence(Protocol):
    def load(self) -> dict[str, str]:
        ...

    def save(self, assignments: Mapping[str, str]) -> None:
        ...

    def clear(self) -> None:
        ...


class JsonSessionPersistence:
    """Mirrors the assignment map to a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, str]:
        if not self.path.is_file():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable assignment file %s", self.path)
            return {}
        return {str(k): str(v) for k, v in raw.items() if v}

    def save(self, assignments: Mapping[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(dict(assignments), sort_keys=True, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class AssignmentStore:
    """Session-owned assignment map with read-modify-replace updates."""

    def __init__(self, persistence: SessionPersistence | None = None) -> None:
        self._persistence = persistence
        self._assignments: Mapping[str, str] = MappingProxyType({})
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, persistence: SessionPersistence | None = None) -> AssignmentStore:
        """Start a session, loading any persisted map."""
        store = cls(persistence)
        if persistence is not None:
            loaded = await asyncio.to_thread(persistence.load)
            store._assignments = MappingProxyType(dict(loaded))
            logger.debug("Opened assignment session with %d assignment(s)", len(loaded))
        return store

    async def close(self) -> None:
        """End the session: wipe memory and the persisted copy."""
        async with self._lock:
            self._assignments = MappingProxyType({})
            if self._persistence is not None:
                await asyncio.to_thread(self._persistence.clear)

    @property
    def assignments(self) -> Mapping[str, str]:
        """Read-only view of the current map."""
        return self._assignments

    def get(self, provider_id: str) -> str | None:
        return self._assignments.get(provider_id)

    async def update(self, change: Callable[[dict[str, str]], None]) -> Mapping[str, str]:
        """Apply ``change`` to a copy of the map and swap the copy in."""
        async with self._lock:
            draft = dict(self._assignments)
            change(draft)
            new_map = MappingProxyType(draft)
            if self._persistence is not None:
                await asyncio.to_thread(self._persistence.save, new_map)
            self._assignments = new_map
            return new_map


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class SmartAssignResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    assigned_count: int
    already_assigned: list[str] = []
    unmatched: list[str] = []
    assignments: dict[str, str] = {}


def _matches(template: Template, needle: str) -> bool:
    needle = needle.lower()
    return needle in template.name.lower() or any(needle in tag.lower() for tag in template.tags)


def pick_template(provider: Provider, templates: Sequence[Template]) -> Template | None:
    """Best template by specialty, then provider type, then compensation model.

    Falls back to the first template when nothing matches.
    """
    for attribute in (provider.specialty, provider.provider_type, provider.compensation_model):
        if not attribute:
            continue
        for template in templates:
            if _matches(template, attribute):
                return template
    return templates[0] if templates else None


class AssignmentTracker:
    """Assigns templates to providers and resolves the effective template.

    Parameters
    ----------
    store:
        The session's assignment store.
    templates:
        Known templates.  Invalid ones (blank id or name) are never resolved
        or smart-assigned.
    providers:
        Known providers, used by :meth:`smart_assign` and for audit names.
    selected_template:
        The active global template, used when a provider has no manual
        assignment.
    """

    def __init__(
        self,
        store: AssignmentStore,
        templates: Iterable[Template],
        *,
        providers: Iterable[Provider] = (),
        selected_template: Template | None = None,
        audit: AuditBridge | None = None,
        batch_size: int = 10,
        batch_delay: float = 0.01,
    ) -> None:
        self.store = store
        self.templates = list(templates)
        self.providers = {p.id: p for p in providers}
        self.selected_template = selected_template
        self.audit = audit or AuditBridge()
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.progress: BulkProgress | None = None

    @property
    def valid_templates(self) -> list[Template]:
        return [t for t in self.templates if t.is_valid]

    def _template(self, template_id: str) -> Template | None:
        return next((t for t in self.templates if t.id == template_id), None)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, provider: Provider) -> Template | None:
        assigned_id = self.store.get(provider.id)
        if assigned_id:
            return next((t for t in self.valid_templates if t.id == assigned_id), None)
        selected = self.selected_template
        if selected is not None and selected.is_valid:
            return selected
        return None

    # ------------------------------------------------------------------
    # Single assignment
    # ------------------------------------------------------------------

    async def assign_one(self, provider_id: str, template_id: str | None) -> None:
        """Assign, or clear when ``template_id`` is blank or ``"no-template"``."""
        provider = self.providers.get(provider_id)
        provider_name = provider.name if provider else ""

        if template_id and template_id.strip() and template_id != NO_TEMPLATE:
            def _assign(draft: dict[str, str]) -> None:
                draft[provider_id] = template_id

            await self.store.update(_assign)
            template = self._template(template_id)
            logger.info("Assigned template %s to provider %s", template_id, provider_id)
            await self.audit.record(
                AuditAction.TEMPLATE_ASSIGNED,
                resource_type=RESOURCE_TYPE,
                resource_id=provider_id,
                metadata={
                    "providerId": provider_id,
                    "providerName": provider_name,
                    "templateId": template_id,
                    "templateName": template.name if template else "",
                    "assignmentType": "individual",
                },
            )
            return

        previous = self.store.get(provider_id)

        def _clear(draft: dict[str, str]) -> None:
            draft.pop(provider_id, None)

        await self.store.update(_clear)
        logger.info("Cleared template assignment for provider %s", provider_id)
        await self.audit.record(
            AuditAction.TEMPLATE_UNASSIGNED,
            resource_type=RESOURCE_TYPE,
            resource_id=provider_id,
            metadata={
                "providerId": provider_id,
                "providerName": provider_name,
                "previousTemplateId": previous or "",
                "assignmentType": "individual",
            },
        )

    # ------------------------------------------------------------------
    # Bulk assignment
    # ------------------------------------------------------------------

    async def _in_batches(
        self,
        provider_ids: list[str],
        change: Callable[[dict[str, str], list[str]], None],
        on_progress: ProgressCallback | None,
    ) -> None:
        total = len(provider_ids)
        try:
            for start in range(0, total, self.batch_size):
                batch = provider_ids[start:start + self.batch_size]
                await self.store.update(lambda draft, batch=batch: change(draft, batch))
                self.progress = BulkProgress(completed=min(start + self.batch_size, total), total=total)
                if on_progress is not None:
                    on_progress(self.progress)
                if start + self.batch_size < total:
                    await asyncio.sleep(self.batch_delay)
        finally:
            self.progress = None

    async def assign_many_filtered(
        self,
        template_id: str,
        provider_ids: Sequence[str],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> Mapping[str, str]:
        """Assign one template to every provider that passed the caller's filter."""
        if not template_id or not template_id.strip() or template_id == NO_TEMPLATE:
            raise DataError("Select a template before assigning", field="templateId")
        ids = list(dict.fromkeys(provider_ids))
        if not ids:
            raise DataError("No providers match the current filter", field="providerIds")

        def _assign(draft: dict[str, str], batch: list[str]) -> None:
            for provider_id in batch:
                draft[provider_id] = template_id

        await self._in_batches(ids, _assign, on_progress)
        template = self._template(template_id)
        logger.info("Assigned template %s to %d provider(s)", template_id, len(ids))
        await self.audit.record(
            AuditAction.BULK_TEMPLATE_ASSIGNMENT,
            severity=AuditSeverity.MEDIUM,
            resource_type=RESOURCE_TYPE,
            resource_id=template_id,
            metadata={
                "templateId": template_id,
                "templateName": template.name if template else "",
                "providerCount": len(ids),
                "providerIds": ids,
                "assignmentType": "filtered",
                "operation": "bulk_assignment",
                "success": True,
            },
        )
        return self.store.assignments

    async def clear_many_filtered(
        self,
        provider_ids: Sequence[str],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> Mapping[str, str]:
        ids = list(dict.fromkeys(provider_ids))
        if not ids:
            raise DataError("No providers match the current filter", field="providerIds")
        cleared = [pid for pid in ids if self.store.get(pid)]

        def _clear(draft: dict[str, str], batch: list[str]) -> None:
            for provider_id in batch:
                draft.pop(provider_id, None)

        await self._in_batches(ids, _clear, on_progress)
        logger.info("Cleared template assignments for %d provider(s)", len(ids))
        await self.audit.record(
            AuditAction.BULK_TEMPLATE_CLEAR,
            severity=AuditSeverity.MEDIUM,
            resource_type=RESOURCE_TYPE,
            resource_id="filtered",
            metadata={
                "providerCount": len(ids),
                "clearedCount": len(cleared),
                "providerIds": ids,
                "assignmentType": "filtered",
                "operation": "bulk_clear",
                "success": True,
            },
        )
        return self.store.assignments

    async def clear_all(self) -> int:
        """Drop every assignment; returns how many were cleared."""
        cleared = len(self.store.assignments)
        await self.store.update(lambda draft: draft.clear())
        logger.info("Cleared all %d template assignment(s)", cleared)
        await self.audit.record(
            AuditAction.BULK_TEMPLATE_CLEAR,
            severity=AuditSeverity.MEDIUM,
            resource_type=RESOURCE_TYPE,
            resource_id="all",
            metadata={
                "providerCount": cleared,
                "assignmentType": "all",
                "operation": "clear_all",
                "success": True,
            },
        )
        return cleared

    async def smart_assign(self, provider_ids: Sequence[str]) -> SmartAssignResult:
        """Pick a template for each unassigned provider; manual picks are kept."""
        candidates = self.valid_templates
        already: list[str] = []
        unmatched: list[str] = []
        picked: dict[str, str] = {}

        def _smart(draft: dict[str, str]) -> None:
            for provider_id in dict.fromkeys(provider_ids):
                if draft.get(provider_id):
                    already.append(provider_id)
                    continue
                provider = self.providers.get(provider_id)
                template = pick_template(provider, candidates) if provider else None
                if template is None:
                    unmatched.append(provider_id)
                    continue
                draft[provider_id] = template.id
                picked[provider_id] = template.id

        await self.store.update(_smart)
        result = SmartAssignResult(
            assigned_count=len(picked),
            already_assigned=already,
            unmatched=unmatched,
            assignments=picked,
        )
        logger.info(
            "Smart assignment: %d assigned, %d already assigned, %d unmatched",
            result.assigned_count, len(already), len(unmatched),
        )
        await self.audit.record(
            AuditAction.SMART_TEMPLATE_ASSIGNMENT,
            severity=AuditSeverity.MEDIUM,
            resource_type=RESOURCE_TYPE,
            resource_id="smart",
            metadata={
                "providerCount": len(list(dict.fromkeys(provider_ids))),
                "assignedCount": result.assigned_count,
                "alreadyAssigned": already,
                "unmatched": unmatched,
                "assignmentType": "smart",
            },
        )
        return result
