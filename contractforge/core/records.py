"""Structured data source: templates, providers and mappings by id.

``JsonRecordSource`` keeps one JSON file per record::

    {root}/{kind}/{record_id}.json

Listing is paginated with an opaque token (the last id returned).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from contractforge.core.field_mapper import normalize_mapping
from contractforge.errors import DataError
from contractforge.models.mappings import TemplateMapping
from contractforge.models.templates import Provider, Template

logger = logging.getLogger(__name__)

TEMPLATES = "templates"
PROVIDERS = "providers"
MAPPINGS = "mappings"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]+$")
_PROVIDER_FIELDS = {
    "id",
    "name",
    "specialty",
    "providerType",
    "provider_type",
    "compensationModel",
    "compensation_model",
}


class Page(BaseModel):
    model_config = ConfigDict(frozen=True)

    items: list[dict[str, Any]]
    next_token: str | None = None


@runtime_checkable
class RecordSource(Protocol):
    async def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        ...

    async def put(self, kind: str, record: dict[str, Any]) -> None:
        ...

    async def list_page(self, kind: str, token: str | None = None, limit: int = 100) -> Page:
        ...


class JsonRecordSource:
    """Filesystem record source, one JSON document per record."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, kind: str, record_id: str) -> Path:
        if not _SAFE_ID.match(record_id) or not _SAFE_ID.match(kind):
            raise DataError(f"Invalid record id {record_id!r}", field="id")
        return self.root / kind / f"{record_id}.json"

    def _get_sync(self, kind: str, record_id: str) -> dict[str, Any] | None:
        path = self._path(kind, record_id)
        if not path.is_file():
            return None
        return json.loads(path.read_text(encoding="utf-8"))

    def _put_sync(self, kind: str, record: dict[str, Any]) -> None:
        record_id = str(record.get("id") or record.get("templateId") or "")
        path = self._path(kind, record_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(record, indent=2, sort_keys=True), encoding="utf-8")

    def _list_sync(self, kind: str, token: str | None, limit: int) -> Page:
        directory = self.root / kind
        if not directory.is_dir():
            return Page(items=[])
        ids = sorted(path.stem for path in directory.glob("*.json"))
        if token:
            ids = [i for i in ids if i > token]
        chunk, rest = ids[:limit], ids[limit:]
        items = [json.loads((directory / f"{i}.json").read_text(encoding="utf-8")) for i in chunk]
        return Page(items=items, next_token=chunk[-1] if rest and chunk else None)

    async def get(self, kind: str, record_id: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._get_sync, kind, record_id)

    async def put(self, kind: str, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self._put_sync, kind, record)

    async def list_page(self, kind: str, token: str | None = None, limit: int = 100) -> Page:
        return await asyncio.to_thread(self._list_sync, kind, token, limit)

    async def list_all(self, kind: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        token: str | None = None
        while True:
            page = await self.list_page(kind, token)
            items.extend(page.items)
            if page.next_token is None:
                return items
            token = page.next_token


# ---------------------------------------------------------------------------
# Record conversion
# ---------------------------------------------------------------------------


def provider_from_record(raw: dict[str, Any]) -> Provider:
    """Split a flat provider record into declared fields and attributes."""
    declared = {k: v for k, v in raw.items() if k in _PROVIDER_FIELDS}
    attributes = dict(raw.get("attributes") or {})
    attributes.update({k: v for k, v in raw.items() if k not in _PROVIDER_FIELDS and k != "attributes"})
    return Provider.model_validate({**declared, "attributes": attributes})


def mapping_from_record(raw: dict[str, Any] | list[dict[str, Any]], template_id: str = "") -> TemplateMapping:
    """Accepts ``{"templateId": ..., "entries": [...]}`` or a bare list of rows."""
    if isinstance(raw, list):
        return normalize_mapping(template_id, raw)
    return normalize_mapping(str(raw.get("templateId") or template_id), raw.get("entries") or [])


async def load_templates(source: JsonRecordSource) -> list[Template]:
    return [Template.model_validate(raw) for raw in await source.list_all(TEMPLATES)]


async def load_providers(source: JsonRecordSource) -> list[Provider]:
    return [provider_from_record(raw) for raw in await source.list_all(PROVIDERS)]


async def load_mappings(source: JsonRecordSource) -> dict[str, TemplateMapping]:
    mappings = {}
    for raw in await source.list_all(MAPPINGS):
        mapping = mapping_from_record(raw)
        mappings[mapping.template_id] = mapping
    logger.debug("Loaded %d template mapping(s)", len(mappings))
    return mappings
