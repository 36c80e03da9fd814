"""Field Mapper: resolves template placeholders to provider values or blocks.

Raw mapping rows come from the mapping editor as
``{"placeholder": ..., "mappedColumn": ..., "mappedDynamicBlock": ...}``.
A ``mappedColumn`` carrying the reserved ``dynamic:`` prefix is a block
reference in disguise; :func:`normalize_mapping` turns it into a
``DynamicBlock`` once, so nothing downstream inspects strings again.

Resolution never raises.  Anything that cannot be resolved becomes an empty
value plus one warning.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from contractforge.core.dynamic_blocks import DynamicBlockRegistry, UnknownBlockError
from contractforge.models.mappings import (
    DirectField,
    DynamicBlock,
    FieldMapping,
    MappingEntry,
    TemplateMapping,
)
from contractforge.models.templates import Provider

logger = logging.getLogger(__name__)

DYNAMIC_PREFIX = "dynamic:"


class ResolvedValue(BaseModel):
    """What one placeholder resolved to.

    ``column`` is set for direct fields and drives value formatting;
    ``block_id`` is set for dynamic blocks, whose ``value`` is final markup.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    placeholder: str
    value: Any = None
    column: str = ""
    block_id: str = ""
    resolved: bool = True


class ResolvedFields(BaseModel):
    model_config = ConfigDict(frozen=True)

    values: dict[str, ResolvedValue]
    warnings: list[str] = []


def strip_braces(placeholder: str) -> str:
    """``{{ Name }}`` and ``Name`` both become ``Name``."""
    name = placeholder.strip()
    if name.startswith("{{") and name.endswith("}}"):
        name = name[2:-2]
    return name.strip()


def normalize_entry(raw: Mapping[str, Any]) -> MappingEntry:
    """Turn one raw mapping row into a tagged ``MappingEntry``."""
    placeholder = strip_braces(str(raw.get("placeholder", "")))
    column = str(raw.get("mappedColumn") or "").strip()
    block = str(raw.get("mappedDynamicBlock") or "").strip()
    notes = str(raw.get("notes") or "")

    mapping: FieldMapping | None
    if column.startswith(DYNAMIC_PREFIX):
        mapping = DynamicBlock(block_id=column[len(DYNAMIC_PREFIX):].strip())
    elif block:
        mapping = DynamicBlock(block_id=block)
    elif column:
        mapping = DirectField(column=column)
    else:
        mapping = None
    return MappingEntry(placeholder=placeholder, mapping=mapping, notes=notes)


def normalize_mapping(template_id: str, raw_entries: Iterable[Mapping[str, Any]]) -> TemplateMapping:
    """Normalize every raw row of a template's mapping."""
    entries = [normalize_entry(raw) for raw in raw_entries]
    return TemplateMapping(template_id=template_id, entries=entries)


def resolve_fields(
    placeholders: Iterable[str],
    provider: Provider,
    mapping: TemplateMapping,
    blocks: DynamicBlockRegistry,
) -> ResolvedFields:
    """Resolve each placeholder against the provider snapshot.

    Returns one ``ResolvedValue`` per unique placeholder.  Unresolved
    placeholders carry ``resolved=False`` and an empty value.
    """
    lookup = mapping.lookup()
    values: dict[str, ResolvedValue] = {}
    warnings: list[str] = []

    for placeholder in placeholders:
        if placeholder in values:
            continue
        target = lookup.get(placeholder)

        if target is None:
            warnings.append(f"Placeholder '{{{{{placeholder}}}}}' has no mapping")
            values[placeholder] = ResolvedValue(placeholder=placeholder, resolved=False)
            continue

        if isinstance(target, DynamicBlock):
            try:
                rendered = blocks.render(target.block_id, provider)
            except UnknownBlockError:
                warnings.append(
                    f"Placeholder '{{{{{placeholder}}}}}' maps to unknown dynamic block '{target.block_id}'"
                )
                values[placeholder] = ResolvedValue(
                    placeholder=placeholder, block_id=target.block_id, resolved=False
                )
                continue
            except Exception as exc:
                logger.warning(
                    "Dynamic block %s failed for provider %s: %s",
                    target.block_id, provider.id, exc,
                )
                warnings.append(
                    f"Dynamic block '{target.block_id}' failed for '{{{{{placeholder}}}}}': {exc}"
                )
                values[placeholder] = ResolvedValue(
                    placeholder=placeholder, block_id=target.block_id, resolved=False
                )
                continue
            values[placeholder] = ResolvedValue(
                placeholder=placeholder, value=rendered, block_id=target.block_id
            )
            continue

        raw_value = provider.value_for(target.column)
        if raw_value is None or raw_value == "":
            warnings.append(
                f"Placeholder '{{{{{placeholder}}}}}' maps to column '{target.column}' "
                f"which is empty for provider {provider.id}"
            )
            values[placeholder] = ResolvedValue(
                placeholder=placeholder, column=target.column, resolved=False
            )
            continue
        values[placeholder] = ResolvedValue(
            placeholder=placeholder, value=raw_value, column=target.column
        )

    return ResolvedFields(values=values, warnings=warnings)
