"""Merge Engine: substitutes ``{{placeholder}}`` tokens in template markup.

The merge is pure.  Given the same template markup, provider snapshot,
mapping and block registry it returns byte-identical markup, and the
content hash of the packaged artifact builds on that.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import date

from pydantic import BaseModel, ConfigDict

from contractforge.core.dynamic_blocks import DynamicBlockRegistry
from contractforge.core.field_mapper import ResolvedValue, resolve_fields
from contractforge.core.formatting import format_value, normalize_smart_quotes
from contractforge.models.mappings import TemplateMapping
from contractforge.models.templates import Provider, Template

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")


class MergeResult(BaseModel):
    """Final markup plus everything that did not merge cleanly."""

    model_config = ConfigDict(frozen=True)

    content: str
    warnings: list[str] = []
    placeholders: list[str] = []
    unresolved: list[str] = []


def extract_placeholders(markup: str) -> list[str]:
    """Unique placeholder names in order of first appearance."""
    seen: dict[str, None] = {}
    for match in PLACEHOLDER_PATTERN.finditer(markup):
        seen.setdefault(match.group(1), None)
    return list(seen)


def _render(resolved: ResolvedValue, today: date) -> tuple[str, str | None]:
    if not resolved.resolved:
        return "", None
    if resolved.block_id:
        return str(resolved.value), None
    text, warning = format_value(resolved.column, resolved.value, today=today)
    return html.escape(text, quote=False), warning


def merge(
    template: Template,
    provider: Provider,
    mapping: TemplateMapping,
    *,
    blocks: DynamicBlockRegistry,
    today: date,
) -> MergeResult:
    """Merge one provider into one template.

    Unresolved tokens are replaced with an empty string (the delimiters go
    too) and reported once per unique token.  ``today`` is only read for
    date columns whose stored value is ``"now"``.
    """
    markup = template.markup
    placeholders = extract_placeholders(markup)
    resolved = resolve_fields(placeholders, provider, mapping, blocks)

    warnings: list[str] = list(resolved.warnings)
    rendered: dict[str, str] = {}
    for name in placeholders:
        text, warning = _render(resolved.values[name], today)
        if warning:
            warnings.append(f"{{{{{name}}}}}: {warning}")
        rendered[name] = text

    content = PLACEHOLDER_PATTERN.sub(lambda m: rendered[m.group(1)], markup)
    content = normalize_smart_quotes(content)
    unresolved = [name for name in placeholders if not resolved.values[name].resolved]

    if warnings:
        logger.debug(
            "Merged template %s for provider %s with %d warning(s)",
            template.id, provider.id, len(warnings),
        )
    return MergeResult(
        content=content,
        warnings=warnings,
        placeholders=placeholders,
        unresolved=unresolved,
    )
