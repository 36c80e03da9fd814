"""Dynamic blocks: computed, multi-field content bound to one placeholder.

A block is a named renderer ``(provider) -> markup``.  Two blocks ship
built in:

- ``FTEBreakdown``: an HTML table of the provider's FTE allocation, taken
  from the structured ``fteBreakdown`` list or, for older uploads, from the
  individual ``* FTE`` columns.  Zero allocations are left out.
- ``FTESummary``: ``0.8 FTE (32 hours per week)``.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Callable, Iterable
from decimal import Decimal

from contractforge.core.formatting import format_number, format_percentage, to_decimal
from contractforge.models.templates import Provider

logger = logging.getLogger(__name__)

BlockRenderer = Callable[[Provider], str]

HOURS_PER_FTE = 40


class UnknownBlockError(KeyError):
    """Raised when a mapping names a block nobody registered."""


class DynamicBlockRegistry:
    """Block id to renderer.  Lookups fall back to a case-insensitive match."""

    def __init__(self, renderers: dict[str, BlockRenderer] | None = None) -> None:
        self._renderers: dict[str, BlockRenderer] = dict(renderers or {})

    @classmethod
    def with_builtins(cls) -> DynamicBlockRegistry:
        return cls({"FTEBreakdown": render_fte_breakdown, "FTESummary": render_fte_summary})

    def register(self, block_id: str, renderer: BlockRenderer) -> None:
        self._renderers[block_id] = renderer
        logger.debug("Registered dynamic block %s", block_id)

    def __contains__(self, block_id: str) -> bool:
        return self._find(block_id) is not None

    @property
    def block_ids(self) -> list[str]:
        return sorted(self._renderers)

    def render(self, block_id: str, provider: Provider) -> str:
        renderer = self._find(block_id)
        if renderer is None:
            raise UnknownBlockError(block_id)
        return renderer(provider)

    def _find(self, block_id: str) -> BlockRenderer | None:
        if block_id in self._renderers:
            return self._renderers[block_id]
        lowered = block_id.lower()
        for key, renderer in self._renderers.items():
            if key.lower() == lowered:
                return renderer
        return None


# ---------------------------------------------------------------------------
# Built-in blocks
# ---------------------------------------------------------------------------


def _breakdown_rows(provider: Provider) -> tuple[list[tuple[str, Decimal]], str]:
    """Return ``(rows, unit)`` where unit is ``"percent"`` or ``"fte"``."""
    structured = provider.value_for("fteBreakdown")
    if isinstance(structured, list) and structured:
        rows: list[tuple[str, Decimal]] = []
        for item in structured:
            if not isinstance(item, dict):
                continue
            amount = to_decimal(item.get("percentage"))
            if amount is None or amount == 0:
                continue
            rows.append((str(item.get("activity", "")), amount))
        return rows, "percent"

    rows = []
    for key, value in provider.attributes.items():
        label = key.strip()
        if not label.lower().endswith("fte") or label.lower() == "fte":
            continue
        amount = to_decimal(value)
        if amount is None or amount == 0:
            continue
        rows.append((label[:-3].strip() or label, amount))
    return rows, "fte"


def _table(header: Iterable[str], body: list[list[str]]) -> str:
    head = "".join(f"<th>{html.escape(cell)}</th>" for cell in header)
    rows = "".join(
        "<tr>" + "".join(f"<td>{html.escape(cell)}</td>" for cell in row) + "</tr>"
        for row in body
    )
    return f"<table><tr>{head}</tr>{rows}</table>"


def render_fte_breakdown(provider: Provider) -> str:
    rows, unit = _breakdown_rows(provider)
    if not rows:
        return ""
    total = sum((amount for _, amount in rows), Decimal(0))
    if unit == "percent":
        body = [[label, format_percentage(amount)] for label, amount in rows]
        body.append(["Total", format_percentage(total)])
    else:
        body = [[label, f"{format_number(amount)} FTE"] for label, amount in rows]
        body.append(["Total", f"{format_number(total)} FTE"])
    return _table(["Activity", "Allocation"], body)


def render_fte_summary(provider: Provider) -> str:
    fte = to_decimal(provider.value_for("FTE"))
    if fte is None:
        return ""
    hours = int((fte * HOURS_PER_FTE).to_integral_value())
    return f"{format_number(fte)} FTE ({hours} hours per week)"
