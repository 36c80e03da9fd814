"""Placeholder mapping models.

A mapping entry binds a template placeholder either to a provider column or
to a computed dynamic block, never both.  The branch is decided once, when
raw mapping rows are normalized, and carried as a tagged union afterwards.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class DirectField(BaseModel):
    """Placeholder filled from a single provider column."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["field"] = "field"
    column: str


class DynamicBlock(BaseModel):
    """Placeholder filled by a rendered dynamic block."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["dynamic"] = "dynamic"
    block_id: str


FieldMapping = Annotated[Union[DirectField, DynamicBlock], Field(discriminator="kind")]


class MappingEntry(BaseModel):
    """One placeholder of a template and what fills it.

    ``mapping`` is ``None`` for a placeholder nobody has mapped yet.
    """

    model_config = ConfigDict(frozen=True)

    placeholder: str  # bare name, no braces
    mapping: FieldMapping | None = None
    notes: str = ""


class TemplateMapping(BaseModel):
    """All placeholder mappings for one template."""

    model_config = ConfigDict(frozen=True)

    template_id: str
    entries: list[MappingEntry] = []

    def lookup(self) -> dict[str, FieldMapping | None]:
        """Placeholder name to mapping; the last entry for a name wins."""
        return {entry.placeholder: entry.mapping for entry in self.entries}
