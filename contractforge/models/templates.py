"""Template and provider snapshot models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Template(BaseModel):
    """A contract template with ``{{placeholder}}`` markup.

    Templates are referenced by generated artifacts; the snapshot stored
    with each artifact is the template as it was at generation time.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    contract_year: str = Field(default="", alias="contractYear")
    version: str = "1"
    edited_content: str = Field(default="", alias="editedContent")
    preview_content: str = Field(default="", alias="previewContent")
    tags: list[str] = []

    @property
    def markup(self) -> str:
        """Edited markup when present, otherwise the uploaded preview."""
        return self.edited_content or self.preview_content or ""

    @property
    def is_valid(self) -> bool:
        """A template can be assigned only with a non-blank id and name."""
        return bool(self.id and self.id.strip() and self.name and self.name.strip())


class Provider(BaseModel):
    """Point-in-time snapshot of a provider record.

    Everything that is not a declared field lives in ``attributes``
    (salary, FTE, dates, free-form dynamic columns).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    specialty: str = ""
    provider_type: str = Field(default="", alias="providerType")
    compensation_model: str = Field(default="", alias="compensationModel")
    attributes: dict[str, Any] = {}

    def value_for(self, column: str) -> Any:
        """Flat lookup of a column value; ``None`` when absent.

        Declared fields win, then an exact attribute key, then a
        case-insensitive attribute key.  No dotted or bracketed paths.
        """
        declared = {
            "id": self.id,
            "name": self.name,
            "specialty": self.specialty,
            "provider_type": self.provider_type,
            "providerType": self.provider_type,
            "compensation_model": self.compensation_model,
            "compensationModel": self.compensation_model,
        }
        if column in declared and declared[column] != "":
            return declared[column]
        if column in self.attributes:
            return self.attributes[column]
        lowered = column.lower()
        for key, value in self.attributes.items():
            if key.lower() == lowered:
                return value
        return None

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready snapshot for artifact metadata."""
        return self.model_dump(mode="json", by_alias=True)
