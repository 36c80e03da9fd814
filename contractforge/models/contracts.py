"""Generated contract records and immutable artifact metadata."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from contractforge.core.keys import build_contract_id

STORAGE_FORMAT_VERSION = "1.0.0"


class ContractStatus(str, Enum):
    """Outcome of one contract generation."""

    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


DOWNLOADABLE_STATUSES: frozenset[ContractStatus] = frozenset(
    {ContractStatus.SUCCESS, ContractStatus.PARTIAL_SUCCESS}
)


class GeneratedContract(BaseModel):
    """One generation of one provider against one template.

    ``contract_id`` is derived, never stored independently, so recomputing it
    from a record always yields the storage namespace used at write time.
    """

    model_config = ConfigDict(frozen=True)

    provider_id: str
    template_id: str
    contract_year: str
    status: ContractStatus
    generated_at: str  # ISO instant, e.g. 2024-05-01T12:00:00.000Z
    file_name: str = ""
    permanent_url: str = ""
    file_hash: str = ""
    error: str = ""
    record_id: str = ""

    @property
    def contract_id(self) -> str:
        return build_contract_id(self.provider_id, self.template_id, self.contract_year)


class ArtifactMetadata(BaseModel):
    """Write-once metadata stored beside every immutable artifact."""

    model_config = ConfigDict(frozen=True)

    contract_id: str
    provider_id: str
    provider_name: str
    template_id: str
    template_name: str
    generated_at: str
    status: ContractStatus = ContractStatus.SUCCESS
    file_name: str
    file_size: int
    file_hash: str  # SHA-256 hex of the artifact bytes
    permanent_url: str = ""
    version: str = STORAGE_FORMAT_VERSION
    provider_snapshot: dict[str, Any] = {}
    template_snapshot: dict[str, Any] = {}


class StoredArtifact(BaseModel):
    """Where an artifact landed and how to fetch it."""

    model_config = ConfigDict(frozen=True)

    contract_id: str
    file_name: str
    generated_at: str
    artifact_key: str
    metadata_key: str
    permanent_url: str
    file_hash: str
    file_size: int


class PackagedDocument(BaseModel):
    """Binary document produced from merged markup."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    data: bytes
    content_type: str
    warnings: list[str] = []
