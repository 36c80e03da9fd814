"""Deterministic identifiers and storage keys.

Layout (must stay byte-compatible with already-stored contracts)::

    contracts/immutable/{contractId}/{generatedAtISO}/{fileName}
    contracts/metadata/{contractId}/{generatedAtISO}.json

    contractId = {providerId}-{templateId}-{contractYear}
    fileName   = {contractYear}_{slug}_{YYYYMMDD}.docx

Everything here is a pure function of its arguments.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict

IMMUTABLE_PREFIX = "contracts/immutable/"
METADATA_PREFIX = "contracts/metadata/"
LEGACY_PREFIX = "contracts/"
DOCUMENT_EXTENSION = "docx"

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def build_contract_id(provider_id: str, template_id: str, contract_year: str) -> str:
    """``providerId-templateId-contractYear``."""
    return f"{provider_id}-{template_id}-{contract_year}"


def slugify_provider_name(provider_name: str) -> str:
    """Lower-case the name and replace every non-alphanumeric character with ``_``."""
    return _NON_ALNUM.sub("_", provider_name.lower())


def iso_timestamp(moment: datetime) -> str:
    """UTC instant with millisecond precision and a ``Z`` suffix.

    Matches JavaScript's ``Date.toISOString()``, which produced the keys of
    contracts stored before this service existed.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_iso_timestamp(value: str) -> datetime:
    """Inverse of :func:`iso_timestamp`; also accepts ``+00:00`` offsets."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def generation_date(generated_at: str) -> str:
    """``YYYYMMDD`` of an ISO instant (UTC calendar date)."""
    return parse_iso_timestamp(generated_at).astimezone(timezone.utc).strftime("%Y%m%d")


def contract_file_name(contract_year: str, provider_name: str, generation_day: str) -> str:
    """``{contractYear}_{slug}_{YYYYMMDD}.docx``.

    ``generation_day`` may be given as ``YYYYMMDD`` or ``YYYY-MM-DD``.
    """
    day = generation_day.replace("-", "")
    slug = slugify_provider_name(provider_name)
    return f"{contract_year}_{slug}_{day}.{DOCUMENT_EXTENSION}"


def immutable_key(contract_id: str, generated_at: str, file_name: str) -> str:
    return f"{IMMUTABLE_PREFIX}{contract_id}/{generated_at}/{file_name}"


def metadata_key(contract_id: str, generated_at: str) -> str:
    return f"{METADATA_PREFIX}{contract_id}/{generated_at}.json"


def legacy_keys(contract_id: str, file_name: str) -> list[str]:
    """Older, untimestamped layouts that may still hold an artifact."""
    return [
        f"{IMMUTABLE_PREFIX}{contract_id}/{file_name}",
        f"{LEGACY_PREFIX}{contract_id}/{file_name}",
    ]


class ContractLocator(BaseModel):
    """Everything needed to find one stored contract version."""

    model_config = ConfigDict(frozen=True)

    contract_id: str
    generated_at: str
    file_name: str

    @classmethod
    def derive(
        cls,
        *,
        provider_id: str,
        template_id: str,
        contract_year: str,
        provider_name: str,
        generated_at: str,
    ) -> ContractLocator:
        """Recompute the locator from the inputs used at generation time."""
        return cls(
            contract_id=build_contract_id(provider_id, template_id, contract_year),
            generated_at=generated_at,
            file_name=contract_file_name(
                contract_year, provider_name, generation_date(generated_at)
            ),
        )

    @property
    def artifact_key(self) -> str:
        return immutable_key(self.contract_id, self.generated_at, self.file_name)

    @property
    def metadata_key(self) -> str:
        return metadata_key(self.contract_id, self.generated_at)

    @property
    def fallback_keys(self) -> list[str]:
        return legacy_keys(self.contract_id, self.file_name)
