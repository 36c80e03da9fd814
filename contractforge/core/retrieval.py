"""Tiered contract retrieval.

Tiers are tried in order and the first one that yields a URL wins.  When
every tier fails, an existence check decides what the caller is told:

- nothing stored anywhere: ``StorageNotFoundError`` (regenerate);
- something stored, or the check itself failed: ``StorageReadError`` (retry).

These two outcomes are never merged into one.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from contractforge.config import ONE_HOUR_SECONDS
from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.keys import ContractLocator
from contractforge.core.object_store import ObjectStore
from contractforge.core.retry import RetryPolicy
from contractforge.errors import StorageNotFoundError, StorageReadError

logger = logging.getLogger(__name__)


class RetrievalResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    tier: str


@runtime_checkable
class StorageTier(Protocol):
    """One place a contract may be found."""

    name: str

    async def locate(self, locator: ContractLocator) -> str:
        """Return a download URL or raise."""
        ...


class TiersExhaustedError(LookupError):
    """Every tier failed; ``errors`` holds ``(tier name, exception)`` pairs."""

    def __init__(self, errors: list[tuple[str, BaseException]]) -> None:
        summary = "; ".join(f"{name}: {exc}" for name, exc in errors) or "no tiers configured"
        super().__init__(summary)
        self.errors = errors


async def first_success(tiers: Sequence[StorageTier], locator: ContractLocator) -> RetrievalResult:
    """Try each tier in order and return the first URL produced."""
    errors: list[tuple[str, BaseException]] = []
    for tier in tiers:
        try:
            url = await tier.locate(locator)
        except Exception as exc:
            logger.info("Tier %s could not serve %s: %s", tier.name, locator.contract_id, exc)
            errors.append((tier.name, exc))
            continue
        if url:
            return RetrievalResult(url=url, tier=tier.name)
        errors.append((tier.name, StorageNotFoundError("empty URL")))
    raise TiersExhaustedError(errors)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


class ImmutableTier:
    """Primary tier: the timestamped immutable layout."""

    name = "immutable"

    def __init__(self, store: ImmutableContractStore) -> None:
        self.store = store

    async def locate(self, locator: ContractLocator) -> str:
        metadata = await self.store.get_metadata(locator.contract_id, locator.generated_at)
        if metadata.permanent_url:
            return metadata.permanent_url
        key = locator.artifact_key
        return await self.store.retry.run(
            lambda: self.store.object_store.signed_url(key, self.store.contract_url_ttl),
            label=f"sign {key}",
        )


class SecondaryTier:
    """Fallback tier: untimestamped layouts written by older releases."""

    name = "secondary"

    def __init__(
        self,
        object_store: ObjectStore,
        *,
        retry: RetryPolicy | None = None,
        url_ttl: int = ONE_HOUR_SECONDS,
    ) -> None:
        self.object_store = object_store
        self.retry = retry or RetryPolicy()
        self.url_ttl = url_ttl

    async def locate(self, locator: ContractLocator) -> str:
        for key in locator.fallback_keys:
            found = await self.retry.run(lambda key=key: self.object_store.exists(key), label=f"exists {key}")
            if found:
                return await self.retry.run(
                    lambda key=key: self.object_store.signed_url(key, self.url_ttl),
                    label=f"sign {key}",
                )
        raise StorageNotFoundError(f"No legacy copy of {locator.contract_id}")


# ---------------------------------------------------------------------------
# Retriever
# ---------------------------------------------------------------------------


class ContractRetriever:
    """Resolves a download URL through an ordered list of tiers.

    Parameters
    ----------
    tiers:
        Tiers in priority order.
    existence_store:
        Backend used for the final existence check.
    """

    def __init__(self, tiers: Sequence[StorageTier], existence_store: ObjectStore) -> None:
        self.tiers = list(tiers)
        self.existence_store = existence_store

    @classmethod
    def default(
        cls,
        store: ImmutableContractStore,
        *,
        generic_url_ttl: int = ONE_HOUR_SECONDS,
    ) -> ContractRetriever:
        return cls(
            [
                ImmutableTier(store),
                SecondaryTier(store.object_store, retry=store.retry, url_ttl=generic_url_ttl),
            ],
            store.object_store,
        )

    async def resolve(self, locator: ContractLocator) -> RetrievalResult:
        try:
            result = await first_success(self.tiers, locator)
        except TiersExhaustedError as exhausted:
            raise await self._classify(locator, exhausted) from exhausted
        if result.tier != self.tiers[0].name:
            logger.warning("Contract %s served from fallback tier %s", locator.contract_id, result.tier)
        return result

    async def _classify(self, locator: ContractLocator, exhausted: TiersExhaustedError) -> Exception:
        keys = [locator.artifact_key, *locator.fallback_keys]
        try:
            present = [key for key in keys if await self.existence_store.exists(key)]
        except Exception as exc:
            logger.error("Existence check for %s failed: %s", locator.contract_id, exc)
            return StorageReadError(
                f"Storage access error for contract {locator.contract_id}; please retry. ({exc})"
            )
        if present:
            return StorageReadError(
                f"Contract {locator.contract_id} exists but could not be retrieved; "
                f"please retry. ({exhausted})"
            )
        return StorageNotFoundError(
            f"Contract {locator.contract_id} was never persisted; please regenerate it."
        )
