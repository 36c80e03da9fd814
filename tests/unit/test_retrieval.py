"""Tests for tiered retrieval and the not-found / read-error split."""

from __future__ import annotations

import pytest

from contractforge.core.keys import ContractLocator
from contractforge.core.retrieval import (
    ContractRetriever,
    SecondaryTier,
    TiersExhaustedError,
    first_success,
)
from contractforge.errors import StorageNotFoundError, StorageReadError

LOCATOR = ContractLocator(
    contract_id="p1-t1-2024",
    generated_at="2024-05-01T12:00:00.123Z",
    file_name="2024_dr__smith_20240501.docx",
)


class FailingTier:
    name = "immutable"

    async def locate(self, locator: ContractLocator) -> str:
        raise ConnectionError("primary unreachable")


class StaticTier:
    name = "secondary"

    def __init__(self, url: str) -> None:
        self.url = url

    async def locate(self, locator: ContractLocator) -> str:
        return self.url


class UnreachableIndex:
    async def exists(self, key: str) -> bool:
        raise TimeoutError("existence check timed out")


class TestFirstSuccess:
    @pytest.mark.asyncio
    async def test_falls_through_to_next_tier(self):
        result = await first_success(
            [FailingTier(), StaticTier("https://s3.example.com/contract.pdf")], LOCATOR
        )
        assert result.url == "https://s3.example.com/contract.pdf"
        assert result.tier == "secondary"

    @pytest.mark.asyncio
    async def test_collects_every_error(self):
        with pytest.raises(TiersExhaustedError) as info:
            await first_success([FailingTier(), StaticTier("")], LOCATOR)
        assert [name for name, _ in info.value.errors] == ["immutable", "secondary"]


class TestContractRetriever:
    @pytest.mark.asyncio
    async def test_fallback_url_is_returned(self, object_store):
        retriever = ContractRetriever(
            [FailingTier(), StaticTier("https://s3.example.com/contract.pdf")], object_store
        )
        result = await retriever.resolve(LOCATOR)
        assert result.url == "https://s3.example.com/contract.pdf"

    @pytest.mark.asyncio
    async def test_immutable_tier_serves_stored_contract(self, contract_store, provider, template):
        stored = await contract_store.store(
            LOCATOR.contract_id, LOCATOR.file_name, b"doc", provider, template,
            generated_at=LOCATOR.generated_at,
        )
        result = await ContractRetriever.default(contract_store).resolve(LOCATOR)
        assert result.tier == "immutable"
        assert result.url == stored.permanent_url

    @pytest.mark.asyncio
    async def test_legacy_copy_served_by_secondary(self, contract_store, object_store, fast_retry):
        legacy = LOCATOR.fallback_keys[1]
        await object_store.put(legacy, b"old doc")
        retriever = ContractRetriever.default(contract_store)
        result = await retriever.resolve(LOCATOR)
        assert result.tier == "secondary"
        assert object_store.verify_url(result.url)

    @pytest.mark.asyncio
    async def test_never_persisted_is_not_found(self, contract_store):
        with pytest.raises(StorageNotFoundError, match="regenerate"):
            await ContractRetriever.default(contract_store).resolve(LOCATOR)

    @pytest.mark.asyncio
    async def test_present_but_unreachable_is_read_error(self, object_store):
        await object_store.put(LOCATOR.artifact_key, b"doc")
        retriever = ContractRetriever([FailingTier()], object_store)
        with pytest.raises(StorageReadError, match="retry"):
            await retriever.resolve(LOCATOR)

    @pytest.mark.asyncio
    async def test_failed_existence_check_is_read_error(self):
        retriever = ContractRetriever([FailingTier()], UnreachableIndex())
        with pytest.raises(StorageReadError):
            await retriever.resolve(LOCATOR)


class TestSecondaryTier:
    @pytest.mark.asyncio
    async def test_no_legacy_copy(self, object_store, fast_retry):
        with pytest.raises(StorageNotFoundError):
            await SecondaryTier(object_store, retry=fast_retry).locate(LOCATOR)
