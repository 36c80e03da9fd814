"""Tests for the immutable contract store."""

from __future__ import annotations

import asyncio

import pytest

from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.hasher import sha256_hex
from contractforge.core.keys import immutable_key
from contractforge.core.object_store import LocalObjectStore
from contractforge.errors import (
    ArtifactIntegrityError,
    ImmutableWriteError,
    StorageNotFoundError,
    StorageWriteError,
)
from contractforge.models.templates import Provider, Template

CID = "p1-t1-2024"
FILE = "2024_dr__smith_20240501.docx"
FIRST = "2024-05-01T12:00:00.123Z"
SECOND = "2024-05-02T08:30:00.000Z"


class FullDisk:
    """Backend whose writes always fail."""

    async def exists(self, key):
        return False

    async def put(self, key, data, metadata=None, *, if_absent=False):
        raise OSError("disk full")


class StaleExistenceCheck(LocalObjectStore):
    """Backend whose existence check always misses, as when a writer races it."""

    async def exists(self, key):
        return False


async def _store(store: ImmutableContractStore, provider: Provider, template: Template, at: str = FIRST, data: bytes = b"doc"):
    return await store.store(CID, FILE, data, provider, template, generated_at=at)


class TestStore:
    @pytest.mark.asyncio
    async def test_writes_artifact_and_metadata(self, contract_store, object_store, provider, template):
        stored = await _store(contract_store, provider, template)
        assert stored.artifact_key == f"contracts/immutable/{CID}/{FIRST}/{FILE}"
        assert stored.metadata_key == f"contracts/metadata/{CID}/{FIRST}.json"
        assert stored.file_hash == sha256_hex(b"doc")
        assert await object_store.get(stored.artifact_key) == b"doc"
        assert object_store.verify_url(stored.permanent_url)

        meta = await contract_store.get_metadata(CID, FIRST)
        assert meta.provider_name == "Dr. Smith"
        assert meta.template_name == "Standard Physician"
        assert meta.file_size == 3
        assert meta.provider_snapshot["id"] == "p1"

    @pytest.mark.asyncio
    async def test_object_metadata_marks_immutable(self, contract_store, object_store, provider, template):
        stored = await _store(contract_store, provider, template)
        head = await object_store.head(stored.artifact_key)
        assert head["immutable"] == "true"
        assert head["contract-id"] == CID

    @pytest.mark.asyncio
    async def test_refuses_overwrite(self, contract_store, object_store, provider, template):
        await _store(contract_store, provider, template)
        with pytest.raises(ImmutableWriteError):
            await _store(contract_store, provider, template, data=b"other")
        assert await object_store.get(immutable_key(CID, FIRST, FILE)) == b"doc"

    @pytest.mark.asyncio
    async def test_concurrent_stores_of_one_version(self, contract_store, object_store, provider, template):
        results = await asyncio.gather(
            _store(contract_store, provider, template, data=b"one"),
            _store(contract_store, provider, template, data=b"two"),
            return_exceptions=True,
        )
        stored = [r for r in results if not isinstance(r, BaseException)]
        refused = [r for r in results if isinstance(r, ImmutableWriteError)]
        assert len(stored) == 1
        assert len(refused) == 1
        assert sha256_hex(await object_store.get(immutable_key(CID, FIRST, FILE))) == stored[0].file_hash

    @pytest.mark.asyncio
    async def test_write_after_missed_existence_check_is_refused(self, tmp_dir, fast_retry, provider, template):
        backend = StaleExistenceCheck(tmp_dir / "objects")
        store = ImmutableContractStore(backend, retry=fast_retry)
        await _store(store, provider, template, data=b"doc")
        with pytest.raises(ImmutableWriteError):
            await _store(store, provider, template, data=b"other")
        assert await backend.get(immutable_key(CID, FIRST, FILE)) == b"doc"

    @pytest.mark.asyncio
    async def test_backend_failure_is_write_error(self, fast_retry, provider, template):
        store = ImmutableContractStore(FullDisk(), retry=fast_retry)
        with pytest.raises(StorageWriteError) as info:
            await _store(store, provider, template)
        assert not isinstance(info.value, ImmutableWriteError)
        assert "disk full" in str(info.value)


class TestRead:
    @pytest.mark.asyncio
    async def test_missing_metadata_is_not_found(self, contract_store):
        with pytest.raises(StorageNotFoundError):
            await contract_store.get_metadata(CID, FIRST)

    @pytest.mark.asyncio
    async def test_verify_integrity(self, contract_store, provider, template):
        await _store(contract_store, provider, template)
        assert await contract_store.verify_integrity(CID, FIRST, FILE) == sha256_hex(b"doc")

    @pytest.mark.asyncio
    async def test_detects_tampering(self, contract_store, object_store, provider, template):
        stored = await _store(contract_store, provider, template)
        (object_store.root / stored.artifact_key).write_bytes(b"tampered")
        with pytest.raises(ArtifactIntegrityError):
            await contract_store.verify_integrity(CID, FIRST, FILE)

    @pytest.mark.asyncio
    async def test_versions_newest_first(self, contract_store, provider, template):
        await _store(contract_store, provider, template, at=FIRST)
        await _store(contract_store, provider, template, at=SECOND, data=b"v2")
        versions = await contract_store.list_versions(CID)
        assert [v.generated_at for v in versions] == [SECOND, FIRST]

    @pytest.mark.asyncio
    async def test_connection_check(self, contract_store):
        assert await contract_store.connection_check()
