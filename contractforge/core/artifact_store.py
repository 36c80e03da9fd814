"""Immutable, timestamped contract store.

Storage layout::

    contracts/immutable/{contractId}/{generatedAt}/{fileName}
    contracts/metadata/{contractId}/{generatedAt}.json

Each ``(contractId, generatedAt)`` pair is written exactly once.  There is no
update or delete; a regeneration produces a new timestamp and new keys.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from contractforge.config import SEVEN_DAYS_SECONDS
from contractforge.core.hasher import canonical_json_bytes, sha256_hex
from contractforge.core.keys import METADATA_PREFIX, immutable_key, metadata_key
from contractforge.core.object_store import ObjectExistsError, ObjectNotFoundError, ObjectStore
from contractforge.core.retry import RetryPolicy
from contractforge.errors import (
    ArtifactIntegrityError,
    ImmutableWriteError,
    StorageNotFoundError,
    StorageReadError,
    StorageWriteError,
)
from contractforge.models.contracts import (
    ArtifactMetadata,
    ContractStatus,
    StoredArtifact,
)
from contractforge.models.templates import Provider, Template

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ImmutableContractStore:
    """Write-once contract artifacts plus their metadata.

    Parameters
    ----------
    object_store:
        Backend that holds the bytes.
    retry:
        Policy applied to every backend call.
    contract_url_ttl:
        Lifetime of the signed URL recorded as ``permanent_url``.
    """

    def __init__(
        self,
        object_store: ObjectStore,
        *,
        retry: RetryPolicy | None = None,
        contract_url_ttl: int = SEVEN_DAYS_SECONDS,
    ) -> None:
        self.object_store = object_store
        self.retry = retry or RetryPolicy()
        self.contract_url_ttl = contract_url_ttl

    async def _call(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.retry.run(operation, label=label)

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    async def store(
        self,
        contract_id: str,
        file_name: str,
        data: bytes,
        provider: Provider,
        template: Template,
        *,
        generated_at: str,
        status: ContractStatus = ContractStatus.SUCCESS,
    ) -> StoredArtifact:
        """Persist one contract version and return where it landed.

        Raises
        ------
        ImmutableWriteError
            An object already exists under the artifact or metadata key.
        StorageWriteError
            Any other failure of the digest, write, signing or metadata
            steps.
        """
        artifact_key = immutable_key(contract_id, generated_at, file_name)
        meta_key = metadata_key(contract_id, generated_at)
        try:
            file_hash = sha256_hex(data)

            for key in (artifact_key, meta_key):
                if await self._call(f"exists {key}", lambda key=key: self.object_store.exists(key)):
                    raise ImmutableWriteError(
                        f"Refusing to overwrite immutable object {key}"
                    )

            object_meta = {
                "contract-id": contract_id,
                "provider-id": provider.id,
                "template-id": template.id,
                "generated-at": generated_at,
                "file-hash": file_hash,
                "immutable": "true",
            }
            await self._call(
                f"put {artifact_key}",
                lambda: self.object_store.put(artifact_key, data, object_meta, if_absent=True),
            )
            permanent_url = await self._call(
                f"sign {artifact_key}",
                lambda: self.object_store.signed_url(artifact_key, self.contract_url_ttl),
            )

            metadata = ArtifactMetadata(
                contract_id=contract_id,
                provider_id=provider.id,
                provider_name=provider.name,
                template_id=template.id,
                template_name=template.name,
                generated_at=generated_at,
                status=status,
                file_name=file_name,
                file_size=len(data),
                file_hash=file_hash,
                permanent_url=permanent_url,
                provider_snapshot=provider.snapshot(),
                template_snapshot=template.model_dump(mode="json", by_alias=True),
            )
            payload = canonical_json_bytes(metadata.model_dump(mode="json"))
            await self._call(
                f"put {meta_key}",
                lambda: self.object_store.put(
                    meta_key, payload, {"contract-id": contract_id}, if_absent=True
                ),
            )
        except StorageWriteError:
            raise
        except ObjectExistsError as exc:
            logger.warning("Lost a concurrent write to %s", exc.key)
            raise ImmutableWriteError(f"Refusing to overwrite immutable object {exc.key}") from exc
        except Exception as exc:
            logger.error("Storing contract %s at %s failed: %s", contract_id, generated_at, exc)
            raise StorageWriteError(
                f"Failed to store contract {contract_id} ({generated_at}): {exc}"
            ) from exc

        logger.info("Stored contract %s version %s (%d bytes)", contract_id, generated_at, len(data))
        return StoredArtifact(
            contract_id=contract_id,
            file_name=file_name,
            generated_at=generated_at,
            artifact_key=artifact_key,
            metadata_key=meta_key,
            permanent_url=permanent_url,
            file_hash=file_hash,
            file_size=len(data),
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_metadata(self, contract_id: str, generated_at: str) -> ArtifactMetadata:
        key = metadata_key(contract_id, generated_at)
        try:
            raw = await self._call(f"get {key}", lambda: self.object_store.get(key))
        except ObjectNotFoundError as exc:
            raise StorageNotFoundError(
                f"No metadata for contract {contract_id} at {generated_at}"
            ) from exc
        except Exception as exc:
            raise StorageReadError(f"Failed to read metadata {key}: {exc}") from exc
        return ArtifactMetadata.model_validate(json.loads(raw))

    async def get_artifact(self, contract_id: str, generated_at: str, file_name: str) -> bytes:
        key = immutable_key(contract_id, generated_at, file_name)
        try:
            return await self._call(f"get {key}", lambda: self.object_store.get(key))
        except ObjectNotFoundError as exc:
            raise StorageNotFoundError(f"No artifact stored at {key}") from exc
        except Exception as exc:
            raise StorageReadError(f"Failed to read artifact {key}: {exc}") from exc

    async def verify_integrity(self, contract_id: str, generated_at: str, file_name: str) -> str:
        """Re-hash the stored bytes against the digest recorded at write time.

        Returns the verified digest; raises ``ArtifactIntegrityError`` on a
        mismatch.
        """
        metadata = await self.get_metadata(contract_id, generated_at)
        data = await self.get_artifact(contract_id, generated_at, file_name)
        actual = sha256_hex(data)
        if actual != metadata.file_hash:
            raise ArtifactIntegrityError(
                f"Contract {contract_id} ({generated_at}) hash mismatch: "
                f"expected {metadata.file_hash}, got {actual}"
            )
        return actual

    async def list_versions(self, contract_id: str) -> list[ArtifactMetadata]:
        """Every stored version of a contract, newest first."""
        prefix = f"{METADATA_PREFIX}{contract_id}/"
        try:
            keys = await self._call(f"list {prefix}", lambda: self.object_store.list_keys(prefix))
        except Exception as exc:
            raise StorageReadError(f"Failed to list versions of {contract_id}: {exc}") from exc

        versions: list[ArtifactMetadata] = []
        for key in keys:
            generated_at = key[len(prefix):].removesuffix(".json")
            versions.append(await self.get_metadata(contract_id, generated_at))
        return sorted(versions, key=lambda m: m.generated_at, reverse=True)

    async def connection_check(self) -> bool:
        """Whether the backend answers a cheap listing call."""
        try:
            await self.object_store.list_keys(METADATA_PREFIX)
        except Exception as exc:
            logger.warning("Object store connection check failed: %s", exc)
            return False
        return True
