"""Error taxonomy for the generation and storage pipeline.

Every failure below the orchestrator boundary is translated into one of these
kinds.  Each kind carries a ``remedy`` that tells the operator what to do
next, because the remedies differ: fix the data, reload the environment,
retry the storage call, or regenerate the contract.
"""

from __future__ import annotations


class ContractForgeError(RuntimeError):
    """Base class for all pipeline errors."""

    remedy: str = "report"

    def __init__(self, message: str, *, remedy: str | None = None) -> None:
        super().__init__(message)
        if remedy is not None:
            self.remedy = remedy


class DataError(ContractForgeError):
    """A template or provider is missing data the generation needs.

    Fatal to that single generation and never retried automatically.
    """

    remedy = "fix_data"

    def __init__(self, message: str, *, field: str = "") -> None:
        super().__init__(message)
        self.field = field


class PackagingUnavailableError(ContractForgeError):
    """The document packaging backend is not installed or not ready."""

    remedy = "reload"


class StorageWriteError(ContractForgeError):
    """Persisting an artifact or its metadata failed.

    Non-fatal for a generation: the result degrades to PARTIAL_SUCCESS.
    """

    remedy = "retry"


class ImmutableWriteError(StorageWriteError):
    """An object already exists under a write-once key."""


class StorageReadError(ContractForgeError):
    """The artifact exists but could not be retrieved."""

    remedy = "retry"


class StorageNotFoundError(ContractForgeError):
    """The artifact was never persisted; regenerate it."""

    remedy = "regenerate"


class ContractNotGeneratedError(StorageNotFoundError):
    """No successful generation is on record for the provider/template pair."""


class ArtifactIntegrityError(ContractForgeError):
    """Stored bytes no longer match the digest recorded at write time."""

    remedy = "report"
