"""Bulk operation progress and results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from contractforge.models.contracts import ContractStatus


class BulkProgress(BaseModel):
    """``completed`` of ``total`` items settled so far."""

    model_config = ConfigDict(frozen=True)

    completed: int
    total: int

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


class BulkItemResult(BaseModel):
    """Outcome of one item in a bulk run; a failed item carries its error."""

    model_config = ConfigDict(frozen=True)

    id: str
    success: bool
    error: str | None = None
    status: ContractStatus | None = None
    file_name: str = ""
    permanent_url: str = ""


class BulkResult(BaseModel):
    """Aggregate of a bulk run; always holds one entry per input item."""

    model_config = ConfigDict(frozen=True)

    total_processed: int
    successful: int
    failed: int
    results: list[BulkItemResult]

    @classmethod
    def from_items(cls, results: list[BulkItemResult]) -> BulkResult:
        successful = sum(1 for r in results if r.success)
        return cls(
            total_processed=len(results),
            successful=successful,
            failed=len(results) - successful,
            results=results,
        )
