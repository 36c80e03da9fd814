"""Generation orchestrator: the coordinator for contract generation runs.

Wires the merge engine, packager, immutable store, generation log,
retriever, assignment tracker and audit bridge into one engine.

A single generation walks the state machine in ``models.stages``::

    START -> MERGE -> PACKAGE -> LOCAL_SAVE -> REMOTE_STORE -> SUCCESS
                                                            -> PARTIAL_SUCCESS

``FAILED`` is reachable only from MERGE and PACKAGE.  Once a document
exists the generation cannot fail; a storage failure leaves it at
PARTIAL_SUCCESS with the local copy preserved.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import TypeVar

from pydantic import BaseModel, ConfigDict

from contractforge.bridge.audit_bridge import AuditBridge
from contractforge.bridge.notifier import BulkSummaryNotifier
from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.assignment import AssignmentTracker
from contractforge.core.dynamic_blocks import DynamicBlockRegistry
from contractforge.core.generation_log import GenerationLog
from contractforge.core.keys import ContractLocator, build_contract_id, iso_timestamp
from contractforge.core.merge_engine import merge
from contractforge.core.packager import DocumentPackager
from contractforge.core.retrieval import ContractRetriever, RetrievalResult
from contractforge.errors import (
    ContractForgeError,
    ContractNotGeneratedError,
    DataError,
    StorageWriteError,
)
from contractforge.models.audit import AuditAction, AuditCategory, AuditSeverity
from contractforge.models.bulk import BulkItemResult, BulkProgress, BulkResult
from contractforge.models.contracts import (
    DOWNLOADABLE_STATUSES,
    ContractStatus,
    GeneratedContract,
    StoredArtifact,
)
from contractforge.models.mappings import TemplateMapping
from contractforge.models.stages import (
    GenerationStage,
    StageTransition,
    check_transition,
)
from contractforge.models.templates import Provider, Template

logger = logging.getLogger(__name__)

LocalSaver = Callable[[str, bytes], Awaitable[str | None]]
ProgressCallback = Callable[[BulkProgress], None]
_Item = TypeVar("_Item")

RESOURCE_TYPE = "CONTRACT"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationOutcome(BaseModel):
    """Everything one generation produced, including how it got there."""

    model_config = ConfigDict(frozen=True)

    contract: GeneratedContract
    stage: GenerationStage
    transitions: list[StageTransition]
    warnings: list[str] = []
    merged_markup: str = ""
    local_path: str = ""
    stored: StoredArtifact | None = None
    remedy: str = ""

    @property
    def status(self) -> ContractStatus:
        return self.contract.status


class _StageWalker:
    """Tracks the current stage and rejects transitions the table forbids."""

    def __init__(self) -> None:
        self.stage = GenerationStage.START
        self.transitions: list[StageTransition] = []

    def advance(self, target: GenerationStage, detail: str = "") -> None:
        check_transition(self.stage, target)
        self.transitions.append(
            StageTransition(from_stage=self.stage, to_stage=target, detail=detail)
        )
        self.stage = target


class GenerationOrchestrator:
    """Generates, stores and retrieves provider contracts.

    Parameters
    ----------
    store:
        Immutable contract store.
    packager:
        Document packager; defaults to the python-docx backend.
    log:
        Generation log read by :meth:`download_url`.  Without one, nothing
        is recorded and downloads cannot be resolved.
    retriever:
        Tiered retriever; defaults to the immutable and secondary tiers of
        ``store``.
    tracker:
        Assignment tracker consulted by :meth:`generate_for_providers`.
    mappings:
        Template id to placeholder mapping.  A template with no entry merges
        with every placeholder unmapped.
    """

    def __init__(
        self,
        store: ImmutableContractStore,
        *,
        packager: DocumentPackager | None = None,
        log: GenerationLog | None = None,
        retriever: ContractRetriever | None = None,
        tracker: AssignmentTracker | None = None,
        mappings: Mapping[str, TemplateMapping] | None = None,
        blocks: DynamicBlockRegistry | None = None,
        audit: AuditBridge | None = None,
        notifier: BulkSummaryNotifier | None = None,
        batch_size: int = 10,
        batch_delay: float = 0.01,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.packager = packager or DocumentPackager()
        self.log = log
        self.retriever = retriever or ContractRetriever.default(store)
        self.tracker = tracker
        self.mappings: dict[str, TemplateMapping] = dict(mappings or {})
        self.blocks = blocks or DynamicBlockRegistry.with_builtins()
        self.audit = audit or AuditBridge()
        self.notifier = notifier
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self._clock = clock
        self.progress: BulkProgress | None = None

    def mapping_for(self, template_id: str) -> TemplateMapping:
        return self.mappings.get(template_id) or TemplateMapping(template_id=template_id)

    # ------------------------------------------------------------------
    # Single generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        provider: Provider,
        template: Template,
        mapping: TemplateMapping | None = None,
        *,
        local_saver: LocalSaver | None = None,
    ) -> GenerationOutcome:
        """Run one provider through one template.

        Data and packaging problems end the generation in FAILED and are
        reported on the outcome.  Anything unexpected propagates.
        """
        walker = _StageWalker()
        now = self._clock()
        generated_at = iso_timestamp(now)
        mapping = mapping or self.mapping_for(template.id)
        warnings: list[str] = []

        def _failed(exc: ContractForgeError) -> GenerationOutcome:
            walker.advance(GenerationStage.FAILED, str(exc))
            contract = GeneratedContract(
                provider_id=provider.id,
                template_id=template.id,
                contract_year=template.contract_year,
                status=ContractStatus.FAILED,
                generated_at=generated_at,
                error=str(exc),
            )
            return GenerationOutcome(
                contract=contract,
                stage=walker.stage,
                transitions=walker.transitions,
                warnings=warnings,
                remedy=exc.remedy,
            )

        # MERGE
        walker.advance(GenerationStage.MERGE)
        try:
            self._check_inputs(provider, template)
            merged = merge(
                template, provider, mapping, blocks=self.blocks, today=now.date()
            )
        except DataError as exc:
            logger.warning("Generation for %s/%s failed: %s", provider.id, template.id, exc)
            outcome = _failed(exc)
            await self._audit_single(outcome)
            return outcome
        warnings.extend(merged.warnings)

        # PACKAGE
        walker.advance(GenerationStage.PACKAGE)
        try:
            document = await self.packager.package(
                merged.content,
                contract_year=template.contract_year,
                provider_name=provider.name,
                generated_at=generated_at,
            )
        except ContractForgeError as exc:
            logger.warning("Packaging for %s/%s failed: %s", provider.id, template.id, exc)
            outcome = _failed(exc)
            await self._audit_single(outcome)
            return outcome
        warnings.extend(document.warnings)

        # LOCAL_SAVE
        walker.advance(GenerationStage.LOCAL_SAVE)
        local_path = ""
        if local_saver is not None:
            try:
                saved = await local_saver(document.file_name, document.data)
            except Exception:
                logger.exception("Local save of %s failed", document.file_name)
                warnings.append(f"Local save of {document.file_name} failed")
            else:
                if saved:
                    local_path = str(saved)
                else:
                    warnings.append(f"Local save of {document.file_name} was cancelled")

        # REMOTE_STORE
        walker.advance(GenerationStage.REMOTE_STORE)
        contract_id = build_contract_id(provider.id, template.id, template.contract_year)
        stored: StoredArtifact | None = None
        error = ""
        try:
            stored = await self.store.store(
                contract_id,
                document.file_name,
                document.data,
                provider,
                template,
                generated_at=generated_at,
            )
        except StorageWriteError as exc:
            error = str(exc)
            warnings.append(f"Contract was generated but could not be stored: {exc}")

        if stored is not None:
            walker.advance(GenerationStage.SUCCESS)
            status = ContractStatus.SUCCESS
        else:
            walker.advance(GenerationStage.PARTIAL_SUCCESS, error)
            status = ContractStatus.PARTIAL_SUCCESS

        contract = GeneratedContract(
            provider_id=provider.id,
            template_id=template.id,
            contract_year=template.contract_year,
            status=status,
            generated_at=generated_at,
            file_name=document.file_name,
            permanent_url=stored.permanent_url if stored else "",
            file_hash=stored.file_hash if stored else "",
            error=error,
        )
        contract = await self._record(contract)

        outcome = GenerationOutcome(
            contract=contract,
            stage=walker.stage,
            transitions=walker.transitions,
            warnings=warnings,
            merged_markup=merged.content,
            local_path=local_path,
            stored=stored,
            remedy="retry" if error else "",
        )
        logger.info(
            "Generated %s for provider %s: %s", contract.file_name, provider.id, status.value
        )
        await self._audit_single(outcome)
        return outcome

    @staticmethod
    def _check_inputs(provider: Provider, template: Template) -> None:
        if not provider.id:
            raise DataError("Provider has no id", field="id")
        if not provider.name:
            raise DataError(f"Provider {provider.id} has no name", field="name")
        if not template.id:
            raise DataError("Template has no id", field="id")
        if not template.contract_year:
            raise DataError(f"Template {template.id} has no contract year", field="contractYear")
        if not template.markup:
            raise DataError(f"Template {template.id} has no content", field="editedContent")

    async def _record(self, contract: GeneratedContract) -> GeneratedContract:
        if self.log is None:
            return contract
        try:
            return await asyncio.to_thread(self.log.append, contract)
        except Exception:
            logger.exception(
                "Could not record generation of %s; the contract itself is unaffected",
                contract.contract_id,
            )
            return contract

    async def _audit_single(self, outcome: GenerationOutcome) -> None:
        contract = outcome.contract
        failed = contract.status is ContractStatus.FAILED
        await self.audit.record(
            AuditAction.CONTRACT_GENERATION_FAILED if failed else AuditAction.CONTRACT_GENERATED,
            severity=AuditSeverity.MEDIUM if failed else AuditSeverity.LOW,
            category=AuditCategory.DATA,
            resource_type=RESOURCE_TYPE,
            resource_id=contract.contract_id,
            metadata={
                "providerId": contract.provider_id,
                "templateId": contract.template_id,
                "contractYear": contract.contract_year,
                "status": contract.status.value,
                "generatedAt": contract.generated_at,
                "fileName": contract.file_name,
                "fileHash": contract.file_hash,
                "warningCount": len(outcome.warnings),
                "error": contract.error,
            },
        )

    # ------------------------------------------------------------------
    # Bulk generation
    # ------------------------------------------------------------------

    async def _bulk_item(self, provider: Provider, template: Template | None) -> BulkItemResult:
        if template is None:
            return BulkItemResult(
                id=provider.id, success=False, error=f"No template assigned to {provider.name or provider.id}"
            )
        outcome = await self.generate(provider, template)
        contract = outcome.contract
        return BulkItemResult(
            id=provider.id,
            success=contract.status is not ContractStatus.FAILED,
            error=contract.error or None,
            status=contract.status,
            file_name=contract.file_name,
            permanent_url=contract.permanent_url,
        )

    async def _run_batches(
        self,
        items: Sequence[_Item],
        run: Callable[[_Item], Awaitable[BulkItemResult]],
        item_id: Callable[[_Item], str],
        on_progress: ProgressCallback | None,
    ) -> list[BulkItemResult]:
        """Settle ``items`` in fixed-size batches, one result per item.

        Batch N+1 starts only after every item of batch N has settled.  An
        exception raised for one item becomes a failed result for that item.
        """
        total = len(items)
        results: list[BulkItemResult] = []
        try:
            for start in range(0, total, self.batch_size):
                batch = items[start:start + self.batch_size]
                settled = await asyncio.gather(*(run(item) for item in batch), return_exceptions=True)
                for item, outcome in zip(batch, settled):
                    if isinstance(outcome, BaseException):
                        if not isinstance(outcome, Exception):
                            raise outcome
                        logger.error("Bulk item %s raised: %s", item_id(item), outcome)
                        outcome = BulkItemResult(
                            id=item_id(item), success=False, error=str(outcome) or type(outcome).__name__
                        )
                    results.append(outcome)

                self.progress = BulkProgress(completed=len(results), total=total)
                if on_progress is not None:
                    on_progress(self.progress)
                if start + self.batch_size < total:
                    await asyncio.sleep(self.batch_delay)
        finally:
            self.progress = None
        return results

    async def generate_bulk(
        self,
        items: Sequence[tuple[Provider, Template | None]],
        *,
        on_progress: ProgressCallback | None = None,
        notify: str | None = None,
    ) -> BulkResult:
        """Generate in fixed-size batches; one item's failure never stops the rest.

        Batch N+1 starts only after every item of batch N has settled.
        Always returns a ``BulkResult`` with one entry per item.
        """
        results = await self._run_batches(
            items,
            lambda item: self._bulk_item(*item),
            lambda item: item[0].id,
            on_progress,
        )
        result = BulkResult.from_items(results)
        logger.info(
            "Bulk generation finished: %d processed, %d successful, %d failed",
            result.total_processed, result.successful, result.failed,
        )
        await self.audit.record(
            AuditAction.BULK_CONTRACT_GENERATION,
            severity=AuditSeverity.MEDIUM,
            resource_type=RESOURCE_TYPE,
            resource_id="bulk",
            metadata={
                "totalProcessed": result.total_processed,
                "successful": result.successful,
                "failed": result.failed,
                "providerIds": [r.id for r in results],
            },
        )
        if notify and self.notifier is not None:
            try:
                await self.notifier.notify(notify, result)
            except Exception:
                logger.exception("Could not send bulk summary to %s", notify)
        return result

    async def generate_for_providers(
        self,
        providers: Sequence[Provider],
        *,
        on_progress: ProgressCallback | None = None,
        notify: str | None = None,
    ) -> BulkResult:
        """Bulk-generate using each provider's resolved template."""
        if self.tracker is None:
            raise RuntimeError("generate_for_providers requires an AssignmentTracker")
        items = [(provider, self.tracker.resolve(provider)) for provider in providers]
        return await self.generate_bulk(items, on_progress=on_progress, notify=notify)

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    async def _clear_item(self, record: GeneratedContract, cleared_at: str) -> BulkItemResult:
        await asyncio.to_thread(self.log.clear, record.record_id, cleared_at)
        return BulkItemResult(id=record.record_id, success=True, status=record.status)

    async def clear_generated(
        self,
        records: Sequence[GeneratedContract],
        *,
        on_progress: ProgressCallback | None = None,
    ) -> BulkResult:
        """Clear generation records so their pairs read as not generated.

        Runs in the same batches as generation, and a record that cannot be
        cleared fails alone.  Stored artifacts are never touched.
        """
        if self.log is None:
            raise RuntimeError("clear_generated requires a GenerationLog")
        cleared_at = iso_timestamp(self._clock())
        results = await self._run_batches(
            records,
            lambda record: self._clear_item(record, cleared_at),
            lambda record: record.record_id,
            on_progress,
        )
        result = BulkResult.from_items(results)
        logger.info(
            "Cleared %d of %d generation records (%d failed)",
            result.successful, result.total_processed, result.failed,
        )
        await self.audit.record(
            AuditAction.BULK_CONTRACT_CLEAR,
            severity=AuditSeverity.HIGH,
            resource_type=RESOURCE_TYPE,
            resource_id="bulk",
            metadata={
                "totalProcessed": result.total_processed,
                "cleared": result.successful,
                "failed": result.failed,
                "providerIds": sorted({r.provider_id for r in records}),
            },
        )
        return result

    async def clear_for_providers(
        self,
        provider_ids: Sequence[str] | None = None,
        *,
        on_progress: ProgressCallback | None = None,
    ) -> BulkResult:
        """Clear every live record, or only those of ``provider_ids``."""
        if self.log is None:
            raise RuntimeError("clear_for_providers requires a GenerationLog")
        records = await asyncio.to_thread(self.log.live_records, provider_ids)
        return await self.clear_generated(records, on_progress=on_progress)

    # ------------------------------------------------------------------
    # Download
    # ------------------------------------------------------------------

    async def download_url(
        self,
        provider: Provider,
        template_id: str,
        *,
        template: Template | None = None,
    ) -> RetrievalResult:
        """Signed URL of the latest downloadable generation for the pair.

        Raises
        ------
        ContractNotGeneratedError
            No SUCCESS or PARTIAL_SUCCESS generation is on record.
        StorageNotFoundError, StorageReadError
            From the retriever, when no tier can serve the artifact.
        """
        record = None
        if self.log is not None:
            record = await asyncio.to_thread(
                self.log.find_latest, provider.id, template_id, DOWNLOADABLE_STATUSES
            )
        if record is None:
            raise ContractNotGeneratedError(
                f"No contract has been generated for provider {provider.id} and "
                f"template {template_id}; please regenerate it."
            )

        if template is None and self.tracker is not None:
            template = next((t for t in self.tracker.templates if t.id == template_id), None)
        contract_year = (template.contract_year if template else "") or record.contract_year

        locator = ContractLocator.derive(
            provider_id=record.provider_id,
            template_id=record.template_id,
            contract_year=contract_year,
            provider_name=provider.name,
            generated_at=record.generated_at,
        )
        if record.file_name and record.file_name != locator.file_name:
            logger.warning(
                "Derived file name %s differs from recorded %s; using the recorded name",
                locator.file_name, record.file_name,
            )
            locator = locator.model_copy(update={"file_name": record.file_name})
        return await self.retriever.resolve(locator)
