"""Tests for the generation orchestrator."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from contractforge.core.artifact_store import ImmutableContractStore
from contractforge.core.keys import ContractLocator
from contractforge.core.orchestrator import GenerationOrchestrator
from contractforge.core.retrieval import ContractRetriever
from contractforge.errors import ContractNotGeneratedError, StorageWriteError
from contractforge.models.audit import AuditAction
from contractforge.models.contracts import ContractStatus
from contractforge.models.stages import GenerationStage
from contractforge.models.templates import Provider, Template


class UnreachableStore(ImmutableContractStore):
    async def store(self, *args, **kwargs):
        raise StorageWriteError("bucket unreachable")


class UnreachableTier:
    name = "immutable"

    async def locate(self, locator: ContractLocator) -> str:
        raise ConnectionError("primary unreachable")


class FixedUrlTier:
    name = "secondary"

    def __init__(self, url: str) -> None:
        self.url = url

    async def locate(self, locator: ContractLocator) -> str:
        return self.url


def ticking_clock():
    moments = iter(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) + timedelta(seconds=n) for n in range(1000))
    return lambda: next(moments)


class TestGenerate:
    @pytest.mark.asyncio
    async def test_success_walks_every_stage(self, orchestrator, provider, template):
        outcome = await orchestrator.generate(provider, template)

        assert outcome.status == ContractStatus.SUCCESS
        assert outcome.merged_markup == "Hello Dr. Smith"
        assert outcome.contract.contract_id == "p1-t1-2024"
        assert outcome.contract.generated_at == "2024-05-01T12:00:00.123Z"
        assert outcome.contract.file_name == "2024_dr__smith_20240501.docx"
        assert [t.to_stage for t in outcome.transitions] == [
            GenerationStage.MERGE,
            GenerationStage.PACKAGE,
            GenerationStage.LOCAL_SAVE,
            GenerationStage.REMOTE_STORE,
            GenerationStage.SUCCESS,
        ]
        assert outcome.stored.artifact_key.startswith("contracts/immutable/p1-t1-2024/2024-05-01T12:00:00.123Z/")

    @pytest.mark.asyncio
    async def test_records_to_log(self, orchestrator, generation_log, provider, template):
        outcome = await orchestrator.generate(provider, template)
        latest = generation_log.find_latest("p1", "t1")
        assert latest.record_id == outcome.contract.record_id
        assert latest.file_hash == outcome.stored.file_hash

    @pytest.mark.asyncio
    async def test_single_audit_event(self, orchestrator, audit_sink, provider, template):
        await orchestrator.generate(provider, template)
        assert [e.action for e in audit_sink.events] == [AuditAction.CONTRACT_GENERATED.value]
        assert audit_sink.events[0].resource_id == "p1-t1-2024"

    @pytest.mark.asyncio
    async def test_cancelled_local_save_still_stores(self, orchestrator, provider, template):
        async def cancelled(file_name, data):
            return None

        outcome = await orchestrator.generate(provider, template, local_saver=cancelled)
        assert outcome.status == ContractStatus.SUCCESS
        assert any("cancelled" in w for w in outcome.warnings)
        assert outcome.stored is not None

    @pytest.mark.asyncio
    async def test_local_save_path_reported(self, orchestrator, provider, template, tmp_dir):
        async def save(file_name, data):
            path = tmp_dir / file_name
            path.write_bytes(data)
            return str(path)

        outcome = await orchestrator.generate(provider, template, local_saver=save)
        assert outcome.local_path.endswith("2024_dr__smith_20240501.docx")

    @pytest.mark.asyncio
    async def test_store_failure_is_partial_success(
        self, object_store, fast_retry, generation_log, text_packager, mapping, provider, template
    ):
        orchestrator = GenerationOrchestrator(
            UnreachableStore(object_store, retry=fast_retry),
            packager=text_packager,
            log=generation_log,
            mappings={"t1": mapping},
        )
        outcome = await orchestrator.generate(provider, template)
        assert outcome.status == ContractStatus.PARTIAL_SUCCESS
        assert outcome.stage == GenerationStage.PARTIAL_SUCCESS
        assert outcome.remedy == "retry"
        assert "bucket unreachable" in outcome.contract.error
        assert generation_log.find_latest("p1", "t1").status == ContractStatus.PARTIAL_SUCCESS

    @pytest.mark.asyncio
    async def test_missing_name_fails_in_merge(self, orchestrator, audit_sink, template):
        outcome = await orchestrator.generate(Provider(id="p2"), template)
        assert outcome.status == ContractStatus.FAILED
        assert outcome.transitions[-1].from_stage == GenerationStage.MERGE
        assert outcome.remedy == "fix_data"
        assert [e.action for e in audit_sink.events] == [AuditAction.CONTRACT_GENERATION_FAILED.value]

    @pytest.mark.asyncio
    async def test_empty_template_fails(self, orchestrator, provider):
        outcome = await orchestrator.generate(provider, Template(id="t2", name="Empty", contract_year="2024"))
        assert outcome.status == ContractStatus.FAILED
        assert "no content" in outcome.contract.error

    @pytest.mark.asyncio
    async def test_regeneration_keeps_previous_version(self, contract_store, generation_log, text_packager, mapping, provider, template):
        orchestrator = GenerationOrchestrator(
            contract_store, packager=text_packager, log=generation_log,
            mappings={"t1": mapping}, clock=ticking_clock(),
        )
        first = await orchestrator.generate(provider, template)
        second = await orchestrator.generate(provider, template)
        assert first.contract.generated_at != second.contract.generated_at
        assert len(await contract_store.list_versions("p1-t1-2024")) == 2


class TestBulk:
    @pytest.mark.asyncio
    async def test_item_exception_is_isolated(self, contract_store, generation_log, text_packager, mapping, template):
        class Flaky(GenerationOrchestrator):
            async def generate(self, provider, template, mapping=None, *, local_saver=None):
                if provider.id == "p3":
                    raise RuntimeError("worker crashed")
                return await super().generate(provider, template, mapping, local_saver=local_saver)

        orchestrator = Flaky(
            contract_store, packager=text_packager, log=generation_log,
            mappings={"t1": mapping}, batch_size=2, batch_delay=0.0, clock=ticking_clock(),
        )
        providers = [Provider(id=f"p{n}", name=f"Dr. {n}") for n in range(1, 6)]
        progress = []
        result = await orchestrator.generate_bulk(
            [(p, template) for p in providers], on_progress=progress.append
        )

        assert result.total_processed == 5
        assert result.successful == 4
        assert result.failed == 1
        failed = next(r for r in result.results if not r.success)
        assert failed.id == "p3"
        assert "worker crashed" in failed.error
        assert [p.completed for p in progress] == [2, 4, 5]
        assert orchestrator.progress is None

    @pytest.mark.asyncio
    async def test_missing_template_fails_item(self, orchestrator, provider):
        result = await orchestrator.generate_bulk([(provider, None)])
        assert result.failed == 1
        assert "No template assigned" in result.results[0].error

    @pytest.mark.asyncio
    async def test_bulk_audit_summary(self, orchestrator, audit_sink, provider, template):
        await orchestrator.generate_bulk([(provider, template)])
        bulk = audit_sink.by_action(AuditAction.BULK_CONTRACT_GENERATION.value)
        assert len(bulk) == 1
        assert bulk[0].metadata["successful"] == 1


class TestDownload:
    @pytest.mark.asyncio
    async def test_download_after_generation(self, orchestrator, object_store, provider, template):
        outcome = await orchestrator.generate(provider, template)
        result = await orchestrator.download_url(provider, "t1", template=template)
        assert result.tier == "immutable"
        assert result.url == outcome.stored.permanent_url
        assert object_store.verify_url(result.url)

    @pytest.mark.asyncio
    async def test_never_generated(self, orchestrator, provider):
        with pytest.raises(ContractNotGeneratedError):
            await orchestrator.download_url(provider, "t1")

    @pytest.mark.asyncio
    async def test_failed_generation_is_not_downloadable(self, orchestrator, template):
        nameless = Provider(id="p1")
        await orchestrator.generate(nameless, template)
        with pytest.raises(ContractNotGeneratedError):
            await orchestrator.download_url(nameless, "t1")

    @pytest.mark.asyncio
    async def test_falls_back_to_secondary_tier(
        self, contract_store, generation_log, text_packager, mapping, object_store, provider, template
    ):
        generator = GenerationOrchestrator(
            contract_store, packager=text_packager, log=generation_log, mappings={"t1": mapping}
        )
        await generator.generate(provider, template)

        downloader = GenerationOrchestrator(
            contract_store,
            packager=text_packager,
            log=generation_log,
            mappings={"t1": mapping},
            retriever=ContractRetriever(
                [UnreachableTier(), FixedUrlTier("https://s3.example.com/contract.pdf")], object_store
            ),
        )
        result = await downloader.download_url(provider, "t1", template=template)

        assert result.tier == "secondary"
        assert result.url == "https://s3.example.com/contract.pdf"
        assert generation_log.find_latest("p1", "t1").status == ContractStatus.SUCCESS


class TestClear:
    @pytest.mark.asyncio
    async def test_cleared_pair_is_not_downloadable(self, orchestrator, generation_log, provider, template):
        await orchestrator.generate(provider, template)
        result = await orchestrator.clear_for_providers(["p1"])

        assert (result.total_processed, result.successful, result.failed) == (1, 1, 0)
        assert generation_log.find_latest("p1", "t1") is None
        with pytest.raises(ContractNotGeneratedError):
            await orchestrator.download_url(provider, "t1", template=template)

    @pytest.mark.asyncio
    async def test_item_failure_is_isolated(self, orchestrator, generation_log, provider, template):
        outcome = await orchestrator.generate(provider, template)
        unknown = outcome.contract.model_copy(update={"record_id": "missing"})
        updates = []

        result = await orchestrator.clear_generated(
            [unknown, outcome.contract, unknown], on_progress=updates.append
        )

        assert [r.success for r in result.results] == [False, True, False]
        assert "missing" in result.results[0].error
        assert [u.completed for u in updates] == [2, 3]
        assert generation_log.find_latest("p1", "t1") is None

    @pytest.mark.asyncio
    async def test_single_audit_event(self, orchestrator, audit_sink, provider, template):
        await orchestrator.generate(provider, template)
        await orchestrator.clear_for_providers()

        [event] = audit_sink.by_action(AuditAction.BULK_CONTRACT_CLEAR.value)
        assert event.metadata["cleared"] == 1
        assert event.metadata["providerIds"] == ["p1"]

    @pytest.mark.asyncio
    async def test_regenerate_after_clear(
        self, contract_store, generation_log, text_packager, mapping, provider, template
    ):
        orchestrator = GenerationOrchestrator(
            contract_store,
            packager=text_packager,
            log=generation_log,
            mappings={"t1": mapping},
            clock=ticking_clock(),
        )
        await orchestrator.generate(provider, template)
        await orchestrator.clear_for_providers()
        outcome = await orchestrator.generate(provider, template)
        assert outcome.status == ContractStatus.SUCCESS
        assert generation_log.find_latest("p1", "t1").record_id == outcome.contract.record_id

    @pytest.mark.asyncio
    async def test_requires_log(self, contract_store, text_packager):
        bare = GenerationOrchestrator(contract_store, packager=text_packager)
        with pytest.raises(RuntimeError):
            await bare.clear_generated([])
