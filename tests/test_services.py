"""Tests for the pretranslation, segment, glossary and embedding services."""

import asyncio

import pytest

from conftest import FakeEmbeddingBackend, FakeProvider, add_document, add_unit, word_vector
from tm_pretranslator.config import GlossaryConfig, RetrievalConfig
from tm_pretranslator.exceptions import (
    JobNotFoundError,
    ProviderError,
    RetrievalDegradation,
    TransientProviderError,
    ValidationError,
)
from tm_pretranslator.glossary.rag_filter import GlossaryRagFilter
from tm_pretranslator.models import (
    GlossaryTerm,
    JobStatus,
    PretranslateOptions,
    SearchMode,
    SegmentStatus,
)
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.hybrid import HybridRanker, SearchOptions
from tm_pretranslator.services.embedding_service import backfill_embeddings
from tm_pretranslator.services.events import EventBus
from tm_pretranslator.services.glossary_service import GlossaryService, is_untranslated
from tm_pretranslator.services.pretranslate_service import PretranslationService
from tm_pretranslator.services.segment_service import SegmentService
from tm_pretranslator.translator.retry import RetryPolicy


class SlowProvider(FakeProvider):
    """Provider that blocks until released."""

    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def translate_batch(self, items, context):
        await self.release.wait()
        return await super().translate_batch(items, context)


def _service(store, provider=None, event_bus=None) -> PretranslationService:
    return PretranslationService(
        store=store,
        ranker=HybridRanker(store, None, RetrievalConfig()),
        glossary_filter=GlossaryRagFilter(store, None, GlossaryConfig()),
        provider=provider or FakeProvider(),
        event_bus=event_bus,
    )


class TestPretranslationService:
    """Tests for PretranslationService."""

    @pytest.mark.asyncio
    async def test_start_and_wait(self, store):
        document, _ = add_document(store, ["Open the valve", "Close the valve"])
        add_unit(store, "Open the valve", "Открыть клапан")
        service = _service(store)

        job = await service.start(document.id)
        assert job.status == JobStatus.RUNNING
        assert job.total_segments == 2

        summary = await service.wait(document.id)
        assert (summary.tm_applied, summary.ai_applied) == (1, 1)

        progress = service.get_progress(document.id)
        assert progress.status == JobStatus.COMPLETED
        assert progress.progress_percentage == 100
        assert service.active_jobs() == []

    @pytest.mark.asyncio
    async def test_events_are_published(self, store):
        document, _ = add_document(store, ["Open the valve"])
        bus = EventBus()
        received = []
        bus.subscribe(received.append, event_type="job_completed")
        service = _service(store, event_bus=bus)

        await service.start(document.id)
        await service.wait(document.id)

        assert [e.document_id for e in received] == [document.id]

    @pytest.mark.asyncio
    async def test_unknown_document(self, store):
        service = _service(store)
        with pytest.raises(ValidationError):
            await service.start("missing")
        with pytest.raises(JobNotFoundError):
            service.get_progress("missing")
        with pytest.raises(JobNotFoundError):
            service.cancel("missing")
        with pytest.raises(JobNotFoundError):
            await service.wait("missing")

    @pytest.mark.asyncio
    async def test_second_start_while_running_is_rejected(self, store):
        document, _ = add_document(store, ["Open the valve"])
        provider = SlowProvider()
        service = _service(store, provider)

        await service.start(document.id)
        with pytest.raises(ValidationError):
            await service.start(document.id)

        provider.release.set()
        await service.wait(document.id)

    @pytest.mark.asyncio
    async def test_cancel_running_job(self, store):
        document, _ = add_document(store, [f"Sentence {i} about pumps" for i in range(3)])
        provider = SlowProvider()
        service = _service(store, provider)

        await service.start(document.id)
        assert [j.document_id for j in service.active_jobs()] == [document.id]

        response = service.cancel(document.id)
        assert response == {
            "document_id": document.id,
            "cancelled": True,
            "status": "cancelled",
            "message": "Cancellation requested",
        }

        provider.release.set()
        summary = await service.wait(document.id)

        assert summary.cancelled is True
        job = service.get_progress(document.id)
        assert job.status == JobStatus.CANCELLED
        # The in-flight batch was committed before the checkpoint stopped the run
        assert job.total_processed == summary.total_processed

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, store):
        document, _ = add_document(store, ["Open the valve"])
        service = _service(store)
        await service.start(document.id)
        await service.wait(document.id)

        response = service.cancel(document.id)

        assert response["cancelled"] is False
        assert response["status"] == "completed"

    @pytest.mark.asyncio
    async def test_failed_run_surfaces_through_wait(self, store):
        document, _ = add_document(store, ["Open the valve"])
        service = _service(store, FakeProvider(error=RuntimeError("bug")))

        await service.start(document.id)
        with pytest.raises(RuntimeError):
            await service.wait(document.id)
        assert service.get_progress(document.id).status == JobStatus.ERROR

    @pytest.mark.asyncio
    async def test_task_cancellation_marks_job_cancelled(self, store):
        document, _ = add_document(store, ["Open the valve"])
        service = _service(store, SlowProvider())

        await service.start(document.id)
        service._tasks[document.id].cancel()
        with pytest.raises(asyncio.CancelledError):
            await service.wait(document.id)

        assert service.get_progress(document.id).status == JobStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_options_are_forwarded(self, store):
        document, _ = add_document(store, ["Open the valve"])
        provider = FakeProvider()
        service = _service(store, provider)

        await service.start(document.id, PretranslateOptions(use_critic=True, model="gpt-x"))
        await service.wait(document.id)

        assert provider.contexts[0].model == "gpt-x"


class TestSegmentService:
    """Tests for SegmentService.confirm."""

    @pytest.mark.asyncio
    async def test_confirm_updates_segment_and_tm(self, store, embedder, embedding_backend):
        document, segments = add_document(store, ["Open the valve"])
        service = SegmentService(store, embedder=embedder)

        confirmed = await service.confirm(segments[0].id, "Открыть клапан")

        assert confirmed.status == SegmentStatus.CONFIRMED
        assert store.get_segment(segments[0].id).target_final == "Открыть клапан"

        units = store.list_units("en-US", "ru-RU", "p1")
        assert len(units) == 1
        assert units[0].target_text == "Открыть клапан"
        assert units[0].project_id == "p1"
        assert units[0].embedding is not None
        assert embedding_backend.calls == [["open the valve"]]

    @pytest.mark.asyncio
    async def test_confirm_twice_updates_same_unit(self, store):
        _, segments = add_document(store, ["Open the valve"])
        service = SegmentService(store)

        await service.confirm(segments[0].id, "Открыть клапан")
        await service.confirm(segments[0].id, "Открыть вентиль")

        units = store.list_units("en-US", "ru-RU", "p1")
        assert [u.target_text for u in units] == ["Открыть вентиль"]

    @pytest.mark.asyncio
    async def test_confirm_clears_search_cache(self, store):
        _, segments = add_document(store, ["Open the valve"])
        ranker = HybridRanker(store, None, RetrievalConfig())
        options = SearchOptions(
            source_locale="en-US", target_locale="ru-RU", project_id="p1", mode=SearchMode.BASIC
        )
        assert await ranker.search("Open the valve", options) == []

        await SegmentService(store, ranker=ranker).confirm(segments[0].id, "Открыть клапан")

        results = await ranker.search("Open the valve", options)
        assert [r.target_text for r in results] == ["Открыть клапан"]

    @pytest.mark.asyncio
    async def test_embedding_failure_does_not_fail_confirmation(self, store, embedder, embedding_backend):
        _, segments = add_document(store, ["Open the valve"])
        embedding_backend.error = ProviderError("embeddings down")

        confirmed = await SegmentService(store, embedder=embedder).confirm(segments[0].id, "Открыть клапан")

        assert confirmed.status == SegmentStatus.CONFIRMED
        assert store.list_units("en-US", "ru-RU", "p1")[0].embedding is None

    @pytest.mark.asyncio
    async def test_validation(self, store):
        _, segments = add_document(store, ["Open the valve"])
        service = SegmentService(store)

        with pytest.raises(ValidationError):
            await service.confirm("missing", "x")
        with pytest.raises(ValidationError):
            await service.confirm(segments[0].id, "   ")


def _term(source: str, target: str, **fields) -> GlossaryTerm:
    return GlossaryTerm(
        source_term=source, target_term=target, source_locale="en", target_locale="ru", **fields
    )


class FailFirstBackend(FakeEmbeddingBackend):
    """Embedding backend whose first call fails."""

    async def embed(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) == 1:
            raise ProviderError("embeddings down")
        return [word_vector(t, self.dimensions) for t in texts]


class TestGlossaryService:
    """Tests for GlossaryService."""

    @pytest.mark.asyncio
    async def test_add_term_embeds_source_term(self, store, embedder, embedding_backend):
        added = await GlossaryService(store, embedder=embedder).add_term(_term("Substation", "подстанция"))

        assert added.embedding == word_vector("substation")
        assert store.list_terms()[0].embedding == word_vector("substation")
        assert embedding_backend.calls == [["substation"]]

    @pytest.mark.asyncio
    async def test_added_term_is_found_by_vector_recall(self, store, embedder):
        await GlossaryService(store, embedder=embedder).add_term(_term("substation", "подстанция"))
        rag = GlossaryRagFilter(store, embedder, GlossaryConfig(recall_min_similarity=0.9, fallback_limit=0))

        recalled = await rag.recall("Substation", "en", "ru")

        assert [t.source_term for t in recalled] == ["substation"]

    @pytest.mark.asyncio
    async def test_add_term_without_embedder(self, store):
        added = await GlossaryService(store).add_term(_term("pump", "насос"))
        assert added.embedding is None
        assert store.list_terms()[0].id == added.id

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_term(self, store, embedder, embedding_backend):
        embedding_backend.error = ProviderError("embeddings down")

        added = await GlossaryService(store, embedder=embedder).add_term(_term("pump", "насос"))

        assert added.embedding is None
        assert [t.source_term for t in store.list_terms()] == ["pump"]

    def test_untranslated_terms(self):
        assert is_untranslated(_term("pump", "pump"))
        assert is_untranslated(_term("Pump", " pump "))
        assert is_untranslated(_term("pump", "  "))
        assert not is_untranslated(_term("pump", "насос"))

    @pytest.mark.asyncio
    async def test_resolve_untranslated(self, store):
        pump = store.add_term(_term("pump", "pump"))
        valve = store.add_term(_term("valve", ""))
        store.add_term(_term("cable", "кабель"))
        provider = FakeProvider()

        updated = await GlossaryService(store).resolve_untranslated(provider)

        assert {t.id: t.target_term for t in updated} == {pump.id: "AI: pump", valve.id: "AI: valve"}
        assert len(provider.batches) == 1
        assert {item.segment_id for item in provider.batches[0]} == {pump.id, valve.id}
        assert provider.contexts[0].source_locale == "en"
        targets = {t.source_term: t.target_term for t in store.list_terms()}
        assert targets == {"pump": "AI: pump", "valve": "AI: valve", "cable": "кабель"}

    @pytest.mark.asyncio
    async def test_resolve_respects_project_scope(self, store):
        store.add_term(_term("pump", "pump", project_id="p1"))
        store.add_term(_term("valve", "valve", project_id="p2"))

        updated = await GlossaryService(store).resolve_untranslated(FakeProvider(), project_id="p1")

        assert [t.source_term for t in updated] == ["pump"]
        assert store.list_terms("p2")[0].target_term == "valve"

    @pytest.mark.asyncio
    async def test_reply_repeating_source_is_not_saved(self, store):
        store.add_term(_term("pump", "pump"))

        updated = await GlossaryService(store).resolve_untranslated(FakeProvider(prefix=""))

        assert updated == []
        assert store.list_terms()[0].target_term == "pump"

    @pytest.mark.asyncio
    async def test_provider_failure_keeps_terms(self, store):
        store.add_term(_term("pump", "pump"))
        provider = FakeProvider(error=TransientProviderError("503"))

        assert await GlossaryService(store).resolve_untranslated(provider) == []
        assert store.list_terms()[0].target_term == "pump"

    @pytest.mark.asyncio
    async def test_same_language_terms_are_left_alone(self, store):
        store.add_term(GlossaryTerm(source_term="API", target_term="API", source_locale="en", target_locale="en"))
        provider = FakeProvider()

        assert await GlossaryService(store).resolve_untranslated(provider) == []
        assert provider.batches == []


class TestBackfillEmbeddings:
    """Tests for backfill_embeddings."""

    @pytest.mark.asyncio
    async def test_embeds_units_and_terms_missing_vectors(self, store, embedder, embedding_backend):
        add_unit(store, "Open the valve", "Открыть клапан")
        add_unit(store, "Close the valve", "Закрыть клапан", embedding=word_vector("close the valve"))
        store.add_term(_term("valve", "клапан"))

        report = await backfill_embeddings(store, embedder)

        assert (report.units_embedded, report.terms_embedded, report.failed) == (1, 1, 0)
        assert all(u.embedding is not None for u in store.list_all_units())
        assert store.list_all_terms()[0].embedding == word_vector("valve")
        assert embedding_backend.calls == [["open the valve"], ["valve"]]

    @pytest.mark.asyncio
    async def test_failed_batch_is_counted_and_run_continues(self, store, app_config):
        for i in range(3):
            add_unit(store, f"Check pump {i}", f"Проверить насос {i}")
        backend = FailFirstBackend()
        embedder = EmbeddingGenerator(
            app_config.embedding,
            backend=backend,
            retry_policy=RetryPolicy(max_attempts=1, timeout_seconds=None),
        )

        report = await backfill_embeddings(store, embedder, batch_size=1)

        assert (report.units_embedded, report.units_failed) == (2, 1)
        assert len(backend.calls) == 3
        assert sum(u.embedding is None for u in store.list_all_units()) == 1

    @pytest.mark.asyncio
    async def test_wrong_sized_vectors_are_replaced(self, store, embedder):
        unit = add_unit(store, "Open the valve", "Открыть клапан", embedding=[1.0, 0.0])

        report = await backfill_embeddings(store, embedder)

        assert report.units_embedded == 1
        assert store.get_unit(unit.id).embedding == word_vector("open the valve")

    @pytest.mark.asyncio
    async def test_force_reembeds_everything(self, store, embedder):
        add_unit(store, "Open the valve", "Открыть клапан", embedding=word_vector("open the valve"))

        assert (await backfill_embeddings(store, embedder)).units_embedded == 0
        assert (await backfill_embeddings(store, embedder, force=True)).units_embedded == 1

    @pytest.mark.asyncio
    async def test_requires_embedding_backend(self, store, app_config):
        add_unit(store, "Open the valve", "Открыть клапан")
        with pytest.raises(RetrievalDegradation):
            await backfill_embeddings(store, EmbeddingGenerator(app_config.embedding))
