"""Pretranslation service: starts jobs in the background and reports on them.

This is the job status API: ``start`` validates and launches a run,
``get_progress`` returns a snapshot, ``cancel`` requests a cooperative
stop and ``wait`` awaits the run's summary.
"""

import asyncio
from typing import Any, Optional

import structlog

from tm_pretranslator.config import AppConfig, get_config
from tm_pretranslator.exceptions import JobNotFoundError, ValidationError
from tm_pretranslator.glossary.rag_filter import GlossaryRagFilter
from tm_pretranslator.models import (
    JobStatus,
    PretranslateOptions,
    PretranslateSummary,
    PretranslationJob,
)
from tm_pretranslator.pipeline.pretranslate import PretranslationOrchestrator
from tm_pretranslator.retrieval.embeddings import EmbeddingGenerator
from tm_pretranslator.retrieval.hybrid import HybridRanker
from tm_pretranslator.services.events import EventBus
from tm_pretranslator.services.jobs import JobRegistry
from tm_pretranslator.storage.memory import InMemoryStore
from tm_pretranslator.translator.provider import OpenAIProvider, TranslationProvider

logger = structlog.get_logger()


class PretranslationService:
    """Manages pretranslation jobs, one per document.

    Each job runs as a background asyncio.Task; progress lives in the
    JobRegistry and is mirrored to the EventBus.
    """

    def __init__(
        self,
        store: InMemoryStore,
        ranker: HybridRanker,
        glossary_filter: GlossaryRagFilter,
        provider: TranslationProvider,
        registry: Optional[JobRegistry] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.store = store
        self.ranker = ranker
        self.glossary_filter = glossary_filter
        self.provider = provider
        self.event_bus = event_bus or EventBus()
        self.registry = registry or JobRegistry(self.event_bus)
        self._tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def from_store(
        cls,
        store: InMemoryStore,
        config: Optional[AppConfig] = None,
        event_bus: Optional[EventBus] = None,
    ) -> "PretranslationService":
        """Wire the default OpenAI-backed components around a store."""
        config = config or get_config()
        embedder = EmbeddingGenerator(config.embedding)
        return cls(
            store=store,
            ranker=HybridRanker(store, embedder, config.retrieval),
            glossary_filter=GlossaryRagFilter(store, embedder, config.glossary),
            provider=OpenAIProvider(task="translate"),
            event_bus=event_bus,
        )

    def _orchestrator(self) -> PretranslationOrchestrator:
        return PretranslationOrchestrator(
            segments=self.store,
            ranker=self.ranker,
            glossary_filter=self.glossary_filter,
            provider=self.provider,
            registry=self.registry,
        )

    async def start(
        self, document_id: str, options: Optional[PretranslateOptions] = None
    ) -> PretranslationJob:
        """Launch pretranslation of a document.

        Returns:
            Snapshot of the freshly created job

        Raises:
            ValidationError: Unknown document, or a job for it is still running
        """
        if self.store.get_document(document_id) is None:
            raise ValidationError(f"Document not found: {document_id}")
        running = self._tasks.get(document_id)
        if running is not None and not running.done():
            raise ValidationError(f"Pretranslation already running: {document_id}")

        orchestrator = self._orchestrator()
        task = asyncio.create_task(orchestrator.run(document_id, options))
        task.add_done_callback(self._on_task_done)
        self._tasks[document_id] = task

        # Let the run create its job before reporting it
        await asyncio.sleep(0)
        job = self.registry.get(document_id)
        if job is None:
            raise JobNotFoundError(f"Pretranslation job not found: {document_id}")
        return job

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("pretranslate_task_failed", error=str(error))

    def get_progress(self, document_id: str) -> PretranslationJob:
        """Current job snapshot.

        Raises:
            JobNotFoundError: No job was started for the document
        """
        job = self.registry.get(document_id)
        if job is None:
            raise JobNotFoundError(f"Pretranslation job not found: {document_id}")
        return job

    def cancel(self, document_id: str) -> dict[str, Any]:
        """Request cancellation; the run stops at its next checkpoint."""
        job = self.get_progress(document_id)
        cancelled = self.registry.cancel(document_id)
        if cancelled:
            message = "Cancellation requested"
        else:
            message = f"Job is not running ({job.status.value})"
        return {
            "document_id": document_id,
            "cancelled": cancelled,
            "status": JobStatus.CANCELLED.value if cancelled else job.status.value,
            "message": message,
        }

    async def wait(self, document_id: str) -> PretranslateSummary:
        """Await a job's run and return its summary.

        Raises:
            JobNotFoundError: No job was started for the document
            Exception: Whatever made the run fail
        """
        task = self._tasks.get(document_id)
        if task is None:
            raise JobNotFoundError(f"Pretranslation job not found: {document_id}")
        return await task

    def active_jobs(self) -> list[PretranslationJob]:
        return self.registry.active_jobs()
