"""Document pretranslation: exact TM matches first, then AI for the rest.

A run walks the document once. Segments with a 100% translation memory
match get that translation directly; the others are queued and sent to
the translation provider in batches (or one by one through the critic
loop). Writes are buffered and committed in small batches, and every
commit is followed by a cancellation checkpoint, so a cancelled job keeps
exactly the work it reported.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog

from tm_pretranslator.config import PretranslateConfig, get_config
from tm_pretranslator.exceptions import (
    CancellationSignal,
    PersistenceError,
    ProviderError,
    ValidationError,
)
from tm_pretranslator.glossary.rag_filter import GlossaryRagFilter
from tm_pretranslator.log import bind_document, unbind_document
from tm_pretranslator.models import (
    Document,
    GlossaryMode,
    MatchCandidate,
    PretranslateOptions,
    PretranslateSummary,
    ResultMethod,
    SearchMode,
    Segment,
    SegmentResult,
    SegmentStatus,
)
from tm_pretranslator.retrieval.fuzzy import rank_key
from tm_pretranslator.retrieval.hybrid import HybridRanker, SearchOptions
from tm_pretranslator.services.jobs import JobRegistry
from tm_pretranslator.storage.base import SegmentStore
from tm_pretranslator.translator.prompts import BatchContext, BatchItem
from tm_pretranslator.translator.provider import TranslationProvider

logger = structlog.get_logger()

# Confidence of a segment that fell back to its own source text
FALLBACK_CONFIDENCE = 0.35


class OrchestratorState(str, Enum):
    """Lifecycle of one pretranslation run."""

    INIT = "init"
    SCANNING = "scanning"
    AI_QUEUED = "ai_queued"
    AI_PROCESSING = "ai_processing"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclass
class QueuedSegment:
    """A segment waiting for AI translation, with its neighbours."""

    segment: Segment
    previous_text: Optional[str] = None
    next_text: Optional[str] = None

    def to_item(self) -> BatchItem:
        return BatchItem(
            segment_id=self.segment.id,
            source_text=self.segment.source_text,
            previous_text=self.previous_text,
            next_text=self.next_text,
        )


@dataclass
class _PendingWrite:
    segment: Segment
    result: SegmentResult


@dataclass
class _RunCounters:
    tm_applied: int = 0
    ai_applied: int = 0
    queued: list[QueuedSegment] = field(default_factory=list)


def is_eligible(segment: Segment, options: PretranslateOptions) -> bool:
    """Whether a segment may be (re)translated under the rewrite flags."""
    if not segment.source_text.strip():
        return False
    if segment.status == SegmentStatus.CONFIRMED:
        return options.rewrite_confirmed
    if segment.is_empty:
        return True
    return options.rewrite_non_confirmed


def needs_ai(options: PretranslateOptions) -> bool:
    """Whether a segment without an exact TM match goes to the AI.

    The exact lookup only returns 100% matches, so a segment that missed it
    has no usable match: either flag queues it.
    """
    return options.apply_ai_to_low_matches or options.apply_ai_to_empty_only


class PretranslationOrchestrator:
    """Runs pretranslation for one document at a time.

    ``state`` reflects the current phase of the active run.
    """

    def __init__(
        self,
        segments: SegmentStore,
        ranker: HybridRanker,
        glossary_filter: GlossaryRagFilter,
        provider: TranslationProvider,
        registry: JobRegistry,
        config: Optional[PretranslateConfig] = None,
    ):
        self.segments = segments
        self.ranker = ranker
        self.glossary_filter = glossary_filter
        self.provider = provider
        self.registry = registry
        self.config = config or get_config().pretranslate
        self.state = OrchestratorState.INIT

        self._document_id = ""
        self._buffer: list[_PendingWrite] = []
        self._counters = _RunCounters()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self, document_id: str, options: Optional[PretranslateOptions] = None
    ) -> PretranslateSummary:
        """Pretranslate a document.

        Args:
            document_id: Document to process
            options: Caller flags; defaults apply AI to every non-exact segment

        Returns:
            Counters of committed work; ``cancelled`` is set when the job
            was cancelled

        Raises:
            ValidationError: Unknown document (no job is created)
            PersistenceError: A commit failed (the job is marked as error)
        """
        options = options or PretranslateOptions()
        self.state = OrchestratorState.INIT
        self._document_id = document_id
        self._buffer = []
        self._counters = _RunCounters()

        document = self.segments.get_document(document_id)
        if document is None:
            raise ValidationError(f"Document not found: {document_id}")

        all_segments = self.segments.list_segments(document_id)
        eligible = [s for s in all_segments if is_eligible(s, options)]

        bind_document(document_id)
        self.registry.create(document_id, len(eligible))
        logger.info(
            "pretranslate_started",
            segments=len(all_segments),
            eligible=len(eligible),
            use_critic=options.use_critic,
            glossary_mode=options.glossary_mode.value,
        )

        try:
            if eligible:
                self.state = OrchestratorState.SCANNING
                await self._scan(document, all_segments, eligible, options)
                self._flush()
                self._checkpoint()

                queued = self._counters.queued
                if queued:
                    self.state = OrchestratorState.AI_QUEUED
                    self.registry.update(
                        document_id, current_message=f"Queued {len(queued)} segments for AI"
                    )
                    logger.info("ai_queued", segments=len(queued))

                    self.state = OrchestratorState.AI_PROCESSING
                    if options.use_critic:
                        await self._process_with_critic(document, queued, options)
                    else:
                        await self._process_batches(document, queued, options)

            self.state = OrchestratorState.FINALIZING
            self._flush()
            self._checkpoint()
            self.registry.complete(document_id)
            self.state = OrchestratorState.COMPLETED
            logger.info(
                "pretranslate_completed",
                tm_applied=self._counters.tm_applied,
                ai_applied=self._counters.ai_applied,
            )
            return self._summary(cancelled=False)

        except CancellationSignal:
            self.state = OrchestratorState.CANCELLED
            self.registry.update(
                document_id,
                current_message=f"Cancelled: {self._committed()} segments saved",
            )
            logger.info("pretranslate_cancelled", committed=self._committed())
            return self._summary(cancelled=True)

        except asyncio.CancelledError:
            self.state = OrchestratorState.CANCELLED
            self._flush_best_effort()
            self.registry.cancel(document_id)
            raise

        except Exception as e:
            self.state = OrchestratorState.ERROR
            self._flush_best_effort()
            self.registry.set_error(document_id, str(e))
            logger.error("pretranslate_failed", error=str(e), error_type=type(e).__name__)
            raise

        finally:
            unbind_document()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def _scan(
        self,
        document: Document,
        all_segments: list[Segment],
        eligible: list[Segment],
        options: PretranslateOptions,
    ) -> None:
        position = {s.id: i for i, s in enumerate(all_segments)}
        total = len(eligible)

        for i, segment in enumerate(eligible):
            if i == 0 or i == total - 1 or (i + 1) % self.config.progress_every == 0:
                self.registry.update(
                    self._document_id,
                    current_segment=i + 1,
                    current_message=f"Scanning segment {i + 1}/{total}",
                )
            self._checkpoint()

            exact = await self.ranker.find_exact(
                segment.source_text,
                document.source_locale,
                document.target_locale,
                document.project_id,
            )
            if exact is not None:
                self._apply_exact(segment, exact)
                if len(self._buffer) >= self.config.save_batch_size:
                    self._flush()
                    self._checkpoint()
                continue

            if needs_ai(options):
                index = position[segment.id]
                self._counters.queued.append(
                    QueuedSegment(
                        segment=segment,
                        previous_text=all_segments[index - 1].source_text if index > 0 else None,
                        next_text=(
                            all_segments[index + 1].source_text
                            if index + 1 < len(all_segments)
                            else None
                        ),
                    )
                )

        self.registry.update(self._document_id, current_segment=total)

    def _apply_exact(self, segment: Segment, match: MatchCandidate) -> None:
        updated = segment.model_copy(
            update={
                "target_mt": match.target_text,
                "target_final": match.target_text,
                "fuzzy_score": 100,
                "best_match_ref": match.id,
                "status": SegmentStatus.MT,
                "confidence": 1.0,
            }
        )
        self._buffer.append(
            _PendingWrite(
                segment=updated,
                result=SegmentResult(
                    segment_id=segment.id,
                    method=ResultMethod.TM,
                    target_mt=match.target_text,
                    fuzzy_score=100,
                ),
            )
        )
        logger.debug("tm_exact_match", segment_id=segment.id, match_id=match.id)

    # ------------------------------------------------------------------
    # AI processing
    # ------------------------------------------------------------------

    async def _process_batches(
        self, document: Document, queued: list[QueuedSegment], options: PretranslateOptions
    ) -> None:
        size = self.config.ai_batch_size
        total = len(queued)
        for start in range(0, total, size):
            batch = queued[start : start + size]
            self.registry.update(
                self._document_id,
                current_message=f"AI translating segments {start + 1}-{start + len(batch)} of {total}",
            )
            context = await self._build_context(document, batch, options)
            items = [q.to_item() for q in batch]

            try:
                result = await self.provider.translate_batch(items, context)
                translations = result.translations
                confidence = result.confidence or self.config.default_confidence
            except (ProviderError, ValueError) as e:
                logger.warning("ai_batch_failed", segments=len(batch), error=str(e))
                translations = {}
                confidence = FALLBACK_CONFIDENCE

            for queued_segment in batch:
                source = queued_segment.segment.source_text
                target = translations.get(queued_segment.segment.id) or source
                self._apply_ai(queued_segment.segment, target, confidence)

            self._flush()
            self._checkpoint()

    async def _process_with_critic(
        self, document: Document, queued: list[QueuedSegment], options: PretranslateOptions
    ) -> None:
        total = len(queued)
        for i, queued_segment in enumerate(queued):
            self.registry.update(
                self._document_id,
                current_message=f"AI reviewing segment {i + 1}/{total}",
            )
            context = await self._build_context(document, [queued_segment], options)
            segment = queued_segment.segment
            try:
                result = await self.provider.translate_with_critic(queued_segment.to_item(), context)
                target, confidence = result.target_text or segment.source_text, result.confidence
            except (ProviderError, ValueError) as e:
                logger.warning("ai_segment_failed", segment_id=segment.id, error=str(e))
                target, confidence = segment.source_text, FALLBACK_CONFIDENCE

            self._apply_ai(segment, target, confidence)
            self._flush()
            self._checkpoint()

    def _apply_ai(self, segment: Segment, target: str, confidence: float) -> None:
        updated = segment.model_copy(
            update={
                "target_mt": target,
                "status": SegmentStatus.MT,
                "confidence": confidence,
                "fuzzy_score": None,
                "best_match_ref": None,
            }
        )
        self._buffer.append(
            _PendingWrite(
                segment=updated,
                result=SegmentResult(segment_id=segment.id, method=ResultMethod.AI, target_mt=target),
            )
        )

    async def _build_context(
        self, document: Document, batch: list[QueuedSegment], options: PretranslateOptions
    ) -> BatchContext:
        """Gather TM examples and glossary hits for a batch."""
        example_lists = await asyncio.gather(
            *(self._tm_examples(document, q.segment.source_text) for q in batch)
        )
        examples: dict[str, MatchCandidate] = {}
        for candidates in example_lists:
            for candidate in candidates:
                current = examples.get(candidate.id)
                if current is None or candidate.score > current.score:
                    examples[candidate.id] = candidate

        glossary = []
        if options.glossary_mode != GlossaryMode.OFF:
            glossary = await self.glossary_filter.find_relevant_terms(
                "\n".join(q.segment.source_text for q in batch),
                document.source_locale,
                document.target_locale,
                project_id=document.project_id,
                context=document.context,
            )

        return BatchContext(
            source_locale=document.source_locale,
            target_locale=document.target_locale,
            document_name=document.name or None,
            project_domain=document.project_domain,
            project_client=document.project_client,
            guidelines=document.guidelines,
            glossary=glossary,
            glossary_mode=options.glossary_mode,
            tm_examples=sorted(examples.values(), key=rank_key),
            model=options.model,
            temperature=options.temperature,
        )

    async def _tm_examples(self, document: Document, text: str) -> list[MatchCandidate]:
        return await self.ranker.search(
            text,
            SearchOptions(
                source_locale=document.source_locale,
                target_locale=document.target_locale,
                project_id=document.project_id,
                limit=self.config.tm_examples_per_segment,
                min_score=self.config.tm_examples_min_score,
                mode=SearchMode.EXTENDED,
            ),
        )

    # ------------------------------------------------------------------
    # Commits and checkpoints
    # ------------------------------------------------------------------

    def _flush(self) -> None:
        """Commit buffered writes, then count them.

        Raises:
            PersistenceError: The store rejected the batch; nothing is counted
        """
        if not self._buffer:
            return
        pending, self._buffer = self._buffer, []
        try:
            self.segments.save_segments([p.segment for p in pending])
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to save segments: {e}") from e

        for write in pending:
            if write.result.method == ResultMethod.TM:
                self._counters.tm_applied += 1
            else:
                self._counters.ai_applied += 1
            self.registry.append_result(self._document_id, write.result)
        self.registry.update(
            self._document_id,
            tm_applied=self._counters.tm_applied,
            ai_applied=self._counters.ai_applied,
        )
        logger.debug("segments_committed", count=len(pending), total=self._committed())

    def _flush_best_effort(self) -> None:
        try:
            self._flush()
        except PersistenceError as e:
            logger.error("pretranslate_flush_failed", error=str(e))

    def _checkpoint(self) -> None:
        """Flush and stop the run if the job was cancelled."""
        if self.registry.is_cancelled(self._document_id):
            self._flush()
            raise CancellationSignal(f"Pretranslation cancelled: {self._document_id}")

    def _committed(self) -> int:
        return self._counters.tm_applied + self._counters.ai_applied

    def _summary(self, cancelled: bool) -> PretranslateSummary:
        return PretranslateSummary(
            tm_applied=self._counters.tm_applied,
            ai_applied=self._counters.ai_applied,
            total_processed=self._committed(),
            cancelled=cancelled,
        )
