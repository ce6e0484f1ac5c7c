"""Data model for the translation memory, glossary, segments and jobs."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, computed_field


def _new_id() -> str:
    return uuid.uuid4().hex


class SearchMode(str, Enum):
    """TM search mode.

    ``basic`` is fuzzy-only with strict pre-filters and is used for
    directly applicable suggestions. ``extended`` adds vector search and
    relaxes the pre-filters to surface examples for generation context.
    """

    BASIC = "basic"
    EXTENDED = "extended"


class MatchMethod(str, Enum):
    """How a match candidate was found."""

    FUZZY = "fuzzy"
    VECTOR = "vector"
    HYBRID = "hybrid"


class MatchScope(str, Enum):
    PROJECT = "project"
    GLOBAL = "global"


class SegmentStatus(str, Enum):
    """Segment translation status."""

    NEW = "NEW"
    MT = "MT"
    CONFIRMED = "CONFIRMED"


class JobStatus(str, Enum):
    """Pretranslation job status."""

    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"


class ResultMethod(str, Enum):
    """Where a pretranslated segment's text came from."""

    TM = "tm"
    AI = "ai"


class GlossaryMode(str, Enum):
    """Glossary filtering applied when building generation context."""

    OFF = "off"
    STRICT_SOURCE = "strict_source"
    STRICT_SEMANTIC = "strict_semantic"


# ---------------------------------------------------------------------------
# Corpus records
# ---------------------------------------------------------------------------


class TranslationUnit(BaseModel):
    """A source/target pair in the translation memory."""

    id: str = Field(default_factory=_new_id)
    source_text: str
    target_text: str
    source_locale: str
    target_locale: str
    project_id: Optional[str] = Field(default=None, description="None means global scope")
    embedding: Optional[list[float]] = None
    match_rate: float = Field(default=1.0, description="1.0 for human-confirmed entries")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def scope(self) -> MatchScope:
        return MatchScope.GLOBAL if self.project_id is None else MatchScope.PROJECT

    def with_embedding(self, embedding: Optional[list[float]]) -> "TranslationUnit":
        """Return a copy carrying a new embedding."""
        return self.model_copy(update={"embedding": embedding, "updated_at": datetime.now()})


class ContextRules(BaseModel):
    """Where a glossary term may be used."""

    use_only_in: list[str] = Field(default_factory=list)
    exclude_from: list[str] = Field(default_factory=list)
    document_types: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.use_only_in or self.exclude_from or self.document_types or self.requires)


class GlossaryTerm(BaseModel):
    """A terminology entry."""

    id: str = Field(default_factory=_new_id)
    source_term: str
    target_term: str
    source_locale: str
    target_locale: str
    project_id: Optional[str] = None
    forbidden: bool = Field(default=False, description="Translation must NOT be used")
    notes: Optional[str] = None
    context_rules: ContextRules = Field(default_factory=ContextRules)
    embedding: Optional[list[float]] = None
    created_at: datetime = Field(default_factory=datetime.now)


class GlossaryHit(BaseModel):
    """A glossary term confirmed for one piece of source text."""

    term: str
    translation: str
    forbidden: bool = False
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Documents and segments
# ---------------------------------------------------------------------------


class DocumentContext(BaseModel):
    """Inputs for glossary context rules."""

    project_domain: Optional[str] = None
    project_client: Optional[str] = None
    document_type: Optional[str] = None


class Document(BaseModel):
    """A document whose segments get pretranslated."""

    id: str = Field(default_factory=_new_id)
    name: str = ""
    project_id: Optional[str] = None
    source_locale: str
    target_locale: str
    document_type: Optional[str] = None
    project_domain: Optional[str] = None
    project_client: Optional[str] = None
    guidelines: list[str] = Field(default_factory=list, description="Project translation rules")

    @property
    def context(self) -> DocumentContext:
        return DocumentContext(
            project_domain=self.project_domain,
            project_client=self.project_client,
            document_type=self.document_type,
        )


class Segment(BaseModel):
    """A unit of document text to translate."""

    id: str = Field(default_factory=_new_id)
    document_id: str
    index: int
    source_text: str
    target_mt: Optional[str] = None
    target_final: Optional[str] = None
    status: SegmentStatus = SegmentStatus.NEW
    fuzzy_score: Optional[int] = None
    best_match_ref: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        """True when neither a machine nor a confirmed translation exists."""
        return not (self.target_final or "").strip() and not (self.target_mt or "").strip()


class MatchCandidate(BaseModel):
    """A ranked TM suggestion."""

    id: str
    source_text: str
    target_text: str
    score: int = Field(ge=0, le=100)
    method: MatchMethod
    scope: MatchScope = MatchScope.GLOBAL
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_unit(cls, unit: TranslationUnit, score: int, method: MatchMethod) -> "MatchCandidate":
        return cls(
            id=unit.id,
            source_text=unit.source_text,
            target_text=unit.target_text,
            score=score,
            method=method,
            scope=unit.scope,
            created_at=unit.created_at,
        )


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class PretranslateOptions(BaseModel):
    """Caller flags for a pretranslation run."""

    apply_ai_to_low_matches: bool = True
    apply_ai_to_empty_only: bool = False
    rewrite_confirmed: bool = False
    rewrite_non_confirmed: bool = False
    glossary_mode: GlossaryMode = GlossaryMode.STRICT_SOURCE
    use_critic: bool = False
    model: Optional[str] = None
    temperature: Optional[float] = None


class SegmentResult(BaseModel):
    """One entry of a job's ordered result log."""

    segment_id: str
    method: ResultMethod
    target_mt: str
    fuzzy_score: Optional[int] = None


class PretranslationJob(BaseModel):
    """In-memory progress record of a pretranslation run."""

    document_id: str
    status: JobStatus = JobStatus.RUNNING
    current_segment: int = 0
    total_segments: int = 0
    tm_applied: int = 0
    ai_applied: int = 0
    results: list[SegmentResult] = Field(default_factory=list)
    error: Optional[str] = None
    current_message: str = ""
    started_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @computed_field
    @property
    def total_processed(self) -> int:
        return self.tm_applied + self.ai_applied

    @computed_field
    @property
    def progress_percentage(self) -> int:
        if self.status == JobStatus.COMPLETED or self.total_segments == 0:
            return 100
        return min(100, round(100 * self.current_segment / self.total_segments))


class PretranslateSummary(BaseModel):
    """Counters returned when a run finishes."""

    tm_applied: int = 0
    ai_applied: int = 0
    total_processed: int = 0
    cancelled: bool = False
