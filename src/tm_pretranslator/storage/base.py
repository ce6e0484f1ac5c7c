"""Record store interfaces.

The pipeline only talks to these protocols, so any persistence engine can
sit behind them. ``InMemoryStore`` and ``JsonFileStore`` implement all three.
"""

from typing import Optional, Protocol

from tm_pretranslator.models import Document, GlossaryTerm, Segment, TranslationUnit


class TranslationMemoryStore(Protocol):
    """Read/write access to the translation memory corpus."""

    def list_units(
        self,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
    ) -> list[TranslationUnit]:
        """Entries of the project and global scopes, newest first.

        Locales match by language. When no entry matches the pair at all,
        entries of any locale in scope are returned instead.
        """
        ...

    def get_unit(self, unit_id: str) -> Optional[TranslationUnit]:
        ...

    def upsert_unit(
        self,
        source_text: str,
        target_text: str,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
        match_rate: float = 1.0,
    ) -> TranslationUnit:
        """Create an entry, or update the target of an identical source text."""
        ...

    def list_all_units(self) -> list[TranslationUnit]:
        """Every entry regardless of scope or locale pair."""
        ...

    def set_embedding(self, unit_id: str, embedding: Optional[list[float]]) -> None:
        ...


class GlossaryStore(Protocol):
    """Read/write access to glossary terms."""

    def list_terms(self, project_id: Optional[str] = None) -> list[GlossaryTerm]:
        """Terms of the project and global scopes, newest first."""
        ...

    def add_term(self, term: GlossaryTerm) -> GlossaryTerm:
        ...

    def list_all_terms(self) -> list[GlossaryTerm]:
        ...

    def set_term_embedding(self, term_id: str, embedding: Optional[list[float]]) -> None:
        ...

    def update_translation(self, term_id: str, target_term: str) -> Optional[GlossaryTerm]:
        ...


class SegmentStore(Protocol):
    """Documents and their segments."""

    def get_document(self, document_id: str) -> Optional[Document]:
        ...

    def list_segments(self, document_id: str) -> list[Segment]:
        """Segments of a document in index order."""
        ...

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        ...

    def save_segments(self, segments: list[Segment]) -> None:
        """Commit a batch of segment updates atomically.

        Raises:
            PersistenceError: If the batch could not be written
        """
        ...
