"""In-process record store."""

import threading
from datetime import datetime
from typing import Iterable, Optional

import structlog

from tm_pretranslator.exceptions import PersistenceError
from tm_pretranslator.models import Document, GlossaryTerm, Segment, TranslationUnit
from tm_pretranslator.utils.locale import locales_match

logger = structlog.get_logger()


def _newest_first(records: list) -> list:
    # Later insertions win ties on created_at
    return sorted(reversed(records), key=lambda r: r.created_at, reverse=True)


def _in_scope(project_id: Optional[str], record_project: Optional[str]) -> bool:
    return record_project is None or (project_id is not None and record_project == project_id)


class InMemoryStore:
    """Translation memory, glossary and segment store held in dicts.

    Records are copied on the way in and out, so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._units: dict[str, TranslationUnit] = {}
        self._terms: dict[str, GlossaryTerm] = {}
        self._documents: dict[str, Document] = {}
        self._segments: dict[str, Segment] = {}

    # ------------------------------------------------------------------
    # Translation memory
    # ------------------------------------------------------------------

    def add_units(self, units: Iterable[TranslationUnit]) -> None:
        with self._lock:
            for unit in units:
                self._units[unit.id] = unit.model_copy(deep=True)
            self._persist_units()

    def list_units(
        self,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
    ) -> list[TranslationUnit]:
        with self._lock:
            scoped = [u for u in self._units.values() if _in_scope(project_id, u.project_id)]
            matching = [
                u
                for u in scoped
                if locales_match(source_locale, u.source_locale)
                and locales_match(target_locale, u.target_locale)
            ]
            if not matching and scoped:
                logger.debug(
                    "tm_locale_fallback",
                    source_locale=source_locale,
                    target_locale=target_locale,
                    candidates=len(scoped),
                )
                matching = scoped
            return [u.model_copy(deep=True) for u in _newest_first(matching)]

    def list_all_units(self) -> list[TranslationUnit]:
        """Every entry of every scope and locale pair, newest first."""
        with self._lock:
            return [u.model_copy(deep=True) for u in _newest_first(list(self._units.values()))]

    def get_unit(self, unit_id: str) -> Optional[TranslationUnit]:
        with self._lock:
            unit = self._units.get(unit_id)
            return unit.model_copy(deep=True) if unit else None

    def upsert_unit(
        self,
        source_text: str,
        target_text: str,
        source_locale: str,
        target_locale: str,
        project_id: Optional[str] = None,
        match_rate: float = 1.0,
    ) -> TranslationUnit:
        with self._lock:
            for unit in self._units.values():
                if (
                    unit.source_text == source_text
                    and unit.project_id == project_id
                    and unit.source_locale == source_locale
                    and unit.target_locale == target_locale
                ):
                    unit.target_text = target_text
                    unit.match_rate = match_rate
                    unit.updated_at = datetime.now()
                    self._persist_units()
                    return unit.model_copy(deep=True)

            unit = TranslationUnit(
                source_text=source_text,
                target_text=target_text,
                source_locale=source_locale,
                target_locale=target_locale,
                project_id=project_id,
                match_rate=match_rate,
            )
            self._units[unit.id] = unit
            self._persist_units()
            return unit.model_copy(deep=True)

    def set_embedding(self, unit_id: str, embedding: Optional[list[float]]) -> None:
        with self._lock:
            unit = self._units.get(unit_id)
            if unit is None:
                return
            self._units[unit_id] = unit.with_embedding(embedding)
            self._persist_units()

    # ------------------------------------------------------------------
    # Glossary
    # ------------------------------------------------------------------

    def list_terms(self, project_id: Optional[str] = None) -> list[GlossaryTerm]:
        with self._lock:
            scoped = [t for t in self._terms.values() if _in_scope(project_id, t.project_id)]
            return [t.model_copy(deep=True) for t in _newest_first(scoped)]

    def add_term(self, term: GlossaryTerm) -> GlossaryTerm:
        with self._lock:
            stored = term.model_copy(deep=True)
            self._terms[term.id] = stored
            self._persist_terms()
            return stored.model_copy(deep=True)

    def list_all_terms(self) -> list[GlossaryTerm]:
        """Every term of every scope, newest first."""
        with self._lock:
            return [t.model_copy(deep=True) for t in _newest_first(list(self._terms.values()))]

    def set_term_embedding(self, term_id: str, embedding: Optional[list[float]]) -> None:
        with self._lock:
            term = self._terms.get(term_id)
            if term is None:
                return
            self._terms[term_id] = term.model_copy(update={"embedding": embedding})
            self._persist_terms()

    def update_translation(self, term_id: str, target_term: str) -> Optional[GlossaryTerm]:
        with self._lock:
            term = self._terms.get(term_id)
            if term is None:
                return None
            term.target_term = target_term
            self._persist_terms()
            return term.model_copy(deep=True)

    # ------------------------------------------------------------------
    # Documents and segments
    # ------------------------------------------------------------------

    def add_document(self, document: Document, segments: Iterable[Segment] = ()) -> None:
        with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)
            for segment in segments:
                self._segments[segment.id] = segment.model_copy(deep=True)
            self._persist_document(document.id)

    def get_document(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    def list_documents(self) -> list[Document]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._documents.values()]

    def list_segments(self, document_id: str) -> list[Segment]:
        with self._lock:
            segments = [s for s in self._segments.values() if s.document_id == document_id]
            return [s.model_copy(deep=True) for s in sorted(segments, key=lambda s: s.index)]

    def get_segment(self, segment_id: str) -> Optional[Segment]:
        with self._lock:
            segment = self._segments.get(segment_id)
            return segment.model_copy(deep=True) if segment else None

    def save_segments(self, segments: list[Segment]) -> None:
        if not segments:
            return
        with self._lock:
            unknown = [s.id for s in segments if s.id not in self._segments]
            if unknown:
                raise PersistenceError(f"Unknown segments: {', '.join(unknown)}")

            previous = {s.id: self._segments[s.id] for s in segments}
            for segment in segments:
                self._segments[segment.id] = segment.model_copy(deep=True)
            try:
                for document_id in {s.document_id for s in segments}:
                    self._persist_document(document_id)
            except PersistenceError:
                self._segments.update(previous)
                raise

    # ------------------------------------------------------------------
    # Durability hooks (no-ops in memory)
    # ------------------------------------------------------------------

    def _persist_units(self) -> None:
        pass

    def _persist_terms(self) -> None:
        pass

    def _persist_document(self, document_id: str) -> None:
        pass
