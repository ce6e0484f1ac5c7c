"""JSON-file backed record store.

Layout under ``data_dir``::

    translation_memory.json   list of TranslationUnit
    glossary.json             list of GlossaryTerm
    documents/<id>.json       {"document": Document, "segments": [Segment, ...]}
"""

import json
import os
from pathlib import Path
from typing import Any

import structlog

from tm_pretranslator.exceptions import PersistenceError
from tm_pretranslator.models import Document, GlossaryTerm, Segment, TranslationUnit
from tm_pretranslator.storage.memory import InMemoryStore

logger = structlog.get_logger()

TM_FILE = "translation_memory.json"
GLOSSARY_FILE = "glossary.json"
DOCUMENTS_DIR = "documents"


def _write_json(path: Path, data: Any) -> None:
    """Write JSON atomically (temp file + rename)."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp, path)
    except OSError as e:
        raise PersistenceError(f"Failed to write {path}: {e}") from e


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class JsonFileStore(InMemoryStore):
    """InMemoryStore that writes every change through to JSON files."""

    def __init__(self, data_dir: Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self._loading = True
        try:
            self._load()
        finally:
            self._loading = False

    def _load(self) -> None:
        tm_path = self.data_dir / TM_FILE
        if tm_path.exists():
            self.add_units(TranslationUnit.model_validate(u) for u in _read_json(tm_path))

        glossary_path = self.data_dir / GLOSSARY_FILE
        if glossary_path.exists():
            for item in _read_json(glossary_path):
                self.add_term(GlossaryTerm.model_validate(item))

        documents_dir = self.data_dir / DOCUMENTS_DIR
        if documents_dir.exists():
            for path in sorted(documents_dir.glob("*.json")):
                data = _read_json(path)
                self.add_document(
                    Document.model_validate(data["document"]),
                    [Segment.model_validate(s) for s in data.get("segments", [])],
                )

        logger.debug(
            "json_store_loaded",
            data_dir=str(self.data_dir),
            units=len(self._units),
            terms=len(self._terms),
            documents=len(self._documents),
        )

    def _persist_units(self) -> None:
        if self._loading:
            return
        _write_json(
            self.data_dir / TM_FILE,
            [u.model_dump(mode="json") for u in self._units.values()],
        )

    def _persist_terms(self) -> None:
        if self._loading:
            return
        _write_json(
            self.data_dir / GLOSSARY_FILE,
            [t.model_dump(mode="json") for t in self._terms.values()],
        )

    def _persist_document(self, document_id: str) -> None:
        if self._loading:
            return
        document = self._documents.get(document_id)
        if document is None:
            return
        segments = sorted(
            (s for s in self._segments.values() if s.document_id == document_id),
            key=lambda s: s.index,
        )
        _write_json(
            self.data_dir / DOCUMENTS_DIR / f"{document_id}.json",
            {
                "document": document.model_dump(mode="json"),
                "segments": [s.model_dump(mode="json") for s in segments],
            },
        )
