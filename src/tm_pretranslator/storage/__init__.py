"""Record stores for the translation memory, glossary and segments."""

from tm_pretranslator.storage.base import GlossaryStore, SegmentStore, TranslationMemoryStore
from tm_pretranslator.storage.json_store import JsonFileStore
from tm_pretranslator.storage.memory import InMemoryStore

__all__ = [
    "GlossaryStore",
    "InMemoryStore",
    "JsonFileStore",
    "SegmentStore",
    "TranslationMemoryStore",
]
