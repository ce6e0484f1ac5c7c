"""Prompt builders and response parsers for the translation provider."""

import json
import re
from typing import Optional

from pydantic import BaseModel, Field

from tm_pretranslator.models import GlossaryHit, GlossaryMode, MatchCandidate, MatchMethod
from tm_pretranslator.utils.locale import language_of

LANGUAGE_NAMES = {
    "ar": "Arabic",
    "de": "German",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
    "it": "Italian",
    "ja": "Japanese",
    "kk": "Kazakh",
    "ko": "Korean",
    "pt": "Portuguese",
    "ru": "Russian",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "vi": "Vietnamese",
    "zh": "Chinese",
}

DEFAULT_GUIDELINES = (
    "1. Follow standard professional translation practices.\n"
    "2. Preserve formatting, tags, and placeholders."
)

NO_GLOSSARY = "No glossary enforcement required."

METHOD_LABELS = {
    MatchMethod.HYBRID: "hybrid (semantic + text match)",
    MatchMethod.VECTOR: "semantic match",
    MatchMethod.FUZZY: "text match",
}

_MOCK_MARKERS = [
    re.compile(r"\s*\[(?:openai|gpt|ai)\s+synthetic\s+translation\]\s*", re.IGNORECASE),
    re.compile(r"\s*\[mock\s+translation\]\s*", re.IGNORECASE),
    re.compile(r"\s*\[synthetic\]\s*", re.IGNORECASE),
    re.compile(r"\s*\[\s*\]\s*$"),
]

MOCK_MARKER = "[mock translation]"


def language_name(locale: Optional[str]) -> str:
    """Human readable language name for a locale code."""
    if not locale:
        return "Unknown"
    return LANGUAGE_NAMES.get(language_of(locale), locale)


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class BatchItem(BaseModel):
    """A segment sent to the provider, with its neighbours."""

    segment_id: str
    source_text: str
    previous_text: Optional[str] = None
    next_text: Optional[str] = None


class BatchContext(BaseModel):
    """Everything a provider needs besides the segments themselves."""

    source_locale: str
    target_locale: str
    document_name: Optional[str] = None
    project_domain: Optional[str] = None
    project_client: Optional[str] = None
    guidelines: list[str] = Field(default_factory=list)
    glossary: list[GlossaryHit] = Field(default_factory=list)
    glossary_mode: GlossaryMode = GlossaryMode.STRICT_SOURCE
    tm_examples: list[MatchCandidate] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: Optional[float] = None


class CritiqueError(BaseModel):
    term: str = ""
    expected: str = ""
    found: str = ""
    severity: str = "minor"


class Critique(BaseModel):
    """Structured result of a critique pass."""

    errors: list[CritiqueError] = Field(default_factory=list)
    reasoning: str = ""


# ---------------------------------------------------------------------------
# Prompt sections
# ---------------------------------------------------------------------------


def format_guidelines(guidelines: list[str]) -> str:
    rules = [g.strip() for g in guidelines if g and g.strip()]
    if not rules:
        return DEFAULT_GUIDELINES
    return "\n".join(f"{i}. {rule}" for i, rule in enumerate(rules, start=1))


def format_glossary_for_prompt(
    hits: list[GlossaryHit],
    mode: GlossaryMode = GlossaryMode.STRICT_SOURCE,
    max_entries: int = 200,
) -> str:
    """Render glossary hits as prompt lines.

    Example:
        - substation => подстанция
        - rehab => реабилитация (FORBIDDEN: never use this translation)
    """
    if mode == GlossaryMode.OFF or not hits:
        return NO_GLOSSARY

    lines = []
    for hit in hits[:max_entries]:
        line = f"- {hit.term} => {hit.translation}"
        if hit.forbidden:
            line += " (FORBIDDEN: never use this translation)"
        if hit.notes:
            line += f" | Notes: {hit.notes}"
        lines.append(line)
    return "\n".join(lines)


def _glossary_instruction(mode: GlossaryMode) -> str:
    if mode == GlossaryMode.STRICT_SEMANTIC:
        return (
            "Use the glossary translations for these terms and for any inflected or "
            "synonymous form of them in the source."
        )
    return "You MUST use the glossary translation wherever the source term appears."


def format_tm_examples(examples: list[MatchCandidate], limit: int = 5) -> str:
    """Render the best TM matches as few-shot examples."""
    if not examples:
        return ""
    blocks = []
    for i, example in enumerate(examples[:limit], start=1):
        blocks.append(
            f"Example {i}:\n"
            f'  Source: "{example.source_text}"\n'
            f'  Target: "{example.target_text}"\n'
            f"  Match Quality: {example.score}% ({METHOD_LABELS[example.method]})"
        )
    return "\n\n".join(blocks)


def _document_context(context: BatchContext) -> str:
    parts = []
    if context.document_name:
        parts.append(f"Document: {context.document_name}")
    if context.project_domain:
        parts.append(f"Domain: {context.project_domain}")
    if context.project_client:
        parts.append(f"Client: {context.project_client}")
    return "\n".join(parts)


# ---------------------------------------------------------------------------
# Batch translation
# ---------------------------------------------------------------------------


def build_system_prompt(context: BatchContext) -> str:
    source = language_name(context.source_locale)
    target = language_name(context.target_locale)
    return (
        f"You are a professional technical translator from {source} to {target}. "
        "Deliver fluent, idiomatic translations that keep the meaning, numbers, "
        "formatting, tags and placeholders of the source. Respond with JSON only."
    )


def build_batch_prompt(items: list[BatchItem], context: BatchContext, max_glossary: int = 200) -> str:
    """Build the user prompt for one batch of segments."""
    segments_payload = [
        {
            "segment_id": item.segment_id,
            "source": item.source_text,
            "neighbors": {"previous": item.previous_text, "next": item.next_text},
        }
        for item in items
    ]

    sections = [
        f"Translate from {context.source_locale} to {context.target_locale}.",
    ]

    doc_context = _document_context(context)
    if doc_context:
        sections += ["", "=== DOCUMENT ===", doc_context]

    sections += ["", "=== GUIDELINES ===", format_guidelines(context.guidelines)]

    glossary = format_glossary_for_prompt(context.glossary, context.glossary_mode, max_glossary)
    sections += ["", "=== GLOSSARY ===", glossary]
    if glossary != NO_GLOSSARY:
        sections.append(_glossary_instruction(context.glossary_mode))

    examples = format_tm_examples(context.tm_examples)
    if examples:
        sections += [
            "",
            "=== TRANSLATION MEMORY EXAMPLES ===",
            "Follow the terminology and phrasing of these confirmed translations:",
            examples,
        ]

    sections += [
        "",
        "=== OUTPUT FORMAT ===",
        "Return ONLY a valid JSON array matching this schema:",
        '[{"segment_id":"<id>","target_mt":"<translation>"}]',
        "Do not include comments or prose outside the JSON array.",
        "",
        "=== SEGMENTS ===",
        json.dumps(segments_payload, ensure_ascii=False, indent=2),
    ]
    return "\n".join(sections)


def strip_mock_markers(text: str) -> str:
    cleaned = text.strip()
    for pattern in _MOCK_MARKERS:
        cleaned = pattern.sub("", cleaned).strip()
    return cleaned


def _strip_code_fence(text: str) -> str:
    cleaned = text.strip()
    if not cleaned.startswith("```"):
        return cleaned
    lines = cleaned.split("\n")
    if re.match(r"^```(json)?$", lines[0].strip(), re.IGNORECASE):
        lines = lines[1:]
    if lines and lines[-1].strip() == "```":
        lines = lines[:-1]
    return "\n".join(lines).strip()


def parse_batch_response(text: str, items: list[BatchItem]) -> dict[str, str]:
    """Map a provider's JSON reply onto the requested segments.

    Segments the reply does not cover keep their source text.

    Raises:
        ValueError: If the reply holds no usable JSON array
    """
    cleaned = _strip_code_fence(text)
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end == -1 or end < start:
        raise ValueError("Provider response did not contain a JSON array")

    try:
        parsed = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as e:
        raise ValueError(f"Provider response is not valid JSON: {e}") from e
    if not isinstance(parsed, list) or not parsed:
        raise ValueError("Provider returned an empty translation array")

    translations: dict[str, str] = {}
    for entry in parsed:
        if not isinstance(entry, dict):
            continue
        segment_id = entry.get("segment_id")
        target = entry.get("target_mt")
        if segment_id and isinstance(target, str):
            translations[str(segment_id)] = strip_mock_markers(target)

    if not translations:
        raise ValueError("Provider response is missing target text")

    return {item.segment_id: translations.get(item.segment_id, item.source_text) for item in items}


# ---------------------------------------------------------------------------
# Draft / critique / fix
# ---------------------------------------------------------------------------


def build_critique_prompt(source_text: str, draft: str, context: BatchContext) -> str:
    source = language_name(context.source_locale)
    target = language_name(context.target_locale)
    glossary = format_glossary_for_prompt(context.glossary, context.glossary_mode)
    return "\n".join(
        [
            f"Review this {source} to {target} translation for glossary compliance "
            "and accuracy.",
            "",
            "=== GLOSSARY ===",
            glossary,
            "",
            f"Source ({source}): {source_text}",
            f"Draft ({target}): {draft}",
            "",
            "Report only real problems: a glossary term translated differently, "
            "a forbidden term, missing or distorted meaning, broken numbers or tags.",
            "Return ONLY JSON of the form:",
            '{"errors":[{"term":"<source term>","expected":"<required>",'
            '"found":"<in draft>","severity":"critical|major|minor"}],'
            '"reasoning":"<one sentence>"}',
            'Return {"errors":[],"reasoning":"..."} when the draft is correct.',
        ]
    )


def parse_critique(text: str) -> Critique:
    """Parse a critique reply; an unreadable reply counts as no errors."""
    cleaned = _strip_code_fence(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end < start:
        return Critique(reasoning=cleaned[:200])
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError:
        return Critique(reasoning=cleaned[:200])
    if not isinstance(data, dict):
        return Critique()

    errors = [
        CritiqueError(
            term=str(e.get("term", "")),
            expected=str(e.get("expected", "")),
            found=str(e.get("found", "")),
            severity=str(e.get("severity", "minor")),
        )
        for e in data.get("errors") or []
        if isinstance(e, dict) and (e.get("term") or e.get("expected"))
    ]
    return Critique(errors=errors, reasoning=str(data.get("reasoning", "")))


def build_fix_prompt(source_text: str, draft: str, critique: Critique, context: BatchContext) -> str:
    target = language_name(context.target_locale)
    issues = "\n".join(
        f"- {e.term}: expected \"{e.expected}\", found \"{e.found}\" ({e.severity})"
        for e in critique.errors
    )
    return "\n".join(
        [
            f"Correct the {target} translation below. Change only what the issues require "
            "and keep everything else as is.",
            "",
            f"Source: {source_text}",
            f"Draft: {draft}",
            "",
            "Issues:",
            issues,
            "",
            "Return ONLY the corrected translation, without quotes or comments.",
        ]
    )
