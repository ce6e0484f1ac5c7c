"""Lightweight stemming for glossary term matching.

Glossary terms are stored in their dictionary form while segment text
carries plurals and case endings ("кабели", "substations"). This module
strips the most common English and Russian endings so a term still counts
as present in a text. It is deliberately rule-based and dependency-free;
other languages are only lowercased.
"""

import re

from tm_pretranslator.utils.locale import language_of

# (ending, minimum word length) in match order
_RUSSIAN_ENDINGS: list[tuple[str, int]] = [
    ("ов", 4),  # genitive plural
    ("ев", 4),
    ("ей", 3),
    ("ам", 4),  # dative plural
    ("ям", 4),
    ("ами", 5),  # instrumental plural
    ("ями", 5),
    ("ах", 4),  # prepositional plural
    ("ях", 4),
    ("ы", 3),  # nominative plural
    ("и", 3),
]

_EDGE_PUNCT = re.compile(r"^[^\w]+|[^\w]+$", re.UNICODE)


def _stem_english(word: str) -> str:
    if word.endswith("ies") and len(word) > 4:
        return word[:-3] + "y"  # companies -> company
    if word.endswith("es") and len(word) > 3:
        before = word[:-2]
        if before.endswith(("s", "x", "z", "ch", "sh")):
            return before  # boxes -> box
        if len(before) > 1 and before[-1] not in "aeiou":
            return before
    if word.endswith("s") and len(word) > 2 and not word.endswith("ss"):
        return word[:-1]  # cars -> car, class stays
    if word.endswith("ing") and len(word) > 4:
        return word[:-3]
    if word.endswith("ed") and len(word) > 3:
        return word[:-2]
    return word


def _stem_russian(word: str) -> str:
    for ending, min_length in _RUSSIAN_ENDINGS:
        if len(word) >= min_length and word.endswith(ending):
            stem = word[: -len(ending)]
            if len(stem) >= 2:
                return stem
    return word


def simple_stem(word: str, locale: str) -> str:
    """Strip common inflection endings from a word.

    Args:
        word: Single word
        locale: Language of the word (``en``, ``ru-RU``...)

    Returns:
        Lowercased stem; the lowercased word when no rule applies

    Example:
        simple_stem("substations", "en")  # -> "substation"
        simple_stem("кабелями", "ru")     # -> "кабел"
    """
    lower = word.strip().lower()
    if not lower:
        return ""
    language = language_of(locale)
    if language == "en":
        return _stem_english(lower)
    if language == "ru":
        return _stem_russian(lower)
    return lower


def matches_with_variations(term: str, text: str, locale: str) -> bool:
    """Check whether a glossary term occurs in a text, tolerating inflection.

    A term matches when it is a case-insensitive substring of the text, when
    a word of the text has the same stem (2+ characters), or when one stem
    contains the other and the shorter is at least 3 characters long.
    """
    text_lower = text.lower()
    term_lower = term.strip().lower()
    if not term_lower:
        return False
    if term_lower in text_lower:
        return True

    term_stem = simple_stem(term_lower, locale)
    for raw in text_lower.split():
        word = _EDGE_PUNCT.sub("", raw)
        if not word:
            continue
        word_stem = simple_stem(word, locale)
        if word_stem == term_stem and len(term_stem) >= 2:
            return True
        if (word_stem in term_stem or term_stem in word_stem) and min(
            len(term_stem), len(word_stem)
        ) >= 3:
            return True
    return False
