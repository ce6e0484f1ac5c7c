"""Locale code comparison utilities."""

from typing import Optional


def normalize_locale(locale: Optional[str]) -> str:
    """Lowercase, trimmed locale code with ``_`` mapped to ``-``.

    Args:
        locale: Locale code such as ``en-US``, ``ru_RU`` or ``EN``

    Returns:
        Normalized code, empty string for None
    """
    return (locale or "").strip().lower().replace("_", "-")


def language_of(locale: Optional[str]) -> str:
    """Primary language subtag: ``ru-RU`` -> ``ru``."""
    return normalize_locale(locale).split("-", 1)[0]


def locales_match(requested: Optional[str], stored: Optional[str]) -> bool:
    """True when two locale codes name the same language.

    Comparison is case-insensitive on the primary language subtag, so
    ``en`` matches ``en-US`` and ``en-US`` matches ``en-GB``.
    """
    if not normalize_locale(requested) or not normalize_locale(stored):
        return False
    return language_of(requested) == language_of(stored)
