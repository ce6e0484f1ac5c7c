"""Tests for edit-distance scoring and the fuzzy matcher."""

from datetime import datetime, timedelta

from tm_pretranslator.models import MatchMethod, MatchScope, TranslationUnit
from tm_pretranslator.retrieval.fuzzy import FuzzyMatcher, Prefilter, fuzzy_score


def _unit(source: str, project_id=None, age_minutes: int = 0) -> TranslationUnit:
    return TranslationUnit(
        source_text=source,
        target_text=f"RU {source}",
        source_locale="en",
        target_locale="ru",
        project_id=project_id,
        created_at=datetime.now() - timedelta(minutes=age_minutes),
    )


class TestFuzzyScore:
    """Tests for fuzzy_score."""

    def test_one_edit_in_twelve_characters(self):
        """A trailing character costs 1/12 of the score."""
        assert fuzzy_score("Hello world", "Hello world!") == 92

    def test_identical_strings_score_100(self):
        assert fuzzy_score("Install the cable.", "Install the cable.") == 100

    def test_two_empty_strings_score_100(self):
        assert fuzzy_score("", "") == 100

    def test_empty_against_text_scores_0(self):
        assert fuzzy_score("", "abc") == 0

    def test_near_identical_long_text_never_reaches_100(self):
        """Rounding must not turn a non-identical pair into an exact match."""
        long_text = "a" * 300
        assert fuzzy_score(long_text, long_text + "b") == 99

    def test_case_sensitive(self):
        assert fuzzy_score("Cable", "cable") == 80


class TestPrefilter:
    """Tests for the cheap candidate pre-filter."""

    def test_identical_text_always_passes(self):
        assert Prefilter(0.0, 1.0).passes("same", "same")

    def test_length_difference_rejects(self):
        prefilter = Prefilter(length_threshold=0.4, word_overlap=0.0)
        assert not prefilter.passes("short", "a much much longer sentence")

    def test_word_overlap(self):
        prefilter = Prefilter(length_threshold=1.0, word_overlap=0.3)
        assert prefilter.passes("install the new cable", "install the old cable")
        assert not prefilter.passes("install the new cable", "replace one broken pump")


class TestFuzzyMatcher:
    """Tests for FuzzyMatcher.search."""

    def test_scores_and_sorts_descending(self):
        units = [_unit("Hello there"), _unit("Hello world!"), _unit("Hello world")]
        matches = FuzzyMatcher().search("Hello world", units, min_score=50)

        assert [m.score for m in matches] == sorted((m.score for m in matches), reverse=True)
        assert matches[0].score == 100
        assert matches[1].score == 92
        assert all(m.method == MatchMethod.FUZZY for m in matches)

    def test_min_score_filters(self):
        units = [_unit("Hello world!"), _unit("Completely different")]
        matches = FuzzyMatcher().search("Hello world", units, min_score=90)
        assert [m.source_text for m in matches] == ["Hello world!"]

    def test_min_score_100_returns_only_equal_text(self):
        units = [_unit("Hello world!"), _unit("Hello world")]
        matches = FuzzyMatcher().search("Hello world", units, min_score=100)
        assert len(matches) == 1
        assert matches[0].source_text == "Hello world"

    def test_ties_prefer_newest(self):
        old_global = _unit("Pump", age_minutes=10)
        new_global = _unit("Pump", age_minutes=1)
        project = _unit("Pump", project_id="p1", age_minutes=30)

        matches = FuzzyMatcher().search("Pump", [old_global, project, new_global])

        assert [m.id for m in matches] == [new_global.id, old_global.id, project.id]

    def test_project_scope_breaks_remaining_ties(self):
        created = datetime.now()
        global_unit = _unit("Pump").model_copy(update={"created_at": created})
        project = _unit("Pump", project_id="p1").model_copy(update={"created_at": created})

        matches = FuzzyMatcher().search("Pump", [global_unit, project])

        assert [m.id for m in matches] == [project.id, global_unit.id]
        assert matches[0].scope == MatchScope.PROJECT

    def test_limit(self):
        units = [_unit(f"Pump {i}") for i in range(10)]
        assert len(FuzzyMatcher().search("Pump 1", units, limit=3)) == 3

    def test_prefilter_skips_candidates(self):
        units = [_unit("Hello world!"), _unit("Hello world! " * 5)]
        matches = FuzzyMatcher().search("Hello world", units, prefilter=Prefilter(0.4, 0.3))
        assert [m.source_text for m in matches] == ["Hello world!"]
