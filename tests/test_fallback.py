"""
tests/test_fallback.py — pytest unit tests for the rule-based suggestions.

The fallback must always produce four unique, speakable phrases ordered by
priority, and the same input must always give the same output.
"""

from __future__ import annotations

from datetime import datetime

import pytest

from echovoice.context.aggregator import Context
from echovoice.core.constants import Priority
from echovoice.suggestions.fallback import PADDING, fallback_suggestions, rule_candidates
from echovoice.suggestions.models import Suggestion, finalize, phrase_in_bounds

# Wednesday and Saturday
_WEEKDAY_9AM = datetime(2024, 5, 15, 9, 0)
_SATURDAY_9AM = datetime(2024, 5, 18, 9, 0)
_NIGHT = datetime(2024, 5, 15, 23, 30)

_CONTEXTS = [
    Context(),
    Context(emotion="happy", location_label="Kitchen"),
    Context(emotion="sad", person_label="Sarah"),
    Context(emotion="fearful", location_label="City Hospital", person_label="Dr Lee"),
    Context(emotion="confused", location_label="Somewhere unknown"),
    Context(location_label="Bus stop on Main St"),
]


def _assert_well_formed(suggestions: list[Suggestion]) -> None:
    assert len(suggestions) == 4
    phrases = [s.phrase for s in suggestions]
    assert len(set(phrases)) == 4
    for phrase in phrases:
        assert phrase_in_bounds(phrase), phrase
    ranks = [s.priority.rank for s in suggestions]
    assert ranks == sorted(ranks)


class TestFallbackShape:
    @pytest.mark.parametrize("context", _CONTEXTS)
    @pytest.mark.parametrize("now", [_WEEKDAY_9AM, _SATURDAY_9AM, _NIGHT])
    def test_four_unique_bounded_ordered(self, context: Context, now: datetime) -> None:
        _assert_well_formed(fallback_suggestions(context, now))

    @pytest.mark.parametrize("context", _CONTEXTS)
    def test_idempotent(self, context: Context) -> None:
        assert fallback_suggestions(context, _WEEKDAY_9AM) == fallback_suggestions(context, _WEEKDAY_9AM)

    def test_padding_phrases_are_valid(self) -> None:
        assert len(PADDING) >= 4
        assert all(phrase_in_bounds(s.phrase) for s in PADDING)


class TestFallbackContent:
    def test_happy_in_kitchen_offers_food(self) -> None:
        phrases = [s.phrase for s in fallback_suggestions(
            Context(emotion="happy", location_label="Kitchen"), _WEEKDAY_9AM)]
        assert "I would like something to eat" in phrases
        assert "I am feeling really happy today" in phrases

    def test_emotion_phrases_rank_high(self) -> None:
        result = fallback_suggestions(Context(emotion="sad"), _WEEKDAY_9AM)
        assert result[0].priority is Priority.HIGH
        assert result[0].category == "emotional"

    def test_person_is_named(self) -> None:
        phrases = [s.phrase for s in fallback_suggestions(
            Context(emotion="happy", person_label="Sarah"), _WEEKDAY_9AM)]
        assert any("Sarah" in p for p in phrases)

    def test_location_keyword_is_word_bounded(self) -> None:
        # "carpet" must not match the vehicle rule
        phrases = [s.phrase for s in rule_candidates(Context(location_label="Carpet shop"), _WEEKDAY_9AM)]
        assert "Please let me know when we arrive" not in phrases

    def test_weekend_variant(self) -> None:
        weekday = {s.phrase for s in rule_candidates(Context(), _WEEKDAY_9AM)}
        weekend = {s.phrase for s in rule_candidates(Context(), _SATURDAY_9AM)}
        assert "I would like some breakfast please" in weekday
        assert "Let's have a slow breakfast together" in weekend

    def test_unknown_emotion_treated_as_neutral(self) -> None:
        a = fallback_suggestions(Context(emotion="bewildered"), _WEEKDAY_9AM)
        b = fallback_suggestions(Context(emotion="neutral"), _WEEKDAY_9AM)
        assert a == b

    def test_round_robin_interleaves_groups(self) -> None:
        candidates = rule_candidates(
            Context(emotion="happy", location_label="Kitchen", person_label="Sarah"), _WEEKDAY_9AM)
        assert [c.category for c in candidates[:4]] == ["emotional", "practical", "social", "routine"]


class TestFinalize:
    def test_dedupes_first_wins_and_pads(self) -> None:
        a = Suggestion("I would like some water", Priority.LOW, "care")
        dup = Suggestion("I would like some water", Priority.HIGH, "care")
        b = Suggestion("Please call my family now", Priority.HIGH, "care")
        result = finalize([a, dup, b], PADDING)
        assert len(result) == 4
        assert result[0] == b
        assert result[-1] == a
        assert sum(1 for s in result if s.phrase == a.phrase) == 1

    def test_truncates_to_count(self) -> None:
        many = [Suggestion(f"Phrase number {i} is here", Priority.MEDIUM, "x") for i in range(10)]
        assert [s.phrase for s in finalize(many, PADDING)] == [s.phrase for s in many[:4]]
