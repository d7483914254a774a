"""
echovoice/suggestions/fallback.py — Deterministic rule-based suggestions.

Used whenever the generative backend is absent, slow, or wrong. The result
is a pure function of ``(context, now)``: four unique phrases, each 4–15
words.

Rule groups contribute candidates in the order emotion, location, person,
time. Candidates are taken round-robin across the groups (first item of each
group, then the second, ...), deduplicated, cut to four, and padded with
generic supportive phrases. The final list is stably sorted by priority.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from echovoice.context.aggregator import Context
from echovoice.core.constants import C, Priority
from echovoice.suggestions.models import Suggestion, finalize, phrase_in_bounds

H, M, L = Priority.HIGH, Priority.MEDIUM, Priority.LOW


# ──────────────────────────────────────────────────────────────
# Emotion: HIGH
# ──────────────────────────────────────────────────────────────

_EMOTION_PHRASES: dict[str, tuple[str, ...]] = {
    "happy": (
        "I am feeling really happy today",
        "I would love to share this moment",
        "Let's do something fun together",
    ),
    "sad": (
        "I am feeling a little sad",
        "Can you sit with me for a while",
        "I would like a hug please",
    ),
    "angry": (
        "I am feeling frustrated right now",
        "I need a moment to calm down",
        "Please give me some space for now",
    ),
    "fearful": (
        "I am feeling scared right now",
        "Please stay close to me",
        "Can you help me feel safe",
    ),
    "surprised": (
        "That really surprised me a lot",
        "Can you tell me what happened",
        "I did not expect that at all",
    ),
    "neutral": (
        "I am doing okay right now",
        "Could you help me with something",
        "I would like some company please",
    ),
}


def _emotion_rules(context: Context) -> list[Suggestion]:
    emotion = (context.emotion or C.DEFAULT_EMOTION).strip().lower()
    phrases = _EMOTION_PHRASES.get(emotion, _EMOTION_PHRASES[C.DEFAULT_EMOTION])
    return [Suggestion(p, H, "emotional") for p in phrases]


# ──────────────────────────────────────────────────────────────
# Location: MEDIUM
# ──────────────────────────────────────────────────────────────

class _LocationRule(NamedTuple):
    """Keyword pattern matched against the location label."""

    name: str
    pattern: re.Pattern
    phrases: tuple[str, ...]


def _kw(*words: str) -> re.Pattern:
    return re.compile(r"\b(" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


_LOCATION_RULES: list[_LocationRule] = [
    _LocationRule("kitchen", _kw("kitchen"), (
        "I would like something to eat",
        "Can you help me cook a meal",
        "I need something to drink please",
    )),
    _LocationRule("bedroom", _kw("bedroom"), (
        "I would like to rest now",
        "Can you help me get dressed",
    )),
    _LocationRule("bathroom", _kw("bathroom", "restroom", "toilet"), (
        "I need help in the bathroom",
        "Please wait outside for me",
    )),
    _LocationRule("living room", _kw("living room", "lounge"), (
        "Can we watch something together",
        "Please pass me the remote control",
    )),
    _LocationRule("park", _kw("park"), (
        "I would like to sit down",
        "Let's take a slow walk together",
    )),
    _LocationRule("hospital", _kw("hospital", "clinic"), (
        "Can you call the nurse please",
        "I have a question for the doctor",
    )),
    _LocationRule("vehicle", _kw("vehicle", "car", "bus"), (
        "Please let me know when we arrive",
        "Can you open the window please",
    )),
]


def _location_rules(context: Context) -> list[Suggestion]:
    label = context.location_label or ""
    for rule in _LOCATION_RULES:
        if rule.pattern.search(label):
            return [Suggestion(p, M, "practical") for p in rule.phrases]
    return []


# ──────────────────────────────────────────────────────────────
# Person: MEDIUM
# ──────────────────────────────────────────────────────────────

def _person_rules(context: Context) -> list[Suggestion]:
    name = (context.person_label or "").strip()
    if not name:
        return []
    phrases = (
        f"Thank you for helping me, {name}",
        f"It is good to see you, {name}",
    )
    return [Suggestion(p, M, "social") for p in phrases if phrase_in_bounds(p)]


# ──────────────────────────────────────────────────────────────
# Time of day: LOW
# ──────────────────────────────────────────────────────────────

class _TimeRule(NamedTuple):
    name: str
    match: Callable[[int], bool]
    weekday: str
    weekend: str


_TIME_RULES: list[_TimeRule] = [
    _TimeRule("early_morning", lambda h: 5 <= h < 8,
              "Good morning, I am getting ready for the day",
              "Good morning, can I sleep a little longer"),
    _TimeRule("morning", lambda h: 8 <= h < 11,
              "I would like some breakfast please",
              "Let's have a slow breakfast together"),
    _TimeRule("lunch", lambda h: 11 <= h < 14,
              "I am ready for lunch now",
              "Can we go out for lunch today"),
    _TimeRule("afternoon", lambda h: 14 <= h < 17,
              "I would like a short rest now",
              "Let's do something fun this afternoon"),
    _TimeRule("evening", lambda h: 17 <= h < 21,
              "I am ready for dinner now",
              "Can we relax together this evening"),
    _TimeRule("night", lambda h: True,
              "I am tired and ready for bed",
              "I would like to stay up a bit longer"),
]


def _time_rules(now: datetime) -> list[Suggestion]:
    weekend = now.weekday() >= 5
    for rule in _TIME_RULES:
        if rule.match(now.hour):
            return [Suggestion(rule.weekend if weekend else rule.weekday, L, "routine")]
    return []


# ──────────────────────────────────────────────────────────────
# Padding: MEDIUM
# ──────────────────────────────────────────────────────────────

PADDING: tuple[Suggestion, ...] = tuple(
    Suggestion(p, M, "support")
    for p in (
        "Thank you for being here with me",
        "I need a little help, please",
        "Could you give me a moment please",
        "I appreciate your patience with me",
    )
)


def _round_robin(groups: list[list[Suggestion]]) -> list[Suggestion]:
    merged: list[Suggestion] = []
    depth = max((len(g) for g in groups), default=0)
    for i in range(depth):
        for group in groups:
            if i < len(group):
                merged.append(group[i])
    return merged


def rule_candidates(context: Context, now: datetime) -> list[Suggestion]:
    """All rule matches, interleaved emotion → location → person → time."""
    return _round_robin([
        _emotion_rules(context),
        _location_rules(context),
        _person_rules(context),
        _time_rules(now),
    ])


def fallback_suggestions(context: Context, now: Optional[datetime] = None) -> list[Suggestion]:
    """
    Exactly :data:`C.SUGGESTION_COUNT` unique phrases for *context* at *now*.

    Args:
        context: Current situation; missing fields simply contribute nothing
            (a missing emotion is treated as neutral).
        now: Local time used for the time-of-day rules; defaults to now.
    """
    now = now or datetime.now()
    return finalize(rule_candidates(context, now), PADDING, C.SUGGESTION_COUNT)
