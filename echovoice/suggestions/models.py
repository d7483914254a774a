"""
echovoice/suggestions/models.py — Suggestion types and reply parsing.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Iterable

from pydantic import BaseModel, ValidationError, field_validator

from echovoice.core.constants import C, Priority
from echovoice.core.errors import TransientBackendError


@dataclass(frozen=True)
class Suggestion:
    """One speakable phrase with its ranking tier."""

    phrase: str
    priority: Priority
    category: str

    def to_dict(self) -> dict:
        return {"phrase": self.phrase, "priority": self.priority.value, "category": self.category}


def word_count(phrase: str) -> int:
    return len(phrase.split())


def phrase_in_bounds(phrase: str) -> bool:
    return C.PHRASE_MIN_WORDS <= word_count(phrase) <= C.PHRASE_MAX_WORDS


class SuggestionItem(BaseModel):
    """Pydantic schema for one element of the backend's JSON array."""

    phrase: str
    priority: str = "medium"
    category: str = "general"

    @field_validator("phrase")
    @classmethod
    def phrase_length(cls, v: str) -> str:
        v = " ".join(v.split())
        if not phrase_in_bounds(v):
            raise ValueError(
                f"phrase must have {C.PHRASE_MIN_WORDS}-{C.PHRASE_MAX_WORDS} words"
            )
        return v

    @field_validator("priority")
    @classmethod
    def known_priority(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in {p.value for p in Priority}:
            raise ValueError(f"unknown priority: {v}")
        return v

    @field_validator("category")
    @classmethod
    def category_non_empty(cls, v: str) -> str:
        return v.strip().lower() or "general"

    def to_suggestion(self) -> Suggestion:
        return Suggestion(self.phrase, Priority(self.priority), self.category)


_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)


def parse_reply(text: str) -> list[Suggestion]:
    """
    Extract and validate suggestions from a model reply.

    The first JSON array in *text* is decoded; items failing validation are
    dropped individually.

    Raises:
        TransientBackendError: No array, invalid JSON, or no valid item.
    """
    match = _ARRAY_RE.search(text or "")
    if match is None:
        raise TransientBackendError("reply contains no JSON array")
    try:
        raw = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise TransientBackendError(f"reply is not valid JSON: {exc}") from exc
    if not isinstance(raw, list):
        raise TransientBackendError("reply is not a JSON array")

    items: list[Suggestion] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            items.append(SuggestionItem(**entry).to_suggestion())
        except (ValidationError, TypeError):
            continue
    if not items:
        raise TransientBackendError("reply contains no valid suggestion")
    return items


def finalize(
    candidates: Iterable[Suggestion],
    padding: Iterable[Suggestion],
    count: int = C.SUGGESTION_COUNT,
) -> list[Suggestion]:
    """
    Dedupe by exact phrase (first wins), take *count*, top up from
    *padding*, then order HIGH→MEDIUM→LOW keeping the original order
    within a tier.
    """
    seen: set[str] = set()
    chosen: list[Suggestion] = []
    for suggestion in list(candidates) + list(padding):
        if len(chosen) == count:
            break
        if suggestion.phrase in seen:
            continue
        seen.add(suggestion.phrase)
        chosen.append(suggestion)
    return sorted(chosen, key=lambda s: s.priority.rank)
