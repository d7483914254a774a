"""
echovoice/suggestions/prompt.py — Prompt construction for phrase generation.

Asks the model for exactly four short first-person phrases as a JSON array,
one per category, grounded in the fused :class:`Context`.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import BaseModel, field_validator

from echovoice.context.aggregator import Context
from echovoice.core.constants import C

logger = logging.getLogger(__name__)

CATEGORIES: tuple[str, ...] = ("emotional", "practical", "social", "care")


class PromptContext(BaseModel):
    """
    Pydantic-validated prompt inputs.

    Blank strings become ``None`` so the prompt reads "unknown" rather than
    an empty value.
    """

    emotion: Optional[str] = None
    time_of_day: Optional[str] = None
    location: Optional[str] = None
    person: Optional[str] = None
    tone_modifier: Optional[str] = None

    @field_validator("emotion", "time_of_day", "location", "person", "tone_modifier")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @classmethod
    def from_context(cls, context: Context) -> "PromptContext":
        return cls(
            emotion=context.emotion,
            time_of_day=context.time_of_day,
            location=context.location_label,
            person=context.person_label,
            tone_modifier=context.tone_modifier,
        )


class PromptBuilder:
    """Formats the generation prompt for any text-in/text-out backend."""

    _SYSTEM_PROMPT: str = (
        "You help a person who cannot speak communicate with the people around "
        "them. Suggest short phrases they might want to say right now, written "
        "in the first person."
    )

    _USER_TEMPLATE: str = (
        "Current situation:\n"
        "- Emotion: {emotion}\n"
        "- Time: {time_of_day}\n"
        "- Location: {location}\n"
        "- Nearby person: {person}\n\n"
        "{tone}"
        "Return exactly {count} suggestions as a JSON array of objects with the "
        'keys "phrase", "priority" ("high", "medium" or "low") and "category". '
        "Use one suggestion for each category: {categories}. "
        "Each phrase must be {min_words} to {max_words} words. "
        "Output only the JSON array."
    )

    def build(self, context: Context) -> str:
        fields = PromptContext.from_context(context)
        prompt = self._USER_TEMPLATE.format(
            emotion=fields.emotion or "unknown",
            time_of_day=fields.time_of_day or "unknown",
            location=fields.location or "unknown",
            person=fields.person or "nobody in particular",
            tone=f"{fields.tone_modifier}\n\n" if fields.tone_modifier else "",
            count=C.SUGGESTION_COUNT,
            categories=", ".join(CATEGORIES),
            min_words=C.PHRASE_MIN_WORDS,
            max_words=C.PHRASE_MAX_WORDS,
        )
        logger.debug("PromptBuilder: user content (%d chars)", len(prompt))
        return prompt

    def build_chat_messages(self, context: Context) -> list[dict[str, str]]:
        """The prompt as system/user chat messages for chat-template models."""
        return [
            {"role": "system", "content": self._SYSTEM_PROMPT},
            {"role": "user", "content": self.build(context)},
        ]
