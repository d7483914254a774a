"""
echovoice/suggestions/engine.py — Ranked phrase suggestions for a context.

Primary path: ask the generative backend, parse its JSON reply, top up from
the rule-based phrases. Any failure on that path (timeout, transport error,
unusable reply) resolves to the rule-based fallback; nothing propagates.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Optional

from echovoice.context.aggregator import Context
from echovoice.core.constants import C
from echovoice.core.errors import TransientBackendError
from echovoice.core.logger import get_logger
from echovoice.core.result import Result, attempt
from echovoice.suggestions.backend import GenerativeBackend
from echovoice.suggestions.fallback import PADDING, fallback_suggestions, rule_candidates
from echovoice.suggestions.models import Suggestion, finalize, parse_reply
from echovoice.suggestions.prompt import PromptBuilder


class SuggestionEngine:
    """
    Args:
        backend: Optional generative backend; ``None`` means rules only.
        timeout_s: Hard cutoff for one generation call.
        prompt_builder: Prompt formatter.
    """

    def __init__(
        self,
        backend: Optional[GenerativeBackend] = None,
        timeout_s: float = C.GENERATE_TIMEOUT_S,
        prompt_builder: Optional[PromptBuilder] = None,
    ) -> None:
        self._backend = backend
        self._timeout_s = timeout_s
        self._prompts = prompt_builder or PromptBuilder()
        self._log = get_logger()
        self.last_source: str = "none"

    @property
    def backend(self) -> Optional[GenerativeBackend]:
        return self._backend

    async def suggest(self, context: Context, now: Optional[datetime] = None) -> list[Suggestion]:
        """
        Return exactly four unique suggestions ordered HIGH→MEDIUM→LOW.

        Args:
            context: Fused situation.
            now: Local time for the time-of-day rules (defaults to now).
        """
        now = now or datetime.now()
        t0 = time.monotonic()

        if self._backend is None or not (context.emotion or context.location_label):
            suggestions = fallback_suggestions(context, now)
            self.last_source = "rules"
        else:
            result = await self._generate(context, now)
            suggestions = result.or_else(lambda err: self._fallback(context, now, err))

        self._log.perf(
            "suggestions", "suggest_done", (time.monotonic() - t0) * 1000.0,
            {"source": self.last_source, "phrases": [s.phrase for s in suggestions]},
        )
        return suggestions

    async def _generate(self, context: Context, now: datetime) -> Result[list[Suggestion]]:
        assert self._backend is not None
        prompt = self._prompts.build(context)
        result = await attempt(lambda: self._backend.generate(prompt), self._timeout_s)
        if not result.is_ok:
            return result
        try:
            parsed = parse_reply(result.value or "")
        except TransientBackendError as exc:
            return Result.err(exc)
        self.last_source = "model"
        # Partial replies are topped up from the rule phrases
        return Result.ok(finalize(parsed, rule_candidates(context, now) + list(PADDING)))

    def _fallback(self, context: Context, now: datetime, error: TransientBackendError) -> list[Suggestion]:
        self._log.warn("suggestions", "fallback_used", {"reason": str(error)})
        self.last_source = "rules"
        return fallback_suggestions(context, now)
