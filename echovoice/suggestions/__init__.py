"""
suggestions — Context-aware phrase suggestions.

A generative backend proposes phrases; deterministic rule tables guarantee
four usable phrases whenever it cannot.
"""

from echovoice.suggestions.engine import SuggestionEngine
from echovoice.suggestions.fallback import fallback_suggestions
from echovoice.suggestions.models import Suggestion

__all__ = ["Suggestion", "SuggestionEngine", "fallback_suggestions"]
