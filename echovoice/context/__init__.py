"""
context — Context fusion.

Turns detector readings plus the user's manual choices into one immutable
:class:`Context` that the suggestion engine and emergency path read.
"""

from echovoice.context.aggregator import (
    Context,
    ContextAggregator,
    PhraseTone,
    fuse,
    tone_modifier_for,
)

__all__ = ["Context", "ContextAggregator", "PhraseTone", "fuse", "tone_modifier_for"]
