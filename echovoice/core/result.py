"""
echovoice/core/result.py — Ok/Err result for fallible backend calls.

The generative path returns a :class:`Result` instead of raising; callers
recover with :meth:`Result.or_else`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from echovoice.core.errors import TransientBackendError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value (``ok``) or a :class:`TransientBackendError` (``err``)."""

    value: Optional[T] = None
    error: Optional[TransientBackendError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def err(cls, error: TransientBackendError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def or_else(self, fallback: Callable[[TransientBackendError], T]) -> T:
        """Return the value, or the fallback's value computed from the error."""
        if self.error is None:
            return self.value  # type: ignore[return-value]
        return fallback(self.error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


async def attempt(
    factory: Callable[[], Awaitable[T]],
    timeout_s: float,
) -> Result[T]:
    """
    Await ``factory()`` under a hard timeout and capture any failure.

    Cancellation of the calling task is not captured; it propagates.

    Returns:
        ``Result.ok(value)`` or ``Result.err(TransientBackendError)``.
    """
    try:
        value = await asyncio.wait_for(factory(), timeout=timeout_s)
    except asyncio.TimeoutError:
        return Result.err(TransientBackendError(f"timed out after {timeout_s:.1f}s"))
    except TransientBackendError as exc:
        return Result.err(exc)
    except Exception as exc:  # noqa: BLE001
        err = TransientBackendError(f"{type(exc).__name__}: {exc}")
        err.__cause__ = exc
        return Result.err(err)
    return Result.ok(value)
