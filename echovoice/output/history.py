"""
echovoice/output/history.py — Append-only records of spoken phrases and
emergency events.
"""

from __future__ import annotations

import json
import threading
import time
from collections import deque
from pathlib import Path
from typing import Protocol, runtime_checkable

from echovoice.core.constants import C


@runtime_checkable
class HistorySink(Protocol):
    def append(self, record: dict) -> None:
        """Persist one record; raise ``OSError`` on failure."""
        ...


class JsonlHistorySink:
    """One JSON object per line; ``recorded_at`` is added when missing."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: dict) -> None:
        entry = {"recorded_at": time.time(), **record}
        line = json.dumps(entry, ensure_ascii=False, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def read_all(self) -> list[dict]:
        if not self.path.exists():
            return []
        with self._lock, self.path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]


class MemoryHistorySink:
    """Most recent records first, bounded to ``maxlen``."""

    def __init__(self, maxlen: int = C.RECENT_HISTORY_MAX) -> None:
        self._items: deque[dict] = deque(maxlen=maxlen)

    def append(self, record: dict) -> None:
        self._items.appendleft(dict(record))

    def recent(self) -> list[dict]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()

