"""
echovoice/core/logger.py — JSON-lines event log for EchoVoice.

Every entry is tagged with the :class:`Phase` (subsystem) that produced it and
appended to ``echovoice_{date}.jsonl`` in the log directory, which rolls over
at UTC midnight. Entries from the emergency path (trigger, dispatcher,
messaging) are additionally appended to ``emergency_audit.jsonl``, which is
never rotated, so the alert trail for a session stays in one file.

WARN and above are mirrored to stderr through stdlib logging.

Usage::

    from echovoice.core.logger import get_logger
    log = get_logger()
    log.info("detector", "ready", {"detector": "EmotionDetector"})
    log.perf("suggestions", "suggest_done", latency_ms=840.2, data={"source": "rules"})
"""

from __future__ import annotations

import json
import logging
import os
import platform
import sys
import threading
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, Any, NamedTuple, Optional, Union

# ── stdlib mirror (stderr) ───────────────────────────────────
_stdlib = logging.getLogger("echovoice")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.WARNING)
_stdlib.propagate = False

_LOG_DIR = Path(os.environ.get("ECHOVOICE_LOG_DIR", "logs"))
_AUDIT_FILE = "emergency_audit.jsonl"


class Phase(str, Enum):
    """Subsystems that write to the log."""

    SYSTEM = "system"
    MAIN = "main"
    CAPTURE = "capture"
    DETECTOR = "detector"
    LOCATION = "location"
    CONTEXT = "context"
    SUGGESTIONS = "suggestions"
    EMERGENCY = "emergency"
    MESSAGING = "messaging"
    SPEECH = "speech"
    PIPELINE = "pipeline"
    WEB_APP = "web_app"


#: Phases whose entries also go to the emergency audit file.
AUDIT_PHASES = frozenset({Phase.EMERGENCY, Phase.MESSAGING})


class _Level(NamedTuple):
    name: str
    mirror: Optional[int]  # stdlib level for the stderr mirror, None = file only


_DEBUG = _Level("DEBUG", None)
_INFO = _Level("INFO", None)
_PERF = _Level("PERF", None)
_WARN = _Level("WARN", logging.WARNING)
_ERROR = _Level("ERROR", logging.ERROR)
_CRITICAL = _Level("CRITICAL", logging.CRITICAL)

PhaseLike = Union[Phase, str]


class _JsonlFile:
    """Line-buffered append-only handle; opened lazily on first write."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fh: Optional[IO[str]] = None

    def write(self, line: str) -> None:
        if self._fh is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "a", encoding="utf-8", buffering=1)
        self._fh.write(line + "\n")

    def flush(self) -> None:
        if self._fh is not None:
            self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None


class EchoLogger:
    """
    Process-wide structured logger. Obtain it with :func:`get_logger`.

    One entry per line::

        {"timestamp_iso": "...", "level": "WARN", "phase": "emergency",
         "event": "escalation_failed", "data": {...}, "latency_ms": 12.5}

    ``latency_ms`` appears on PERF entries only.

    Args:
        log_dir: Directory for the daily and audit files.
    """

    def __init__(self, log_dir: Path = _LOG_DIR) -> None:
        self._lock = threading.Lock()
        self._log_dir = log_dir
        self._day = ""
        self._daily: Optional[_JsonlFile] = None
        self._audit = _JsonlFile(log_dir / _AUDIT_FILE)
        self.info(Phase.SYSTEM, "startup", {
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "pid": os.getpid(),
            "log_dir": str(log_dir),
        })

    # ──────────────────────────────────────────
    # Entry points
    # ──────────────────────────────────────────

    def debug(self, phase: PhaseLike, event: str, data: Optional[dict] = None) -> None:
        self._emit(_DEBUG, phase, event, data)

    def info(self, phase: PhaseLike, event: str, data: Optional[dict] = None) -> None:
        self._emit(_INFO, phase, event, data)

    def warn(self, phase: PhaseLike, event: str, data: Optional[dict] = None) -> None:
        self._emit(_WARN, phase, event, data)

    def error(self, phase: PhaseLike, event: str, data: Optional[dict] = None) -> None:
        self._emit(_ERROR, phase, event, data)

    def critical(self, phase: PhaseLike, event: str, data: Optional[dict] = None) -> None:
        self._emit(_CRITICAL, phase, event, data)

    def perf(
        self,
        phase: PhaseLike,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """Record how long *event* took, in milliseconds."""
        self._emit(_PERF, phase, event, data, latency_ms)

    def flush(self) -> None:
        with self._lock:
            if self._daily is not None:
                self._daily.flush()
            self._audit.flush()

    @property
    def current_path(self) -> Path:
        """Daily file currently being written."""
        return self._log_dir / f"echovoice_{self._day}.jsonl"

    @property
    def audit_path(self) -> Path:
        return self._audit.path

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _emit(
        self,
        level: _Level,
        phase: PhaseLike,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        tag = Phase(phase)
        now = datetime.now(tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level.name,
            "phase": tag.value,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            entry["latency_ms"] = round(latency_ms, 3)
        line = json.dumps(entry, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            self._daily_file(now).write(line)
            if tag in AUDIT_PHASES:
                self._audit.write(line)

        if level.mirror is not None:
            _stdlib.log(level.mirror, "[%s] %s | %s", tag.value, event, data or {})

    def _daily_file(self, now: datetime) -> _JsonlFile:
        # Caller holds self._lock
        day = now.strftime("%Y-%m-%d")
        if self._daily is None or day != self._day:
            if self._daily is not None:
                self._daily.close()
            self._day = day
            self._daily = _JsonlFile(self.current_path)
        return self._daily


# ──────────────────────────────────────────────────────────────
# Process-wide instance
# ──────────────────────────────────────────────────────────────

_instance: Optional[EchoLogger] = None
_instance_lock = threading.Lock()


def get_logger() -> EchoLogger:
    """Return the shared :class:`EchoLogger`, creating it on first use."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = EchoLogger()
    return _instance


def set_stderr_level(level: str) -> None:
    """Set the minimum level mirrored to stderr (``DEBUG``/``INFO``/``WARN``/``ERROR``)."""
    name = level.upper()
    _stdlib.setLevel(logging.WARNING if name == "WARN" else name)
