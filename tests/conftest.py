"""
tests/conftest.py — Shared fixtures.

No camera, network, or speech engine is touched; see tests/fakes.py for the
in-memory collaborators.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import replace

# Keep JSONL logs out of the working tree (read at logger import time)
os.environ.setdefault("ECHOVOICE_LOG_DIR", tempfile.mkdtemp(prefix="echovoice-logs-"))

import pytest

from echovoice.core.config import EchoConfig
from echovoice.core.scheduler import ManualScheduler

from fakes import FakeChannel, FakeHistory, FakeSpeech


@pytest.fixture()
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture()
def speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture()
def history() -> FakeHistory:
    return FakeHistory()


@pytest.fixture()
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture()
def config(tmp_path) -> EchoConfig:
    """Defaults with camera off and history under tmp_path."""
    base = EchoConfig()
    return replace(
        base,
        camera=replace(base.camera, enabled=False),
        history=replace(base.history, path=str(tmp_path / "history.jsonl")),
    )
