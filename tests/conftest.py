"""Fixtures shared by the libshell test suite."""

from __future__ import annotations

import logging
import subprocess

import pytest

from tests.helpers import PopenRecorder


@pytest.fixture
def popen_recorder(monkeypatch: pytest.MonkeyPatch) -> PopenRecorder:
    """Record processes spawned by libshell during a test."""
    recorder = PopenRecorder(subprocess.Popen)
    monkeypatch.setattr(subprocess, "Popen", recorder)
    return recorder


@pytest.fixture(autouse=True)
def shell_logging(caplog: pytest.LogCaptureFixture) -> None:
    """Capture libshell debug logs so failures show the shell conversation."""
    caplog.set_level(logging.DEBUG, logger="libshell")
