"""Test helpers for observing spawned interpreter processes."""

from __future__ import annotations

import subprocess
import typing as t


class PopenRecorder:
    """Wrap :class:`subprocess.Popen` and remember every spawn attempt."""

    def __init__(self, popen: t.Callable[..., subprocess.Popen[str]]) -> None:
        self._popen = popen
        self.attempts = 0
        self.processes: list[subprocess.Popen[str]] = []

    def __call__(self, *args: t.Any, **kwargs: t.Any) -> subprocess.Popen[str]:
        """Spawn through the real Popen and record the result."""
        self.attempts += 1
        proc = self._popen(*args, **kwargs)
        self.processes.append(proc)
        return proc
