"""Startup handshake for freshly spawned shells."""

from __future__ import annotations

import contextlib
import enum
import logging
import threading
import typing as t

from libshell.constants import OOM_SCORE_ADJ, PROBE_TEXT

if t.TYPE_CHECKING:
    import subprocess

logger = logging.getLogger(__name__)


class ProbeStatus(enum.Enum):
    """Outcome of a :class:`Prober` run."""

    TIMEOUT = enum.auto()
    READY = enum.auto()
    DENIED = enum.auto()


class Prober:
    """Confirm a spawned process is a live interpreter.

    The probe echoes ``probe_text`` and reads until the exact text comes back.
    Blank lines are skipped; any other line is kept in :attr:`error` as a
    diagnostic. End of stream or an I/O error means the interpreter refused to
    start, which for ``su`` and friends usually means access was denied.

    The status stays :attr:`ProbeStatus.TIMEOUT` until the probe thread settles
    it, so a join that runs out of time reads as a timeout.
    """

    def __init__(
        self,
        process: subprocess.Popen[str],
        *,
        probe_text: str = PROBE_TEXT,
        oom_score_adj: int | None = OOM_SCORE_ADJ,
    ) -> None:
        self.process = process
        self.probe_text = probe_text
        self.oom_score_adj = oom_score_adj
        self.status = ProbeStatus.TIMEOUT
        self.error = ""
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._running = False
        self._abandoned = False

    def probe(self, timeout: float | None) -> ProbeStatus:
        """Run the handshake on its own thread and join it for ``timeout``."""
        self._thread = threading.Thread(
            target=self.run,
            name="libshell-probe",
            daemon=True,
        )
        with self._lock:
            self._running = True
        self._thread.start()
        self._thread.join(timeout=timeout)
        return self.status

    def abandon(self) -> bool:
        """Give up on a probe that is still reading.

        Returns True when the probe thread is still running. It then owns the
        process's stdout and closes it once its read returns, so the caller
        must not close stdout itself.
        """
        with self._lock:
            if not self._running:
                return False
            self._abandoned = True
            return True

    def run(self) -> None:
        """Perform the handshake; sets :attr:`status` and :attr:`error`."""
        try:
            self._handshake()
        finally:
            with self._lock:
                self._running = False
                abandoned = self._abandoned
            if abandoned and self.process.stdout is not None:
                with contextlib.suppress(OSError, ValueError):
                    self.process.stdout.close()

    def _handshake(self) -> None:
        stdin = self.process.stdin
        stdout = self.process.stdout
        assert stdin is not None
        assert stdout is not None

        try:
            stdin.write(f"echo {self.probe_text}\n")
            stdin.flush()

            while True:
                line = stdout.readline()
                if not line:
                    self.error = "end of stream during startup; access denied?"
                    self.status = ProbeStatus.DENIED
                    return
                line = line.rstrip("\r\n")
                if not line:
                    continue
                if line == self.probe_text:
                    break
                logger.debug("Unexpected startup output: %r", line)
                self.error = f"unexpected startup output: {line!r}"
        except (OSError, ValueError) as e:
            self.error = str(e) or "access denied?"
            self.status = ProbeStatus.DENIED
            return

        self._set_oom_score_adj()
        self.status = ProbeStatus.READY

    def _set_oom_score_adj(self) -> None:
        """Ask the kernel to spare the shell under memory pressure.

        Only privileged shells are allowed to do this; failures are expected
        and ignored, and all output goes to ``/dev/null``.
        """
        if self.oom_score_adj is None:
            return
        stdin = self.process.stdin
        assert stdin is not None
        pid = self.process.pid
        value = self.oom_score_adj
        try:
            stdin.write(
                f"(echo {value} > /proc/{pid}/oom_score_adj) >/dev/null 2>&1\n",
            )
            stdin.write(f"(echo {value} > /proc/$$/oom_score_adj) >/dev/null 2>&1\n")
            stdin.flush()
        except (OSError, ValueError):
            logger.debug("Could not adjust oom score for pid %s", pid, exc_info=True)
