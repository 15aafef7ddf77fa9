"""Long-lived interpreter sessions.

libshell.shell
~~~~~~~~~~~~~~

A :class:`Shell` owns one interpreter process. Commands are queued with
:meth:`Shell.add`; a writer thread feeds them to the interpreter's stdin, each
followed by a completion marker, and a reader thread splits the merged
stdout/stderr stream back into per-command callbacks.
"""

from __future__ import annotations

import contextlib
import dataclasses
import logging
import subprocess
import threading
import typing as t

from libshell import exc
from libshell._internal.command_queue import CommandQueue
from libshell._internal.demux import OutputDemultiplexer
from libshell._internal.marker import marker_line
from libshell._internal.prober import Prober, ProbeStatus
from libshell.command import Command, CommandCapture, CommandResult
from libshell.constants import (
    DEFAULT_SHELL,
    EXIT_LINE,
    MAX_COMMANDS,
    OOM_SCORE_ADJ,
    PROBE_TEXT,
    PROCESS_EXIT_GRACE_SECONDS,
    SHELL_RETRIES,
    SHELL_TIMEOUT_SECONDS,
    UNEXPECTED_TERMINATION,
)

if t.TYPE_CHECKING:
    import sys
    import types

    if sys.version_info >= (3, 11):
        from typing import Self
    else:
        from typing_extensions import Self

    from libshell._internal.command_queue import QueueStats

logger = logging.getLogger(__name__)

CommandT = t.TypeVar("CommandT", bound=Command)


@dataclasses.dataclass(frozen=True)
class ShellStats:
    """Diagnostic snapshot of a :class:`Shell`."""

    pid: int | None
    alive: bool
    queue: QueueStats
    last_error: str | None


def _normalize_argv(argv: str | t.Sequence[str] | None) -> list[str]:
    if argv is None:
        return [DEFAULT_SHELL]
    if isinstance(argv, str):
        return [argv]
    return [str(a) for a in argv]


class Shell:
    """A running interpreter with a serialized command queue.

    The constructor spawns ``argv`` and blocks until the interpreter answers the
    startup probe. Prefer :meth:`Shell.start`, which retries spawning.

    Parameters
    ----------
    argv : str or list of str, optional
        Interpreter command line. Default: :data:`libshell.constants.DEFAULT_SHELL`
    timeout : float, optional
        Seconds to wait for the startup probe.
    max_commands : int
        Commands written before old history is compacted.
    probe_text : str
        Text echoed by the startup probe.
    oom_score_adj : int, optional
        Value for the best-effort OOM adjustment, ``None`` to skip it.

    Raises
    ------
    :exc:`libshell.exc.SpawnError`
        The process could not be spawned.
    :exc:`libshell.exc.StartupTimeout`
        The probe did not finish in time. The process is killed.
    :exc:`libshell.exc.AccessDenied`
        The probe hit end of stream or an I/O error. The process is killed.

    Examples
    --------
    >>> with Shell.start() as sh:
    ...     result = sh.run("echo hello", timeout=5)
    >>> result.output
    ['hello']
    >>> result.exit_code
    0
    """

    def __init__(
        self,
        argv: str | t.Sequence[str] | None = None,
        *,
        timeout: float | None = SHELL_TIMEOUT_SECONDS,
        max_commands: int = MAX_COMMANDS,
        probe_text: str = PROBE_TEXT,
        oom_score_adj: int | None = OOM_SCORE_ADJ,
    ) -> None:
        self.argv = _normalize_argv(argv)
        self.timeout = timeout
        self.last_error: str | None = None
        self._queue = CommandQueue(max_commands=max_commands)
        self._demux = OutputDemultiplexer(self._queue)
        self._writer_thread: threading.Thread | None = None
        self._reader_thread: threading.Thread | None = None

        logger.debug("Starting shell: %s", self.argv)
        try:
            self.process: subprocess.Popen[str] = subprocess.Popen(
                self.argv,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="backslashreplace",
            )
        except OSError as e:
            raise exc.SpawnError(self.argv, str(e)) from e

        prober = Prober(
            self.process,
            probe_text=probe_text,
            oom_score_adj=oom_score_adj,
        )
        status = prober.probe(timeout)

        if status is ProbeStatus.TIMEOUT:
            self._destroy(force=True, close_stdout=not prober.abandon())
            raise exc.StartupTimeout(
                timeout if timeout is not None else 0,
                prober.error or None,
            )
        if status is ProbeStatus.DENIED:
            self._destroy(force=True)
            raise exc.AccessDenied(prober.error or None)

        self._writer_thread = threading.Thread(
            target=self._writer,
            name=f"libshell-writer-{self.process.pid}",
            daemon=True,
        )
        self._reader_thread = threading.Thread(
            target=self._reader,
            name=f"libshell-reader-{self.process.pid}",
            daemon=True,
        )
        self._writer_thread.start()
        self._reader_thread.start()
        logger.debug("Shell ready: pid=%s", self.process.pid)

    @classmethod
    def start(
        cls,
        argv: str | t.Sequence[str] | None = None,
        *,
        timeout: float | None = SHELL_TIMEOUT_SECONDS,
        retries: int = SHELL_RETRIES,
        max_commands: int = MAX_COMMANDS,
        **kwargs: t.Any,
    ) -> Shell:
        """Spawn a shell, spawning again on denial or spawn failure.

        Each attempt starts a fresh process. A startup timeout is not retried.
        After ``retries`` extra attempts the last failure is raised.
        """
        attempt = 0
        while True:
            try:
                return cls(
                    argv,
                    timeout=timeout,
                    max_commands=max_commands,
                    **kwargs,
                )
            except (exc.AccessDenied, exc.SpawnError) as e:
                if attempt >= retries:
                    logger.debug("Could not start shell %s: %s", argv, e)
                    raise
                attempt += 1
                logger.debug(
                    "Shell start failed (%s), retry %d of %d",
                    e,
                    attempt,
                    retries,
                )

    # Context manager ---------------------------------------------------
    def __enter__(self) -> Self:
        """Return the shell."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        """Close the shell once its queue drains."""
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(argv={self.argv!r}, pid={self.pid})"

    # Public API --------------------------------------------------------
    @property
    def pid(self) -> int | None:
        """Process id of the interpreter."""
        return self.process.pid

    @property
    def is_closing(self) -> bool:
        """Whether :meth:`close` was called."""
        return self._queue.closing

    @property
    def is_alive(self) -> bool:
        """Whether the shell still accepts commands."""
        return not (self._queue.closing or self._queue.dead)

    def add(self, command: CommandT) -> CommandT:
        """Queue ``command`` and return it without waiting.

        Raises
        ------
        :exc:`libshell.exc.IllegalState`
            If the shell is closing or its process has gone away.

        Callbacks may add follow-up commands to the same shell; those adds
        never wait for history compaction.
        """
        from_reader = threading.current_thread() is self._reader_thread
        self._queue.append(command, block=not from_reader)
        return command

    def run(self, *lines: str, timeout: float | None = None) -> CommandResult:
        """Run a command, wait for it and return the captured result.

        Raises
        ------
        :exc:`libshell.exc.CommandTimeout`
            If the command does not complete within ``timeout`` seconds.
        :exc:`libshell.exc.UnexpectedTermination`
            If the shell went away first.
        """
        capture = self.add(CommandCapture(*lines))
        capture.wait_for_finish(timeout=timeout)
        return CommandResult.from_capture(capture)

    def close(self) -> None:
        """Finish queued commands, then exit the interpreter.

        Returns immediately; safe to call more than once and from any thread.
        """
        if self._queue.request_close():
            logger.debug("Closing shell: pid=%s", self.pid)

    def kill(self) -> None:
        """Kill the interpreter now; outstanding commands are terminated."""
        with contextlib.suppress(OSError):
            self.process.kill()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the writer and reader threads; return True if both exited."""
        for thread in (self._writer_thread, self._reader_thread):
            if thread is not None:
                thread.join(timeout=timeout)
        return not any(
            thread is not None and thread.is_alive()
            for thread in (self._writer_thread, self._reader_thread)
        )

    def get_stats(self) -> ShellStats:
        """Return diagnostic statistics for the shell."""
        return ShellStats(
            pid=self.pid,
            alive=self.is_alive,
            queue=self._queue.get_stats(),
            last_error=self.last_error,
        )

    # Internals ---------------------------------------------------------
    def _writer(self) -> None:
        stdin = self.process.stdin
        assert stdin is not None
        try:
            while True:
                command = self._queue.next_to_write()
                if command is None:
                    if not self._queue.dead:
                        stdin.write(f"\n{EXIT_LINE}\n")
                        stdin.flush()
                        logger.debug("Closing shell input: pid=%s", self.pid)
                    return

                assert command.sequence_id is not None
                logger.debug("Executing: %s", command.command)
                stdin.write(command.command)
                stdin.write(f"\n{marker_line(command.sequence_id)}\n")
                stdin.flush()
        except (OSError, ValueError) as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.debug("Shell writer stopped: %s", self.last_error)
        except Exception as e:  # pragma: no cover - unexpected
            self.last_error = str(e) or e.__class__.__name__
            logger.exception("Shell writer thread crashed")
        finally:
            with contextlib.suppress(OSError, ValueError):
                stdin.close()

    def _reader(self) -> None:
        stdout = self.process.stdout
        assert stdout is not None
        try:
            for raw in stdout:
                self._demux.feed_line(raw.rstrip("\r\n"))
            logger.debug("Read all output: pid=%s", self.pid)
        except (OSError, ValueError) as e:
            self.last_error = str(e) or e.__class__.__name__
            logger.debug("Shell reader stopped: %s", self.last_error)
        except Exception as e:  # pragma: no cover - unexpected
            self.last_error = str(e) or e.__class__.__name__
            logger.exception("Shell reader thread crashed")
        finally:
            self._destroy()
            logger.debug("Shell destroyed: pid=%s", self.pid)
            self._demux.finish(UNEXPECTED_TERMINATION)

    def _destroy(self, *, force: bool = False, close_stdout: bool = True) -> None:
        """Reap the process and close its pipes.

        Without ``force`` the process gets a short grace period to exit on its
        own before it is killed. Pass ``close_stdout=False`` while another
        thread is still blocked reading stdout: a forked child can keep the
        pipe open after the interpreter is gone, and closing it here would
        wait on that read.
        """
        proc = self.process
        if force:
            with contextlib.suppress(OSError):
                proc.kill()
        try:
            proc.wait(timeout=PROCESS_EXIT_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()

        streams = [proc.stdin, proc.stdout] if close_stdout else [proc.stdin]
        for stream in streams:
            if stream is not None:
                with contextlib.suppress(OSError, ValueError):
                    stream.close()
