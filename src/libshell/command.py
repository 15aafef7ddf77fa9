"""Commands submitted to a :class:`libshell.shell.Shell`.

libshell.command
~~~~~~~~~~~~~~~~

A :class:`Command` carries the text to run and receives the results. Output
lines are delivered through :meth:`Command.on_output` while the command runs,
followed by exactly one terminal callback: :meth:`Command.on_finished` with the
exit code, or :meth:`Command.on_terminated` with a reason if the shell went
away first.

Callbacks run on the shell's reader thread. Keep them short. They may add
follow-up commands to the same shell but must not wait for them.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import threading

from libshell import exc

logger = logging.getLogger(__name__)


class CommandState(enum.Enum):
    """Lifecycle of a :class:`Command`."""

    PENDING = enum.auto()
    EXECUTING = enum.auto()
    FINISHED = enum.auto()
    TERMINATED = enum.auto()


class Command:
    """Text to execute in a shell, plus the callbacks that receive its results.

    Subclass and override :meth:`on_output`, :meth:`on_finished` and
    :meth:`on_terminated` to react to results, or use :class:`CommandCapture`
    to collect output.

    Parameters
    ----------
    *lines : str
        Command lines, joined with newlines before being written.
    command_id : int
        Caller-chosen id handed back to every callback.

    Examples
    --------
    >>> cmd = Command("echo hello", command_id=7)
    >>> cmd.command
    'echo hello'
    >>> cmd.state
    <CommandState.PENDING: 1>
    """

    def __init__(self, *lines: str, command_id: int = 0) -> None:
        if not lines:
            msg = "Command requires at least one line"
            raise ValueError(msg)
        self._command = "\n".join(lines)
        self.id = command_id
        self.state = CommandState.PENDING
        self.exit_code: int | None = None
        self.reason: str | None = None
        self.sequence_id: int | None = None
        self._queued = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}({self._command!r}, "
            f"command_id={self.id}, state={self.state.name})"
        )

    @property
    def command(self) -> str:
        """Text written to the shell."""
        return self._command

    @property
    def done(self) -> bool:
        """Whether the command reached a terminal state."""
        return self._done.is_set()

    # Callbacks ---------------------------------------------------------
    def on_output(self, command_id: int, line: str) -> None:
        """Receive one line of output."""

    def on_finished(self, command_id: int, exit_code: int) -> None:
        """Receive the exit code once the command completed."""

    def on_terminated(self, command_id: int, reason: str) -> None:
        """Receive the reason the command was cut short."""

    # Waiting -----------------------------------------------------------
    def wait(self, timeout: float | None = None) -> bool:
        """Wait for a terminal state; return False on timeout."""
        return self._done.wait(timeout=timeout)

    def wait_for_finish(self, timeout: float | None = None) -> int:
        """Wait for the command and return its exit code.

        Raises
        ------
        :exc:`libshell.exc.CommandTimeout`
            If the command is still running after ``timeout`` seconds.
        :exc:`libshell.exc.UnexpectedTermination`
            If the shell terminated the command.
        """
        if not self.wait(timeout=timeout):
            msg = f"Command {self.id} did not finish within {timeout} seconds"
            raise exc.CommandTimeout(msg)
        if self.state is CommandState.TERMINATED:
            raise exc.UnexpectedTermination(self.reason or "", command_id=self.id)
        assert self.exit_code is not None
        return self.exit_code

    # Transitions driven by the shell -----------------------------------
    def _start_execution(self, sequence_id: int) -> None:
        with self._lock:
            if self.state is not CommandState.PENDING:
                msg = f"Command {self.id} cannot start from {self.state.name}"
                raise exc.IllegalState(msg)
            self.state = CommandState.EXECUTING
            self.sequence_id = sequence_id

    @property
    def _terminal(self) -> bool:
        return self.state in (CommandState.FINISHED, CommandState.TERMINATED)

    def _output(self, line: str) -> None:
        if self._terminal:
            logger.debug("Dropping output for completed command %d", self.id)
            return
        try:
            self.on_output(self.id, line)
        except Exception:
            logger.exception("Output callback failed for command %d", self.id)

    def _finish(self, exit_code: int) -> None:
        with self._lock:
            if self._terminal:
                logger.warning("Command %d already completed; ignoring finish", self.id)
                return
            self.exit_code = exit_code
            self.state = CommandState.FINISHED
        try:
            self.on_finished(self.id, exit_code)
        except Exception:
            logger.exception("Finish callback failed for command %d", self.id)
        finally:
            self._done.set()

    def _terminate(self, reason: str) -> None:
        with self._lock:
            if self._terminal:
                logger.warning(
                    "Command %d already completed; ignoring termination",
                    self.id,
                )
                return
            self.reason = reason
            self.state = CommandState.TERMINATED
        try:
            self.on_terminated(self.id, reason)
        except Exception:
            logger.exception("Termination callback failed for command %d", self.id)
        finally:
            self._done.set()


class CommandCapture(Command):
    """Command that keeps every output line.

    Examples
    --------
    >>> cmd = CommandCapture("echo a", "echo b")
    >>> cmd._start_execution(0)
    >>> cmd._output("a")
    >>> cmd._output("b")
    >>> cmd._finish(0)
    >>> cmd.output
    ['a', 'b']
    >>> cmd.stdout
    'a\\nb'
    """

    def __init__(self, *lines: str, command_id: int = 0) -> None:
        super().__init__(*lines, command_id=command_id)
        self.output: list[str] = []

    def on_output(self, command_id: int, line: str) -> None:
        """Store the line."""
        self.output.append(line)

    @property
    def stdout(self) -> str:
        """Captured output joined by newlines."""
        return "\n".join(self.output)


@dataclasses.dataclass
class CommandResult:
    """Outcome of :meth:`libshell.shell.Shell.run`."""

    command: str
    output: list[str]
    exit_code: int

    @property
    def ok(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0

    @classmethod
    def from_capture(cls, capture: CommandCapture) -> CommandResult:
        """Build a result from a finished :class:`CommandCapture`."""
        assert capture.exit_code is not None
        return cls(
            command=capture.command,
            output=list(capture.output),
            exit_code=capture.exit_code,
        )
