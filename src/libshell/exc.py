"""Provide exceptions used by libshell.

libshell.exc
~~~~~~~~~~~~

Notes
-----
Exceptions in this module inherit from :exc:`LibShellException`. Errors that
happen inside a shell's writer or reader thread are never raised to callers;
they are recorded on :attr:`libshell.shell.Shell.last_error` and surface as
:exc:`UnexpectedTermination` on the commands that were still outstanding.
"""

from __future__ import annotations


class LibShellException(Exception):
    """Base exception for all libshell errors."""


class StartupError(LibShellException):
    """Base exception for failures while bringing a shell up."""


class StartupTimeout(StartupError):
    """Raised if the interpreter does not answer the startup probe in time."""

    def __init__(self, timeout: float, diagnostic: str | None = None) -> None:
        msg = f"Shell did not become ready within {timeout} seconds"
        if diagnostic:
            msg += f" ({diagnostic})"
        super().__init__(msg)
        self.timeout = timeout
        self.diagnostic = diagnostic


class AccessDenied(StartupError):
    """Raised if the startup probe hits an I/O failure.

    For a privilege-elevation program this usually means the request for
    elevated access was refused.
    """

    def __init__(self, diagnostic: str | None = None) -> None:
        super().__init__(f"Access denied: {diagnostic or 'shell closed during startup'}")
        self.diagnostic = diagnostic


class SpawnError(StartupError):
    """Raised if the interpreter process cannot be spawned at all."""

    def __init__(self, argv: list[str], reason: str) -> None:
        super().__init__(f"Could not spawn {argv!r}: {reason}")
        self.argv = argv


class IllegalState(LibShellException, RuntimeError):
    """Raised when adding commands to a shell that is closing or dead."""


class CommandError(LibShellException):
    """Base exception for command-level failures."""


class UnexpectedTermination(CommandError):
    """Raised when waiting on a command the shell terminated before it finished."""

    def __init__(self, reason: str, command_id: int | None = None) -> None:
        msg = f"Command terminated: {reason}"
        if command_id is not None:
            msg += f" (command id: {command_id})"
        super().__init__(msg)
        self.reason = reason
        self.command_id = command_id


class CommandTimeout(CommandError):
    """Raised when a command does not reach a terminal state in time."""


class WaitTimeout(LibShellException):
    """Raised when a function times out waiting for a condition."""
