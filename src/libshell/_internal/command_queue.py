"""Command queue shared by a shell's caller, writer and reader threads."""

from __future__ import annotations

import dataclasses
import logging
import threading
import typing as t

from libshell import exc
from libshell.command import CommandState
from libshell.constants import MAX_COMMANDS

if t.TYPE_CHECKING:
    from libshell._internal.marker import CompletionRecord
    from libshell.command import Command

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class QueueStats:
    """Snapshot of a :class:`CommandQueue`."""

    size: int
    write_cursor: int
    read_cursor: int
    total_written: int
    total_read: int
    compactions: int
    closing: bool
    dead: bool

    @property
    def pending(self) -> int:
        """Commands added but not yet written."""
        return self.size - self.write_cursor

    @property
    def in_flight(self) -> int:
        """Commands written whose completion has not been read."""
        return self.write_cursor - self.read_cursor


class CommandQueue:
    """Ordered command history with write and read cursors.

    ``commands[:read_cursor]`` are complete, ``commands[read_cursor:write_cursor]``
    are written and awaiting their completion record, and
    ``commands[write_cursor:]`` are waiting to be written. ``total_written`` and
    ``total_read`` count over the whole session and become the sequence ids on
    the wire; the cursors are rebased whenever old history is compacted away.

    All state is guarded by one :class:`threading.Condition`.
    """

    def __init__(self, max_commands: int = MAX_COMMANDS) -> None:
        if max_commands < 1:
            msg = "max_commands must be at least 1"
            raise ValueError(msg)
        self.max_commands = max_commands
        self._cond = threading.Condition()
        self._commands: list[Command] = []
        self.write_cursor = 0
        self.read_cursor = 0
        self.total_written = 0
        self.total_read = 0
        self.closing = False
        self.dead = False
        self.compacting = False
        self.compactions = 0

    def __len__(self) -> int:
        with self._cond:
            return len(self._commands)

    # Caller side -------------------------------------------------------
    def append(self, command: Command, *, block: bool = True) -> None:
        """Queue ``command`` and wake the writer.

        With ``block`` the call waits while history is being compacted. The
        reader thread must pass ``block=False``: compaction waits for it.
        """
        with self._cond:
            self._check_open()
            if block:
                self._cond.wait_for(lambda: not self.compacting)
                self._check_open()
            if command._queued or command.state is not CommandState.PENDING:
                msg = f"Command {command.id} was already added to a shell"
                raise exc.IllegalState(msg)
            command._queued = True
            self._commands.append(command)
            self._cond.notify_all()

    def request_close(self) -> bool:
        """Ask the writer to drain and exit; return True on the first call."""
        with self._cond:
            if self.closing:
                return False
            self.closing = True
            self._cond.notify_all()
            return True

    def _check_open(self) -> None:
        if self.closing:
            msg = "Unable to add commands to a closed shell"
            raise exc.IllegalState(msg)
        if self.dead:
            msg = "Unable to add commands to a terminated shell"
            raise exc.IllegalState(msg)

    # Writer side -------------------------------------------------------
    def next_to_write(self) -> Command | None:
        """Block until a command can be written and claim it.

        Returns ``None`` once the queue is closing and fully written, or when
        the shell died.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: (
                    self.dead
                    or self.closing
                    or self.write_cursor < len(self._commands)
                ),
            )

            if self.write_cursor >= self.max_commands and not self.dead:
                self.compacting = True
                try:
                    logger.debug(
                        "Waiting for read and write to catch up before cleanup",
                    )
                    self._cond.wait_for(
                        lambda: self.dead or self.read_cursor == self.write_cursor,
                    )
                    if not self.dead:
                        self.compact()
                finally:
                    self.compacting = False
                    self._cond.notify_all()

            if self.dead:
                return None

            if self.write_cursor < len(self._commands):
                command = self._commands[self.write_cursor]
                command._start_execution(self.total_written)
                self.write_cursor += 1
                self.total_written += 1
                return command

            return None

    def compact(self) -> int:
        """Drop the oldest completed history and rebase the cursors.

        Only valid when every written command has been read. Returns the
        number of discarded entries.
        """
        with self._cond:
            if self.read_cursor != self.write_cursor:
                msg = (
                    "Cannot compact with unread completions "
                    f"(read={self.read_cursor}, write={self.write_cursor})"
                )
                raise RuntimeError(msg)

            to_clean = max(1, self.max_commands - self.max_commands // 4)
            to_clean = min(to_clean, self.read_cursor)
            logger.debug("Cleaning up: %d", to_clean)

            del self._commands[:to_clean]
            self.read_cursor -= to_clean
            self.write_cursor -= to_clean
            self.compactions += 1
            return to_clean

    # Reader side -------------------------------------------------------
    def current(self) -> Command | None:
        """Return the written command whose completion is awaited next."""
        with self._cond:
            if self.read_cursor < self.write_cursor:
                return self._commands[self.read_cursor]
            return None

    def complete(self, record: CompletionRecord) -> Command | None:
        """Advance past the current command if ``record`` belongs to it.

        Records whose sequence id differs from ``total_read`` are ignored and
        ``None`` is returned.
        """
        with self._cond:
            if self.read_cursor >= self.write_cursor:
                return None
            if record.sequence_id != self.total_read:
                logger.debug(
                    "Ignoring completion record %r, expected sequence id %d",
                    record,
                    self.total_read,
                )
                return None
            command = self._commands[self.read_cursor]
            self.read_cursor += 1
            self.total_read += 1
            self._cond.notify_all()
            return command

    def mark_dead(self) -> list[Command]:
        """Stop accepting work and hand back every unfinished command in order."""
        with self._cond:
            if self.dead:
                return []
            self.dead = True
            remaining = self._commands[self.read_cursor:]
            self.read_cursor = 0
            self._cond.notify_all()
            return remaining

    # Accessors ---------------------------------------------------------
    def get_stats(self) -> QueueStats:
        """Return a consistent snapshot of the cursors and counters."""
        with self._cond:
            return QueueStats(
                size=len(self._commands),
                write_cursor=self.write_cursor,
                read_cursor=self.read_cursor,
                total_written=self.total_written,
                total_read=self.total_read,
                compactions=self.compactions,
                closing=self.closing,
                dead=self.dead,
            )
