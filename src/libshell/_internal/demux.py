"""Route a shell's merged output back to the commands that produced it."""

from __future__ import annotations

import logging
import typing as t

from libshell._internal.marker import find_marker, parse_completion_record
from libshell.constants import MARKER, UNEXPECTED_TERMINATION

if t.TYPE_CHECKING:
    from libshell._internal.command_queue import CommandQueue

logger = logging.getLogger(__name__)


class OutputDemultiplexer:
    """Feed shell output lines in; get per-command callbacks out.

    Lines are attributed to the oldest written command that has not completed.
    A line containing the marker ends that command, but only when the sequence
    id in the record matches the number of completions read so far, so output
    that merely looks like a marker cannot complete the wrong command.
    """

    def __init__(self, queue: CommandQueue, *, marker: str = MARKER) -> None:
        self._queue = queue
        self._marker = marker
        self.finished = False

    def feed_line(self, line: str) -> None:
        """Feed one line of output, without its newline."""
        command = self._queue.current()
        if command is None:
            logger.debug("Discarding output with no command in flight: %r", line)
            return

        pos = find_marker(line, self._marker)
        if pos == -1:
            command._output(line)
            return

        if pos > 0:
            command._output(line[:pos])

        record = parse_completion_record(line[pos:])
        if record is None:
            return

        completed = self._queue.complete(record)
        if completed is not None:
            completed._finish(record.exit_code)

    def finish(self, reason: str = UNEXPECTED_TERMINATION) -> None:
        """Terminate every command that never completed, in queue order."""
        if self.finished:
            return
        self.finished = True
        remaining = self._queue.mark_dead()
        if remaining:
            logger.debug("Terminating %d outstanding command(s)", len(remaining))
        for command in remaining:
            command._terminate(reason)
