"""Completion marker framing layered on the shell's text stream.

After every command the writer sends::

    echo '<MARKER>' <sequence id> $?

which the shell expands to ``<MARKER> <sequence id> <exit code>``. The reader
splits each line at the marker; anything before it belongs to the running
command, the rest is a :class:`CompletionRecord`.
"""

from __future__ import annotations

import dataclasses
import logging
import shlex

from libshell.constants import MARKER

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class CompletionRecord:
    """Parsed ``<MARKER> <sequence id> <exit code>`` line."""

    sequence_id: int
    exit_code: int


def marker_line(sequence_id: int, marker: str = MARKER) -> str:
    """Return the shell line that echoes the completion record.

    >>> marker_line(3)
    "echo 'F*D^W@#FGF' 3 $?"
    """
    return f"echo {shlex.quote(marker)} {sequence_id} $?"


def find_marker(line: str, marker: str = MARKER) -> int:
    """Return the index of the marker in ``line``, or -1.

    >>> find_marker("abcF*D^W@#FGF 0 0")
    3
    >>> find_marker("plain output")
    -1
    """
    return line.find(marker)


def parse_completion_record(text: str) -> CompletionRecord | None:
    """Parse the text starting at a marker.

    Fields are whitespace separated. An unparsable sequence id becomes ``0``
    and an unparsable or missing exit code becomes ``-1``. Text with fewer
    than two fields is not a record.

    >>> parse_completion_record("F*D^W@#FGF 4 1")
    CompletionRecord(sequence_id=4, exit_code=1)
    >>> parse_completion_record("F*D^W@#FGF x y")
    CompletionRecord(sequence_id=0, exit_code=-1)
    >>> parse_completion_record("F*D^W@#FGF") is None
    True
    """
    fields = text.split()
    if len(fields) < 2:
        logger.debug("Ignoring truncated completion record: %r", text)
        return None

    try:
        sequence_id = int(fields[1])
    except ValueError:
        sequence_id = 0

    try:
        exit_code = int(fields[2])
    except (IndexError, ValueError):
        exit_code = -1

    return CompletionRecord(sequence_id=sequence_id, exit_code=exit_code)
