"""Constants and environment-backed defaults for libshell."""

from __future__ import annotations

import os

#: Seconds to wait for a new shell to answer its startup probe.
#: Configurable via :envvar:`LIBSHELL_TIMEOUT_SECONDS`.
SHELL_TIMEOUT_SECONDS = float(os.getenv("LIBSHELL_TIMEOUT_SECONDS", 25))

#: Extra spawn attempts when a shell is denied or cannot be spawned.
#: Configurable via :envvar:`LIBSHELL_RETRIES`.
SHELL_RETRIES = int(os.getenv("LIBSHELL_RETRIES", 3))

#: Commands written before the queue is compacted.
#: Configurable via :envvar:`LIBSHELL_MAX_COMMANDS`.
MAX_COMMANDS = int(os.getenv("LIBSHELL_MAX_COMMANDS", 5000))

#: Interpreter used for unprivileged shells.
DEFAULT_SHELL = os.getenv("LIBSHELL_SHELL", "/bin/sh")

#: Privilege-elevation program used for root shells.
ROOT_SHELL = os.getenv("LIBSHELL_ROOT_SHELL", "su")

#: Value written to ``/proc/<pid>/oom_score_adj`` once a shell is ready.
OOM_SCORE_ADJ = int(os.getenv("LIBSHELL_OOM_SCORE_ADJ", -1000))

#: Sentinel echoed after every command, followed by its sequence id and exit code.
MARKER = "F*D^W@#FGF"

#: Text echoed by the startup probe.
PROBE_TEXT = "Started"

#: Reason handed to commands still outstanding when a shell goes away.
UNEXPECTED_TERMINATION = "Unexpected Termination."

#: Line written to end the interpreter once the queue is drained.
EXIT_LINE = "exit 0"

#: Seconds to wait for the interpreter to exit before killing it.
PROCESS_EXIT_GRACE_SECONDS = 1.0
