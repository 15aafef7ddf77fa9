"""Named, process-wide shells.

libshell.registry
~~~~~~~~~~~~~~~~~

Most programs want one unprivileged shell, one root shell and perhaps one
custom interpreter, each reused across many commands. :class:`ShellRegistry`
keeps at most one live :class:`~libshell.shell.Shell` per
:class:`ShellPurpose`.
"""

from __future__ import annotations

import enum
import logging
import threading
import typing as t

from libshell.constants import (
    DEFAULT_SHELL,
    MAX_COMMANDS,
    ROOT_SHELL,
    SHELL_RETRIES,
    SHELL_TIMEOUT_SECONDS,
)
from libshell.shell import Shell

logger = logging.getLogger(__name__)


class ShellPurpose(enum.Enum):
    """Slot a registered shell occupies."""

    SHELL = "shell"
    ROOT = "root"
    CUSTOM = "custom"


class ShellRegistry:
    """Hold at most one live shell per :class:`ShellPurpose`.

    Starting a purpose that already has a live shell returns that shell
    unchanged, even if other arguments differ. Shells that were closed or died
    are replaced on the next start.

    Examples
    --------
    >>> registry = ShellRegistry()
    >>> sh = registry.start_shell(timeout=5)
    >>> registry.start_shell() is sh
    True
    >>> registry.close_all()
    >>> registry.get(ShellPurpose.SHELL) is None
    True
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_locks = {purpose: threading.Lock() for purpose in ShellPurpose}
        self._shells: dict[ShellPurpose, Shell] = {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({sorted(p.value for p in self._shells)})"

    def get(self, purpose: ShellPurpose) -> Shell | None:
        """Return the live shell for ``purpose``, if any."""
        with self._lock:
            shell = self._shells.get(purpose)
            if shell is not None and not shell.is_alive:
                del self._shells[purpose]
                return None
            return shell

    def start(
        self,
        purpose: ShellPurpose,
        argv: str | t.Sequence[str] | None = None,
        *,
        timeout: float | None = SHELL_TIMEOUT_SECONDS,
        retries: int = SHELL_RETRIES,
        max_commands: int = MAX_COMMANDS,
        **kwargs: t.Any,
    ) -> Shell:
        """Return the live shell for ``purpose``, starting one if needed.

        Concurrent starts of one purpose are serialized. Spawning happens
        outside the registry lock, so other purposes stay usable meanwhile.
        """
        with self._start_locks[purpose]:
            existing = self.get(purpose)
            if existing is not None:
                logger.debug("Using existing %s shell", purpose.value)
                return existing

            logger.debug("Starting %s shell", purpose.value)
            shell = Shell.start(
                argv,
                timeout=timeout,
                retries=retries,
                max_commands=max_commands,
                **kwargs,
            )
            with self._lock:
                self._shells[purpose] = shell
            return shell

    def start_shell(self, **kwargs: t.Any) -> Shell:
        """Start or reuse the unprivileged shell."""
        return self.start(ShellPurpose.SHELL, DEFAULT_SHELL, **kwargs)

    def start_root_shell(self, **kwargs: t.Any) -> Shell:
        """Start or reuse the privileged shell."""
        return self.start(ShellPurpose.ROOT, ROOT_SHELL, **kwargs)

    def start_custom_shell(
        self,
        argv: str | t.Sequence[str],
        **kwargs: t.Any,
    ) -> Shell:
        """Start or reuse the custom shell running ``argv``."""
        return self.start(ShellPurpose.CUSTOM, argv, **kwargs)

    def close(self, purpose: ShellPurpose) -> None:
        """Close and forget the shell for ``purpose``; no-op if there is none."""
        with self._lock:
            shell = self._shells.pop(purpose, None)
        if shell is not None:
            shell.close()

    def close_shell(self) -> None:
        """Close the unprivileged shell."""
        self.close(ShellPurpose.SHELL)

    def close_root_shell(self) -> None:
        """Close the privileged shell."""
        self.close(ShellPurpose.ROOT)

    def close_custom_shell(self) -> None:
        """Close the custom shell."""
        self.close(ShellPurpose.CUSTOM)

    def close_all(self) -> None:
        """Close every registered shell."""
        for purpose in ShellPurpose:
            self.close(purpose)


#: Registry shared by the whole process.
default_registry = ShellRegistry()
