"""libshell pytest plugin."""

from __future__ import annotations

import logging
import typing as t

import pytest

from libshell.registry import ShellRegistry
from libshell.test.constants import RETRY_TIMEOUT_SECONDS

if t.TYPE_CHECKING:
    from collections.abc import Generator

    from libshell.shell import Shell

logger = logging.getLogger(__name__)


@pytest.fixture
def shell_registry() -> Generator[ShellRegistry, None, None]:
    """Return a fresh :class:`libshell.ShellRegistry`.

    Every shell it started is closed at teardown.

    >>> sh = shell_registry.start_shell()
    >>> shell_registry.start_shell() is sh
    True
    """
    registry = ShellRegistry()
    yield registry
    registry.close_all()


@pytest.fixture
def shell(shell_registry: ShellRegistry) -> Shell:
    """Return a started default :class:`libshell.Shell`.

    >>> shell.run("echo hi", timeout=5).output
    ['hi']
    """
    sh = shell_registry.start_shell(timeout=RETRY_TIMEOUT_SECONDS)
    logger.debug("shell fixture ready: pid=%s", sh.pid)
    return sh
