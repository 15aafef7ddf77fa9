"""Conftest.py (root-level).

We keep this in root pytest fixtures in pytest's doctest plugin to be available, as well
as avoiding conftest.py from being included in the wheel.

The plugin fixtures are imported here so the suite also runs from a source
checkout where the ``pytest11`` entry point is not installed.
"""

from __future__ import annotations

import typing as t

import pytest
from _pytest.doctest import DoctestItem

from libshell.command import Command, CommandCapture
from libshell.pytest_plugin import shell, shell_registry
from libshell.shell import Shell

__all__ = ("shell", "shell_registry")


@pytest.fixture(autouse=True)
def add_doctest_fixtures(
    request: pytest.FixtureRequest,
    doctest_namespace: dict[str, t.Any],
) -> None:
    """Configure doctest fixtures for pytest-doctest."""
    if isinstance(request._pyfuncitem, DoctestItem):
        doctest_namespace["Shell"] = Shell
        doctest_namespace["Command"] = Command
        doctest_namespace["CommandCapture"] = CommandCapture
        doctest_namespace["shell_registry"] = request.getfixturevalue(
            "shell_registry",
        )
        doctest_namespace["shell"] = request.getfixturevalue("shell")
