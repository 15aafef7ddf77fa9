"""libshell, long-lived interpreter sessions with ordered command results."""

from .__about__ import (
    __author__,
    __copyright__,
    __description__,
    __email__,
    __license__,
    __package_name__,
    __title__,
    __version__,
)
from .command import Command, CommandCapture, CommandResult, CommandState
from .registry import ShellPurpose, ShellRegistry, default_registry
from .shell import Shell

__all__ = (
    "Command",
    "CommandCapture",
    "CommandResult",
    "CommandState",
    "Shell",
    "ShellPurpose",
    "ShellRegistry",
    "__author__",
    "__copyright__",
    "__description__",
    "__email__",
    "__license__",
    "__package_name__",
    "__title__",
    "__version__",
    "default_registry",
)
