"""Metadata for libshell package."""

from __future__ import annotations

__title__ = "libshell"
__package_name__ = "libshell"
__version__ = "0.1.0"
__description__ = "Long-lived interpreter sessions with ordered command results"
__email__ = "libshell@example.org"
__author__ = "libshell contributors"
__github__ = "https://github.com/libshell/libshell"
__docs__ = "https://github.com/libshell/libshell#readme"
__tracker__ = "https://github.com/libshell/libshell/issues"
__pypi__ = "https://pypi.org/project/libshell/"
__license__ = "MIT"
__copyright__ = "Copyright 2026- libshell contributors"
