"""Shared utilities for all CLI command modules.

Provides the Rich console instance, the status-line helpers every
command uses, and settings loading.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

from ..config import Settings, load_settings

console = Console()


def get_settings() -> Settings:
    """Resolved settings (defaults, config file, environment)."""
    return load_settings()


def _status(color: str, label: str, message: str) -> None:
    console.print(f"[{color}]\\[{label}][/] {escape(message)}", highlight=False)


def info(message: str) -> None:
    _status("blue", "INFO", message)


def success(message: str) -> None:
    _status("green", "SUCCESS", message)


def warning(message: str) -> None:
    _status("yellow", "WARNING", message)


def error(message: str) -> None:
    _status("red", "ERROR", message)


def task(message: str) -> None:
    _status("cyan", "TASK", message)


def fail(message: str, code: int = 1) -> None:
    """Print an error and exit non-zero."""
    error(message)
    raise SystemExit(code)
