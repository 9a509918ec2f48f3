"""
vpsdev CLI: run the assistant on a remote box and stay in touch with it.

This package organizes the CLI into modular command groups.
Each group lives in its own module; the main Click group is defined
here and every subcommand is registered via register functions.

Entry point: vpsdev.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="vpsdev")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def main(verbose: bool):
    """vpsdev: remote development environment for Claude Code.

    Persistent tmux sessions, background tasks, phone notifications,
    and encrypted config sync between your laptop and a VPS.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .session import register_session_commands
from .task import register_task_commands
from .notify import register_notify_commands
from .credentials import register_credentials_commands
from .provision import register_provision_commands
from .service import register_service_commands

register_session_commands(main)
register_task_commands(main)
register_notify_commands(main)
register_credentials_commands(main)
register_provision_commands(main)
register_service_commands(main)
