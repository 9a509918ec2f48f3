"""Session commands: start, list, kill, window, stop, restart, status."""

from __future__ import annotations

import time
from pathlib import Path

import click

from ._common import console, fail, get_settings, info, success, warning

from rich.table import Table


def _require(*tools: str) -> None:
    from ..preflight import MissingToolError, require_tools

    try:
        require_tools(*tools)
    except MissingToolError as exc:
        fail(str(exc))


def register_session_commands(main: click.Group) -> None:
    """Register the session command group."""

    @main.group()
    def session():
        """Persistent assistant sessions in tmux.

        Detach with Ctrl+A then D (or Ctrl+B then D with stock tmux);
        the assistant keeps running until you come back.
        """

    @session.command("start")
    @click.option("--session", "-s", "name", default=None, help="Session name (default: claude).")
    @click.option("--directory", "-d", default=None, type=click.Path(), help="Working directory.")
    @click.option("--prompt", "-p", default=None, help="Initial prompt to send to Claude Code.")
    @click.option("--new", "-n", "force_new", is_flag=True, help="Kill an existing session first.")
    def session_start(name: str, directory: str, prompt: str, force_new: bool):
        """Create or reattach a named session running claude.

        Examples:

            vpsdev session start

            vpsdev session start -s bizgen -d ~/Projects/bizgen

            vpsdev session start -s review -p "Review the latest changes" -n
        """
        from ..sessions import session_exists, start

        settings = get_settings().session
        _require("tmux", settings.claude_bin)

        name = name or settings.name
        work_dir = Path(directory) if directory else settings.directory

        exists = session_exists(name)
        if force_new and exists:
            warning(f"Killing existing session: {name}")
        elif exists:
            info(f"Session '{name}' already exists")
        else:
            info(f"Creating new session: {name}")
            info(f"Working directory: {work_dir.expanduser()}")

        try:
            result = start(name, work_dir, prompt, force_new, settings.claude_bin)
        except RuntimeError as exc:
            fail(str(exc))
        if result["created"]:
            success(f"Session '{name}' created")
        raise SystemExit(result["exit_code"])

    @session.command("list")
    def session_list():
        """List active tmux sessions."""
        from ..sessions import list_sessions

        _require("tmux", get_settings().session.claude_bin)

        sessions = list_sessions()
        if not sessions:
            warning("No active tmux sessions found")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Session", style="cyan")
        table.add_column("Windows", justify="right")
        table.add_column("Attached")
        for s in sessions:
            table.add_row(s.name, str(s.windows), "yes" if s.attached else "")

        info("Active tmux sessions:")
        console.print(table)
        info("Attach to a session with: vpsdev session start -s <session-name>")

    @session.command("kill")
    @click.argument("name")
    def session_kill(name: str):
        """Kill a session by name."""
        from ..sessions import kill_session

        _require("tmux", get_settings().session.claude_bin)

        if kill_session(name):
            success(f"Killed session: {name}")
        else:
            warning(f"Session not found: {name}")

    @session.command("window")
    @click.option("--session", "-s", "name", default=None, help="Session name.")
    def session_window(name: str):
        """Start Claude Code in a dedicated window of the session.

        Creates the session if needed and selects the ``claude-code``
        window if it already exists.
        """
        from ..sessions import ensure_claude_window

        settings = get_settings().session
        _require("tmux")
        name = name or settings.name

        outcome = ensure_claude_window(name, settings.window, claude_bin=settings.claude_bin)
        if outcome == "selected":
            info("Claude Code window already exists. Selected it.")
        else:
            success("Claude Code window created.")
        info("Use 'claude-attach' or 'vpsdev session start' to connect.")

    @session.command("stop")
    @click.option("--session", "-s", "name", default=None, help="Session name.")
    def session_stop(name: str):
        """Interrupt the running process and kill the session."""
        from ..sessions import stop_session

        _require("tmux")
        name = name or get_settings().session.name

        info("Stopping Claude session...")
        if stop_session(name):
            success("Claude session stopped.")
        else:
            warning("No Claude session running.")

    @session.command("restart")
    @click.option("--session", "-s", "name", default=None, help="Session name.")
    def session_restart(name: str):
        """Stop the session, then start Claude Code in it again."""
        from ..sessions import ensure_claude_window, stop_session

        settings = get_settings().session
        _require("tmux")
        name = name or settings.name

        info("Restarting Claude Code session...")
        stop_session(name)
        time.sleep(2)
        ensure_claude_window(name, settings.window, claude_bin=settings.claude_bin)
        success("Done!")

    @session.command("status")
    @click.option("--session", "-s", "name", default=None, help="Session name.")
    def session_status(name: str):
        """Show session windows and the boot-time service."""
        from ..sessions import list_windows, session_exists
        from ..systemd import SERVICE_NAME, service_status

        _require("tmux")
        name = name or get_settings().session.name

        console.print("\n[bold]Claude Code Session Status[/]\n")
        if session_exists(name):
            console.print(f"  [green]ACTIVE[/] tmux session '{name}' is running\n")
            console.print("  Windows:")
            for line in list_windows(name):
                console.print(f"    {line}", markup=False, highlight=False)
        else:
            console.print("  [yellow]STOPPED[/] No tmux session found")

        console.print(f"\n[bold]{SERVICE_NAME}[/]\n")
        svc = service_status()
        if not svc.installed:
            console.print("  [dim]Service not installed[/]")
        else:
            state = "[green]active[/]" if svc.active else "[red]inactive[/]"
            console.print(f"  State:   {state}")
            console.print(f"  Enabled: {'yes' if svc.enabled else 'no'}")
            if svc.pid:
                console.print(f"  PID:     {svc.pid}")
            if svc.since:
                console.print(f"  Since:   {svc.since}")

        console.print("\n[bold]Quick commands[/]")
        console.print("  claude-attach   Connect to session")
        console.print("  claude-start    Start Claude Code")
        console.print("  claude-stop     Stop session")
        console.print("  claude-restart  Restart session\n")

    main.add_command(session)
