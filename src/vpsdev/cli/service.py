"""Service commands: status, logs, restart for claude-tmux.service."""

from __future__ import annotations

import subprocess

import click

from ._common import console, fail, info, success


def register_service_commands(main: click.Group) -> None:
    """Register the service command group."""

    @main.group()
    def service():
        """The boot-time tmux session service (claude-tmux.service)."""

    @service.command("status")
    def service_status_cmd():
        """Show whether the service is installed, enabled and running."""
        from ..systemd import SERVICE_NAME, service_status

        status = service_status()
        if not status.installed:
            console.print(f"\n  [yellow]{SERVICE_NAME} is not installed.[/]")
            console.print("  [dim]Install with: sudo vpsdev provision vps[/]\n")
            return

        state = "[green]active[/]" if status.active else "[red]inactive[/]"
        console.print(f"\n  [bold]{SERVICE_NAME}[/]")
        console.print(f"  State:     {state}")
        console.print(f"  Enabled:   {'yes' if status.enabled else 'no'}")
        if status.pid:
            console.print(f"  PID:       {status.pid}")
        if status.since:
            console.print(f"  Since:     {status.since}")
        if status.exit_code and not status.active:
            console.print(f"  Last exit: {status.exit_code}")
        console.print()

    @service.command("logs")
    @click.option("--lines", "-n", default=50, help="Number of journal lines.")
    @click.option("--follow", "-f", is_flag=True, help="Follow the journal.")
    def service_logs_cmd(lines: int, follow: bool):
        """Show recent journal entries for the service."""
        from ..systemd import service_logs

        if follow:
            command = service_logs(follow=True)
            info("Following systemd logs (Ctrl+C to stop)...")
            try:
                subprocess.run(command.split())
            except KeyboardInterrupt:
                pass
            return

        output = service_logs(lines=lines)
        click.echo(output or "No log entries.")
        info("Use 'vpsdev service logs -f' to follow logs in real-time")

    @service.command("restart")
    def service_restart_cmd():
        """Restart the service (needs root)."""
        from ..systemd import SERVICE_NAME, restart_service

        if restart_service():
            success(f"{SERVICE_NAME} restarted")
        else:
            fail(f"Failed to restart {SERVICE_NAME}. Try: sudo systemctl restart {SERVICE_NAME}")

    main.add_command(service)
