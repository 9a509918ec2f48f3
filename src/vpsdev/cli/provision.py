"""Provisioning commands: vps, tailscale."""

from __future__ import annotations

import socket
import subprocess

import click
import requests

from ._common import console, fail, get_settings, info, success, warning

from rich.panel import Panel


def register_provision_commands(main: click.Group) -> None:
    """Register the provision command group."""

    @main.group()
    def provision():
        """Set up a VPS for running Claude Code (run as root)."""

    @provision.command("vps")
    @click.option("--user", "user", default=None, help="Service account (default: $CLAUDE_USER or claude).")
    @click.option("--dry-run", is_flag=True, help="Print what would change without changing it.")
    def provision_vps(user: str, dry_run: bool):
        """Install packages, Node.js, Claude Code, tmux config and helpers.

        Safe to run again: existing users, PATH lines and firewall rules
        are left alone.

        Examples:

            sudo vpsdev provision vps

            sudo CLAUDE_USER=dev vpsdev provision vps --dry-run
        """
        from ..provision import CommandRunner, ProvisionConfig, ProvisionError, Provisioner, next_steps

        settings = get_settings().vps
        config = ProvisionConfig(
            user=user or settings.user,
            session=settings.session,
            node_version=settings.node_version,
        )
        runner = CommandRunner(
            dry_run=dry_run,
            echo=lambda line: console.print(f"    {line}", markup=False, highlight=False),
        )
        provisioner = Provisioner(config, runner)

        console.print(Panel(
            f"User: [cyan]{config.user}[/]\nHome: [cyan]{config.home_dir}[/]",
            title="Claude Code VPS Setup",
            border_style="magenta",
        ))

        try:
            provisioner.run(
                on_start=lambda name: console.print(f"[blue]\\[STEP][/] {name}..."),
                on_done=lambda name, summary: success(summary),
            )
        except ProvisionError as exc:
            fail(str(exc))

        for note in provisioner.warnings:
            warning(note)

        console.print("\n[bold cyan]Next steps[/]")
        for i, step in enumerate(next_steps(config), 1):
            console.print(f"  {i}. {step}", markup=False, highlight=False)
        console.print(
            "\n  Helpers (as the service user): claude-attach, claude-start, claude-stop,"
            "\n  claude-restart, claude-status, claude-logs, claude-update\n"
        )

    @provision.command("tailscale")
    @click.option("--hostname", default=None, help="Set a new hostname for MagicDNS.")
    @click.option("--yes", "-y", is_flag=True, help="Reconfigure an existing install without asking.")
    def provision_tailscale(hostname: str, yes: bool):
        """Install Tailscale and join the tailnet with Tailscale SSH.

        Supports Ubuntu and Debian. Authentication opens a browser link.
        """
        from ..preflight import require_root
        from ..tailscale import (
            add_repository, bring_up, connection_info, detect_os, install, installed_version,
            next_steps, set_hostname, start_service,
        )

        try:
            require_root()
            release = detect_os()
        except (PermissionError, FileNotFoundError, ValueError) as exc:
            fail(str(exc))
        info(f"Detected OS: {release.pretty_name}")

        current = installed_version()
        if current:
            warning(f"Tailscale is already installed ({current})")
            if not yes and not click.confirm("Do you want to continue and reconfigure?", default=False):
                info("Exiting. Run 'sudo tailscale up --ssh' to reconfigure manually.")
                return

        try:
            info("Adding Tailscale repository...")
            add_repository(release.id, release.codename)
            success("Tailscale repository added")

            info("Installing Tailscale...")
            version = install()
            success(f"Tailscale installed ({version})")

            info("Starting Tailscale service...")
            start_service()
            success("Tailscale service is running")

            if hostname:
                set_hostname(hostname)
                success(f"Hostname changed to: {hostname}")
        except (OSError, RuntimeError, subprocess.SubprocessError, requests.RequestException) as exc:
            fail(str(exc))

        console.print(Panel(
            "A browser link will appear below. Open it, log in to Tailscale\n"
            "and authorize this machine. --ssh enables Tailscale SSH.",
            title="Authentication Required",
            border_style="yellow",
        ))
        if bring_up() != 0:
            fail("tailscale up failed")
        success("Tailscale is connected!")

        conn = connection_info(fallback_hostname=socket.gethostname())
        console.print(Panel(
            f"Tailscale IPv4:  [cyan]{conn.ip}[/]\n"
            f"Hostname:        [cyan]{conn.hostname}[/]\n"
            f"MagicDNS Name:   [cyan]{conn.dns_name}[/]",
            title="Tailscale Setup Complete",
            border_style="green",
        ))
        console.print(next_steps(conn), markup=False, highlight=False)

    main.add_command(provision)
