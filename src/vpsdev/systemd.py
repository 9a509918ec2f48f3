"""
Systemd service that keeps the assistant's tmux session alive across reboots.

Installs ``claude-tmux.service`` as a system unit running as the
service account. The unit forks a detached tmux session at boot and
restarts it on failure; ``vpsdev session start`` then attaches to it.

Usage:
    from vpsdev.systemd import install_service, service_status
    install_service(user="claude", home=Path("/home/claude"))
    status = service_status()
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("vpsdev.systemd")

SERVICE_NAME = "claude-tmux.service"
SYSTEM_UNIT_DIR = Path("/etc/systemd/system")
TMUX_BIN = "/usr/bin/tmux"


@dataclass
class ServiceStatus:
    """Status of the tmux systemd service.

    Attributes:
        installed: Whether the unit file exists.
        enabled: Whether the service is enabled at boot.
        active: Whether the service is currently running.
        pid: Main PID (0 if not running).
        since: When the service entered the active state.
        exit_code: Last exit status if the service stopped.
    """

    installed: bool = False
    enabled: bool = False
    active: bool = False
    pid: int = 0
    since: str = ""
    exit_code: str = ""


def _run(cmd: list[str], check: bool = False) -> subprocess.CompletedProcess:
    """Run a command and capture output.

    Args:
        cmd: Command and arguments.
        check: Raise on non-zero exit.

    Returns:
        CompletedProcess with stdout/stderr.
    """
    return subprocess.run(
        cmd, capture_output=True, text=True, timeout=30, check=check,
    )


def _systemctl(*args: str, check: bool = False) -> subprocess.CompletedProcess:
    """Run a system-level systemctl command."""
    return _run(["systemctl", *args], check=check)


def generate_unit_file(user: str, home: Path, session: str = "claude") -> str:
    """Render the unit file.

    Args:
        user: Service account the session runs as.
        home: That account's home directory.
        session: tmux session name.

    Returns:
        str: Complete unit file content.
    """
    return f"""[Unit]
Description=Claude Code tmux Session
After=network.target

[Service]
Type=forking
User={user}
Group={user}
WorkingDirectory={home}

ExecStart={TMUX_BIN} new-session -d -s {session} -c {home}/projects
ExecStop={TMUX_BIN} kill-session -t {session}

Restart=on-failure
RestartSec=10

Environment="HOME={home}"
Environment="PATH=/usr/local/bin:/usr/bin:/bin:{home}/.local/bin"

[Install]
WantedBy=multi-user.target
"""


def install_service(
    user: str,
    home: Path,
    session: str = "claude",
    unit_dir: Optional[Path] = None,
    enable: bool = True,
) -> dict:
    """Write the unit, reload systemd, and enable it at boot.

    Rewriting an identical unit is harmless, so this is safe to repeat.

    Args:
        user: Service account.
        home: Service account home.
        session: tmux session name.
        unit_dir: Target directory for the unit file.
        enable: Whether to enable the service.

    Returns:
        dict: 'unit_path', 'installed', 'enabled'.

    Raises:
        subprocess.CalledProcessError: If daemon-reload or enable fails.
    """
    target = unit_dir or SYSTEM_UNIT_DIR
    target.mkdir(parents=True, exist_ok=True)
    unit_path = target / SERVICE_NAME
    unit_path.write_text(generate_unit_file(user, home, session), encoding="utf-8")
    logger.info("Wrote %s", unit_path)

    result = {"unit_path": str(unit_path), "installed": True, "enabled": False}

    _systemctl("daemon-reload", check=True)
    if enable:
        _systemctl("enable", SERVICE_NAME, check=True)
        result["enabled"] = True
    return result


def service_status(unit_dir: Optional[Path] = None) -> ServiceStatus:
    """Query the current status of the service.

    Returns:
        ServiceStatus: Detailed status information.
    """
    status = ServiceStatus()
    status.installed = ((unit_dir or SYSTEM_UNIT_DIR) / SERVICE_NAME).exists()
    if not status.installed:
        return status

    r = _systemctl("is-enabled", SERVICE_NAME)
    status.enabled = r.stdout.strip() == "enabled"

    r = _systemctl("is-active", SERVICE_NAME)
    status.active = r.stdout.strip() == "active"

    r = _systemctl("show", SERVICE_NAME, "--property=MainPID,ActiveEnterTimestamp,ExecMainStatus")
    for line in r.stdout.strip().splitlines():
        if "=" not in line:
            continue
        key, _, value = line.partition("=")
        if key == "MainPID":
            try:
                status.pid = int(value)
            except ValueError:
                pass
        elif key == "ActiveEnterTimestamp":
            status.since = value
        elif key == "ExecMainStatus":
            status.exit_code = value

    return status


def service_logs(lines: int = 50, follow: bool = False) -> str:
    """Recent journal entries for the service.

    Args:
        lines: Number of recent lines to return.
        follow: If True, returns only the command to run (can't stream).

    Returns:
        str: Log output or the follow command.
    """
    if follow:
        return f"journalctl -u {SERVICE_NAME} -f"

    r = _run(["journalctl", "-u", SERVICE_NAME, "-n", str(lines), "--no-pager"])
    return r.stdout


def restart_service() -> bool:
    """Restart the service.

    Returns:
        bool: True if the restart command succeeded.
    """
    r = _systemctl("restart", SERVICE_NAME)
    return r.returncode == 0
