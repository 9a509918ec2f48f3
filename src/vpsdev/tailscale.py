"""
Tailscale mesh networking for the VPS.

Adds Tailscale's apt repository, installs and starts ``tailscaled``,
then runs ``tailscale up --ssh`` so the box joins the tailnet with
Tailscale SSH enabled. Authentication happens in a browser; the
command prints the login URL and waits.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from .preflight import OsRelease, read_os_release

logger = logging.getLogger("vpsdev.tailscale")

PKGS_BASE = "https://pkgs.tailscale.com/stable"
KEYRING_PATH = Path("/usr/share/keyrings/tailscale-archive-keyring.gpg")
SOURCES_PATH = Path("/etc/apt/sources.list.d/tailscale.list")
SUPPORTED_OS = ("ubuntu", "debian")
APT_PREREQS = ["curl", "gnupg", "apt-transport-https"]

NEXT_STEPS = """\
1. Install Tailscale on your laptop:
   https://tailscale.com/download  (macOS: brew install --cask tailscale)

2. Log in with the same Tailscale account

3. Enable MagicDNS in the admin console:
   https://login.tailscale.com/admin/dns

4. Connect to this VPS:
   ssh {hostname}
   ssh {ip}
   ssh {short}        (with MagicDNS)

5. Tailscale SSH handles authentication, no keys to manage."""


@dataclass
class ConnectionInfo:
    """How to reach this node on the tailnet."""

    ip: str = "Not available"
    hostname: str = ""
    dns_name: str = "Not available"

    @property
    def short_name(self) -> str:
        return self.hostname.split(".")[0]


def _run(cmd: list[str], check: bool = False, capture: bool = True) -> subprocess.CompletedProcess:
    """Run a command.

    Args:
        cmd: Command and arguments.
        check: Raise on non-zero exit.
        capture: Capture output (False for interactive commands).
    """
    logger.debug("Running: %s", " ".join(cmd))
    return subprocess.run(cmd, capture_output=capture, text=True, check=check)


def detect_os(path: Optional[Path] = None) -> OsRelease:
    """Read the OS and reject anything but Ubuntu/Debian.

    Raises:
        FileNotFoundError: If /etc/os-release is missing.
        ValueError: For an unsupported distribution.
    """
    release = read_os_release(path) if path else read_os_release()
    if release.id not in SUPPORTED_OS:
        raise ValueError(
            f"Unsupported OS: {release.id}. Only Ubuntu and Debian are supported."
        )
    if not release.codename:
        raise ValueError("Cannot determine the release codename from os-release")
    return release


def installed_version() -> str:
    """``tailscale version`` first line, or '' when not installed."""
    if not shutil.which("tailscale"):
        return ""
    r = _run(["tailscale", "version"])
    lines = r.stdout.strip().splitlines()
    return lines[0] if lines else "unknown"


def repository_urls(os_id: str, codename: str) -> tuple[str, str]:
    """(keyring URL, sources list URL) for a distribution release."""
    base = f"{PKGS_BASE}/{os_id}/{codename}"
    return f"{base}.noarmor.gpg", f"{base}.tailscale-keyring.list"


def _download(url: str) -> bytes:
    resp = requests.get(url, timeout=30)
    if resp.status_code >= 400:
        raise RuntimeError(f"Download failed (HTTP {resp.status_code}): {url}")
    return resp.content


def add_repository(
    os_id: str,
    codename: str,
    keyring: Path = KEYRING_PATH,
    sources: Path = SOURCES_PATH,
) -> None:
    """Install apt prerequisites and register Tailscale's repository.

    Raises:
        subprocess.CalledProcessError: If apt fails.
        RuntimeError: If a download fails.
    """
    _run(["apt-get", "update"], check=True)
    _run(["apt-get", "install", "-y", *APT_PREREQS], check=True)

    key_url, list_url = repository_urls(os_id, codename)
    keyring.parent.mkdir(parents=True, exist_ok=True)
    keyring.write_bytes(_download(key_url))
    sources.parent.mkdir(parents=True, exist_ok=True)
    sources.write_bytes(_download(list_url))
    logger.info("Added Tailscale repository for %s/%s", os_id, codename)


def install() -> str:
    """apt-get install tailscale.

    Returns:
        str: Installed version.
    """
    _run(["apt-get", "update"], check=True)
    _run(["apt-get", "install", "-y", "tailscale"], check=True)
    return installed_version()


def start_service(settle: float = 2.0) -> None:
    """Enable and start tailscaled.

    Raises:
        RuntimeError: If the daemon is not active afterwards.
    """
    _run(["systemctl", "enable", "--now", "tailscaled"], check=True)
    time.sleep(settle)
    r = _run(["systemctl", "is-active", "tailscaled"])
    if r.stdout.strip() != "active":
        status = _run(["systemctl", "status", "tailscaled", "--no-pager"]).stdout
        raise RuntimeError(f"Tailscale service failed to start:\n{status}")


def set_hostname(name: str) -> None:
    """Change the system hostname (used as the MagicDNS name)."""
    _run(["hostnamectl", "set-hostname", name], check=True)
    logger.info("Hostname changed to %s", name)


def bring_up() -> int:
    """Run ``tailscale up --ssh`` interactively.

    Returns:
        int: Exit code.
    """
    return _run(["tailscale", "up", "--ssh"], capture=False).returncode


def connection_info(fallback_hostname: str = "") -> ConnectionInfo:
    """Tailnet address and names of this node."""
    info = ConnectionInfo(hostname=fallback_hostname)

    r = _run(["tailscale", "ip", "-4"])
    if r.returncode == 0 and r.stdout.strip():
        info.ip = r.stdout.strip().splitlines()[0]

    r = _run(["tailscale", "status", "--self", "--json"])
    if r.returncode == 0:
        try:
            data = json.loads(r.stdout)
        except json.JSONDecodeError:
            data = {}
        node = data.get("Self") or {}
        info.hostname = node.get("HostName") or info.hostname
        info.dns_name = (node.get("DNSName") or "").rstrip(".") or info.dns_name
    return info


def next_steps(info: ConnectionInfo) -> str:
    """Instructions for connecting from another device."""
    return NEXT_STEPS.format(
        hostname=info.hostname or "<hostname>",
        ip=info.ip,
        short=info.short_name or "<hostname>",
    )
