"""
Preflight checks for required binaries, root privileges and the OS.

Every command shells out to something (tmux, claude, ssh, scp,
tailscale). These helpers find the binary up front so a command can
fail with an install hint instead of a traceback halfway through.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

OS_RELEASE = Path("/etc/os-release")

INSTALL_HINTS: dict[str, str] = {
    "tmux": "Install with: brew install tmux (macOS) or apt-get install tmux",
    "claude": "Install with: npm install -g @anthropic-ai/claude-code",
    "ssh": "Install with: apt-get install openssh-client",
    "scp": "Install with: apt-get install openssh-client",
    "tailscale": "Install with: sudo vpsdev provision tailscale",
    "jq": "Install with: apt-get install jq",
    "npm": "Install Node.js from https://deb.nodesource.com",
}


class MissingToolError(RuntimeError):
    """A required executable is not on PATH."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.hint = INSTALL_HINTS.get(name, "")
        message = f"{name} is not installed or not in PATH"
        if self.hint:
            message = f"{message}. {self.hint}"
        super().__init__(message)


@dataclass
class ToolCheck:
    """Result of checking a single executable."""

    name: str
    path: str = ""
    version: str = ""

    @property
    def installed(self) -> bool:
        """Whether the tool was found on PATH."""
        return bool(self.path)

    @property
    def install_hint(self) -> str:
        """How to install the tool when it is missing."""
        return INSTALL_HINTS.get(self.name, "")


@dataclass
class OsRelease:
    """Fields of interest from /etc/os-release."""

    id: str
    version_id: str = ""
    codename: str = ""
    pretty_name: str = ""

    @property
    def is_debian_family(self) -> bool:
        """True for the distributions the setup commands support."""
        return self.id in ("ubuntu", "debian")


def check_tool(name: str, version_flag: Optional[str] = None) -> ToolCheck:
    """Check whether an executable is available.

    Args:
        name: Executable name.
        version_flag: Optional flag (e.g. ``--version``) to capture a version.

    Returns:
        ToolCheck for the executable.
    """
    path = shutil.which(name)
    if not path:
        return ToolCheck(name=name)

    version = ""
    if version_flag:
        try:
            result = subprocess.run(
                [path, version_flag], capture_output=True, text=True, timeout=10,
            )
            if result.returncode == 0 and result.stdout.strip():
                version = result.stdout.strip().splitlines()[0][:60]
        except (OSError, subprocess.TimeoutExpired):
            pass
    return ToolCheck(name=name, path=path, version=version)


def require_tools(*names: str) -> None:
    """Ensure every named executable is on PATH.

    Raises:
        MissingToolError: For the first tool that is missing.
    """
    for name in names:
        if shutil.which(name) is None:
            raise MissingToolError(name)


def is_root() -> bool:
    """Whether the current process runs with effective UID 0."""
    return os.geteuid() == 0


def require_root() -> None:
    """Raise PermissionError unless running as root."""
    if not is_root():
        raise PermissionError("This command must be run as root (use sudo)")


def read_os_release(path: Path = OS_RELEASE) -> OsRelease:
    """Parse an os-release file.

    Args:
        path: File to read. Defaults to /etc/os-release.

    Returns:
        OsRelease with ID, VERSION_ID, VERSION_CODENAME and PRETTY_NAME.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    if not path.exists():
        raise FileNotFoundError(f"Cannot detect OS. {path} not found.")

    fields: dict[str, str] = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        fields[key] = value.strip().strip('"').strip("'")

    return OsRelease(
        id=fields.get("ID", ""),
        version_id=fields.get("VERSION_ID", ""),
        codename=fields.get("VERSION_CODENAME", ""),
        pretty_name=fields.get("PRETTY_NAME", fields.get("ID", "")),
    )
