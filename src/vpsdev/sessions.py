"""
Persistent assistant sessions in tmux.

A session is a named tmux session whose first window runs ``claude``
and drops back to a shell when it exits, so detaching and reattaching
later picks up exactly where you left off. tmux owns the session table;
everything here is a thin query/command layer over its CLI.

Usage:
    from vpsdev.sessions import start
    start("bizgen", Path("~/Projects/bizgen"))   # create or reattach
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("vpsdev.sessions")

DEFAULT_SESSION = "claude"
DEFAULT_DIR = Path("~/Projects")
DEFAULT_WINDOW = "claude-code"


@dataclass
class SessionInfo:
    """One line of ``tmux list-sessions``."""

    name: str
    windows: int = 0
    attached: bool = False
    raw: str = ""


def _run(cmd: list[str], check: bool = False) -> subprocess.CompletedProcess:
    """Run a command and capture output.

    Args:
        cmd: Command and arguments.
        check: Raise on non-zero exit.

    Returns:
        CompletedProcess with stdout/stderr.
    """
    logger.debug("Running: %s", " ".join(cmd))
    return subprocess.run(cmd, capture_output=True, text=True, check=check)


def _tmux(*args: str, check: bool = False) -> subprocess.CompletedProcess:
    """Run a tmux subcommand."""
    return _run(["tmux", *args], check=check)


def claude_command(prompt: Optional[str] = None, claude_bin: str = "claude") -> str:
    """Shell command a new session runs in its first window.

    The trailing ``exec bash`` keeps the window open after the assistant
    exits.

    Args:
        prompt: Optional initial prompt.
        claude_bin: Assistant executable.

    Returns:
        str: Shell command line.
    """
    if prompt:
        return f"{claude_bin} {shlex.quote(prompt)}; exec bash"
    return f"{claude_bin}; exec bash"


def session_exists(name: str) -> bool:
    """Whether tmux has a session with this name."""
    return _tmux("has-session", "-t", name).returncode == 0


def list_sessions() -> list[SessionInfo]:
    """List active tmux sessions.

    Returns:
        list[SessionInfo]: Empty when no server is running.
    """
    r = _tmux(
        "list-sessions", "-F", "#{session_name}\t#{session_windows}\t#{session_attached}",
    )
    if r.returncode != 0:
        return []

    sessions = []
    for line in r.stdout.strip().splitlines():
        parts = line.split("\t")
        if not parts or not parts[0]:
            continue
        try:
            windows = int(parts[1]) if len(parts) > 1 else 0
        except ValueError:
            windows = 0
        attached = len(parts) > 2 and parts[2] not in ("", "0")
        sessions.append(SessionInfo(name=parts[0], windows=windows, attached=attached, raw=line))
    return sessions


def list_windows(name: str) -> list[str]:
    """Window descriptions for a session, as tmux prints them."""
    r = _tmux("list-windows", "-t", name)
    if r.returncode != 0:
        return []
    return [line for line in r.stdout.splitlines() if line.strip()]


def kill_session(name: str) -> bool:
    """Kill a session.

    Returns:
        bool: False if the session did not exist.
    """
    if not session_exists(name):
        logger.info("Session not found: %s", name)
        return False
    _tmux("kill-session", "-t", name)
    logger.info("Killed session: %s", name)
    return True


def create_session(
    name: str,
    directory: Path,
    prompt: Optional[str] = None,
    claude_bin: str = "claude",
) -> Path:
    """Create a detached session running the assistant.

    Args:
        name: Session name.
        directory: Working directory, created if missing.
        prompt: Optional initial prompt passed to the assistant.
        claude_bin: Assistant executable.

    Returns:
        Path: The resolved working directory.

    Raises:
        RuntimeError: If tmux refuses to create the session.
    """
    work_dir = directory.expanduser()
    if not work_dir.is_dir():
        logger.info("Creating directory %s", work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)

    r = _tmux(
        "new-session", "-d", "-s", name, "-c", str(work_dir),
        claude_command(prompt, claude_bin),
    )
    if r.returncode != 0:
        raise RuntimeError(f"tmux new-session failed: {r.stderr.strip()}")

    logger.info("Created session %s in %s", name, work_dir)
    return work_dir


def attach_session(name: str) -> int:
    """Attach the current terminal to a session.

    Runs interactively (no output capture) and returns once the client
    detaches.

    Returns:
        int: tmux exit code.
    """
    logger.info("Attaching to session %s", name)
    return subprocess.run(["tmux", "attach-session", "-t", name]).returncode


def start(
    name: str = DEFAULT_SESSION,
    directory: Path = DEFAULT_DIR,
    prompt: Optional[str] = None,
    force_new: bool = False,
    claude_bin: str = "claude",
) -> dict:
    """Create-or-attach a named session.

    Args:
        name: Session name.
        directory: Working directory for a new session.
        prompt: Initial prompt for a new session (ignored when reattaching).
        force_new: Kill an existing session of the same name first.
        claude_bin: Assistant executable.

    Returns:
        dict: 'killed', 'created', 'exit_code'.
    """
    result = {"killed": False, "created": False, "exit_code": 0}

    if force_new and session_exists(name):
        result["killed"] = kill_session(name)

    if not session_exists(name):
        create_session(name, directory, prompt, claude_bin)
        result["created"] = True

    result["exit_code"] = attach_session(name)
    return result


def ensure_claude_window(
    session: str = DEFAULT_SESSION,
    window: str = DEFAULT_WINDOW,
    directory: Path = Path("~/projects"),
    claude_bin: str = "claude",
) -> str:
    """Make sure the session has a window running the assistant.

    Creates the session if needed, then either selects the existing
    window or opens a new one and types the assistant command into it.

    Returns:
        str: 'selected' or 'created'.
    """
    work_dir = str(directory.expanduser())
    if not session_exists(session):
        _tmux("new-session", "-d", "-s", session, "-c", work_dir, check=True)

    if any(window in line for line in list_windows(session)):
        _tmux("select-window", "-t", f"{session}:{window}")
        return "selected"

    _tmux("new-window", "-t", session, "-n", window, "-c", work_dir, check=True)
    _tmux("send-keys", "-t", f"{session}:{window}", claude_bin, "Enter")
    return "created"


def stop_session(name: str = DEFAULT_SESSION, grace: float = 1.0) -> bool:
    """Interrupt whatever runs in the session, then kill it.

    Returns:
        bool: False if no such session.
    """
    if not session_exists(name):
        return False
    _tmux("send-keys", "-t", name, "C-c")
    time.sleep(grace)
    _tmux("kill-session", "-t", name)
    logger.info("Stopped session %s", name)
    return True
