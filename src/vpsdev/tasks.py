"""
Background assistant tasks with logging.

Runs ``claude "<prompt>"`` either in the foreground (output shown and
tee'd to the log, exit code propagated) or as a detached worker
process that survives the terminal closing. Every run gets a log file
in ``~/.claude-tasks/`` (or ``$CLAUDE_TASK_LOG_DIR``):

    ==============================================================================
    Claude Code Task Log
    ==============================================================================
    Task Name:  <name or unnamed>
    Started:    <date>
    ...
    <assistant output>
    ...
    Task completed at: <date>
    Duration: 2m 5s
    Exit code: 0
    ==============================================================================

When a Slack webhook is configured, completion (success or failure) is
posted there too. Background failures are only visible in the log and
the webhook; nothing supervises the worker.
"""

from __future__ import annotations

import logging
import re
import subprocess
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import BaseModel, field_validator

from .notify.slack import post_task_completion

logger = logging.getLogger("vpsdev.tasks")

RULE = "=" * 78
DATE_FORMAT = "%a %b %d %H:%M:%S %Y"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
NAME_LIMIT = 30


class TaskSpec(BaseModel):
    """Everything a run needs; serialized to hand off to the worker."""

    prompt: str
    work_dir: Path
    log_file: Path
    name: str = ""
    slack_webhook: Optional[str] = None
    claude_bin: str = "claude"
    started_at: float = 0.0

    @field_validator("work_dir", "log_file")
    @classmethod
    def paths_must_be_absolute(cls, v: Path) -> Path:
        """Anchor paths to the caller's cwd; the worker runs in work_dir."""
        return v.expanduser().resolve()

    @property
    def label(self) -> str:
        """Task name for humans."""
        return self.name or "unnamed"


# ---------------------------------------------------------------------------
# Naming and formatting
# ---------------------------------------------------------------------------


def sanitize_task_name(name: str) -> str:
    """Filename-safe task name: spaces to underscores, alnum/_/- only, 30 chars."""
    return re.sub(r"[^A-Za-z0-9_-]", "", name.replace(" ", "_"))[:NAME_LIMIT]


def log_filename(log_dir: Path, name: str = "", timestamp: Optional[str] = None) -> Path:
    """Log path for a new task.

    Args:
        log_dir: Task log directory.
        name: Optional task name.
        timestamp: ``YYYYmmdd_HHMMSS`` override.

    Returns:
        Path: ``<name>_<ts>.log`` or ``claude_task_<ts>.log``.
    """
    ts = timestamp or datetime.now().strftime(TIMESTAMP_FORMAT)
    sanitized = sanitize_task_name(name) if name else ""
    if sanitized:
        return log_dir / f"{sanitized}_{ts}.log"
    return log_dir / f"claude_task_{ts}.log"


def format_duration(seconds: float) -> str:
    """``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    total = max(int(seconds), 0)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def ensure_log_dir(log_dir: Path) -> bool:
    """Create the log directory.

    Returns:
        bool: True if it had to be created.
    """
    path = log_dir.expanduser()
    if path.is_dir():
        return False
    path.mkdir(parents=True, exist_ok=True)
    logger.info("Created log directory: %s", path)
    return True


def write_header(spec: TaskSpec, now: Optional[datetime] = None) -> None:
    """Start the log file (truncating any previous content)."""
    started = (now or datetime.now()).strftime(DATE_FORMAT)
    spec.log_file.parent.mkdir(parents=True, exist_ok=True)
    spec.log_file.write_text(
        "\n".join([
            RULE,
            "Claude Code Task Log",
            RULE,
            f"Task Name:  {spec.label}",
            f"Started:    {started}",
            f"Directory:  {spec.work_dir}",
            f"Log File:   {spec.log_file}",
            RULE,
            "Prompt:",
            spec.prompt,
            RULE,
            "",
            "",
        ]),
        encoding="utf-8",
    )


def write_footer(log_file: Path, duration: str, exit_code: int, now: Optional[datetime] = None) -> None:
    """Append the completion footer."""
    finished = (now or datetime.now()).strftime(DATE_FORMAT)
    with open(log_file, "a", encoding="utf-8") as f:
        f.write(
            "\n".join([
                "",
                RULE,
                f"Task completed at: {finished}",
                f"Duration: {duration}",
                f"Exit code: {exit_code}",
                RULE,
                "",
            ])
        )


def _finish(spec: TaskSpec, exit_code: int) -> str:
    """Write the footer, notify, and return the formatted duration."""
    duration = format_duration(time.time() - spec.started_at)
    write_footer(spec.log_file, duration, exit_code)
    post_task_completion(spec.slack_webhook, spec.label, exit_code, duration, str(spec.log_file))
    logger.info("Task %s finished with exit code %d after %s", spec.label, exit_code, duration)
    return duration


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


def run_foreground(
    spec: TaskSpec,
    echo: Callable[[str], None] = lambda line: print(line, end=""),
) -> tuple[int, str]:
    """Run the task and wait, streaming output to ``echo`` and the log.

    Returns:
        (exit code, formatted duration).
    """
    spec.started_at = spec.started_at or time.time()
    write_header(spec)

    proc = subprocess.Popen(
        [spec.claude_bin, spec.prompt],
        cwd=spec.work_dir,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="replace",
    )
    with open(spec.log_file, "a", encoding="utf-8") as log:
        assert proc.stdout is not None
        for line in proc.stdout:
            echo(line)
            log.write(line)
            log.flush()
    exit_code = proc.wait()

    return exit_code, _finish(spec, exit_code)


def launch_background(spec: TaskSpec) -> int:
    """Start a detached worker for the task.

    The worker runs in its own session with stdout/stderr appended to
    the task log, so closing the terminal does not stop it.

    Returns:
        int: Worker PID.
    """
    spec.started_at = spec.started_at or time.time()
    write_header(spec)

    with open(spec.log_file, "a", encoding="utf-8") as log:
        proc = subprocess.Popen(
            [sys.executable, "-m", "vpsdev", "task-worker", spec.model_dump_json()],
            cwd=spec.work_dir,
            stdin=subprocess.DEVNULL,
            stdout=log,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    logger.info("Started background task %s (PID %d)", spec.label, proc.pid)
    return proc.pid


def run_worker(spec: TaskSpec) -> int:
    """Body of the detached worker: run, footer, notify.

    Output goes to the worker's own stdout, which is the task log.

    Returns:
        int: Assistant exit code.
    """
    sys.stdout.flush()
    try:
        exit_code = subprocess.run(
            [spec.claude_bin, spec.prompt],
            cwd=spec.work_dir,
            stdin=subprocess.DEVNULL,
        ).returncode
    except OSError as exc:
        logger.error("Could not start %s: %s", spec.claude_bin, exc)
        exit_code = 127
    _finish(spec, exit_code)
    return exit_code


def follow(
    log_file: Path,
    poll: float = 0.5,
    stop: Optional[Callable[[], bool]] = None,
) -> Iterator[str]:
    """Yield lines appended to a file, like ``tail -f``.

    Args:
        log_file: File to follow.
        poll: Seconds between checks when no new data arrived.
        stop: Optional predicate; following ends once it returns True.
    """
    with open(log_file, encoding="utf-8", errors="replace") as f:
        while True:
            line = f.readline()
            if line:
                yield line
                continue
            if stop and stop():
                return
            time.sleep(poll)


# ---------------------------------------------------------------------------
# Log browsing
# ---------------------------------------------------------------------------


def list_logs(log_dir: Path, limit: int = 20) -> list[dict]:
    """Recent task logs, newest first.

    Returns:
        list[dict]: 'filename', 'path', 'size', 'modified'.
    """
    path = log_dir.expanduser()
    if not path.is_dir():
        return []

    logs = sorted(path.glob("*.log"), key=lambda p: p.stat().st_mtime, reverse=True)
    results = []
    for f in logs[:limit]:
        stat = f.stat()
        results.append({
            "filename": f.name,
            "path": str(f),
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M"),
        })
    return results


def resolve_log(name: str, log_dir: Path) -> Path:
    """Find a log by path or by filename inside the log directory.

    Raises:
        FileNotFoundError: If neither exists.
    """
    direct = Path(name).expanduser()
    if direct.is_file():
        return direct
    candidate = log_dir.expanduser() / name
    if candidate.is_file():
        return candidate
    raise FileNotFoundError(f"Log file not found: {candidate}")
