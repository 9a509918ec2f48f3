"""Task commands: task, task-logs, task-view, and the hidden worker."""

from __future__ import annotations

import logging
import os
from pathlib import Path

import click

from ._common import console, error, fail, get_settings, info, success, task, warning

from rich.table import Table


def register_task_commands(main: click.Group) -> None:
    """Register the background task commands."""

    @main.command("task")
    @click.argument("prompt", required=False)
    @click.option("--directory", "-d", default=None, type=click.Path(), help="Working directory (default: current).")
    @click.option("--output", "-o", default=None, type=click.Path(), help="Log file path (default: auto-generated).")
    @click.option("--name", "-n", default="", help="Task name for identification.")
    @click.option("--wait", "-w", is_flag=True, help="Run in foreground and wait for completion.")
    @click.option("--silent", "-s", is_flag=True, help="Suppress status messages.")
    @click.option("--tail", "-t", "tail_log", is_flag=True, help="Follow the log after starting.")
    def task_run(prompt: str, directory: str, output: str, name: str, wait: bool, silent: bool, tail_log: bool):
        """Run a Claude Code task in the background with logging.

        Output lands in ~/.claude-tasks/ (or $CLAUDE_TASK_LOG_DIR). Set
        $CLAUDE_TASK_SLACK_WEBHOOK to be told when the task finishes.

        Examples:

            vpsdev task "Run the test suite and fix any failures"

            vpsdev task -n "lint-fix" -d ~/Projects/app "Fix all linting errors"

            vpsdev task -w "Generate API documentation"

            vpsdev task -t "Refactor the auth module"
        """
        from ..preflight import MissingToolError, require_tools
        from ..tasks import TaskSpec, ensure_log_dir, follow, launch_background, log_filename, run_foreground

        settings = get_settings()
        claude_bin = settings.session.claude_bin
        try:
            require_tools(claude_bin)
        except MissingToolError as exc:
            fail(str(exc))

        log_dir = settings.tasks.log_dir.expanduser()
        if ensure_log_dir(log_dir) and not silent:
            info(f"Created log directory: {log_dir}")

        if not prompt:
            fail("No prompt provided. See 'vpsdev task --help'.")

        work_dir = Path(directory).expanduser() if directory else Path.cwd()
        if not work_dir.is_dir():
            fail(f"Directory does not exist: {work_dir}")

        log_file = Path(output).expanduser().resolve() if output else log_filename(log_dir, name)
        spec = TaskSpec(
            prompt=prompt,
            work_dir=work_dir.resolve(),
            log_file=log_file,
            name=name,
            slack_webhook=settings.tasks.slack_webhook,
            claude_bin=claude_bin,
        )

        if wait:
            task(f"Running task: {spec.label}")
            info(f"Directory: {spec.work_dir}")
            info(f"Log file: {spec.log_file}")
            console.print()
            exit_code, duration = run_foreground(spec, echo=lambda line: click.echo(line, nl=False))
            console.print()
            if exit_code == 0:
                success(f"Task completed in {duration}")
            else:
                error(f"Task failed with exit code {exit_code} after {duration}")
            raise SystemExit(exit_code)

        if not silent:
            task(f"Starting background task: {spec.label}")
            info(f"Directory: {spec.work_dir}")
            info(f"Log file: {spec.log_file}")
            info(f"Monitor with: tail -f {spec.log_file}")

        pid = launch_background(spec)
        if not silent:
            info(f"Background PID: {pid}")

        if tail_log:
            info("Tailing log file (Ctrl+C to stop watching, task continues)...")
            try:
                for line in follow(spec.log_file):
                    click.echo(line, nl=False)
            except KeyboardInterrupt:
                console.print()

    @main.command("task-logs")
    @click.option("--limit", default=20, help="How many logs to show.")
    def task_logs(limit: int):
        """List recent task logs, newest first."""
        from ..tasks import list_logs

        log_dir = get_settings().tasks.log_dir.expanduser()
        logs = list_logs(log_dir, limit=limit)
        if not logs:
            warning("No logs found")
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
        table.add_column("Log", style="cyan")
        table.add_column("Size", justify="right")
        table.add_column("Modified", style="dim")
        for entry in logs:
            table.add_row(entry["filename"], f"{entry['size']:,} B", entry["modified"])

        info(f"Recent task logs in {log_dir}:")
        console.print(table)
        info("View a log with: vpsdev task-view <filename>")

    @main.command("task-view")
    @click.argument("log")
    def task_view(log: str):
        """Page through a task log (path or filename in the log directory)."""
        from ..tasks import resolve_log

        try:
            path = resolve_log(log, get_settings().tasks.log_dir)
        except FileNotFoundError as exc:
            fail(str(exc))
        click.echo_via_pager(path.read_text(encoding="utf-8", errors="replace"))

    @main.command("task-worker", hidden=True)
    @click.argument("spec_json")
    def task_worker(spec_json: str):
        """Detached worker started by 'vpsdev task'."""
        from ..tasks import TaskSpec, run_worker

        logging.basicConfig(
            level=logging.WARNING,
            format="[worker %(process)d] %(levelname)s %(message)s",
            force=True,
        )
        spec = TaskSpec.model_validate_json(spec_json)
        os.chdir(spec.work_dir)
        raise SystemExit(run_worker(spec))
