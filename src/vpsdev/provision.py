"""
VPS provisioning for a persistent assistant environment.

Turns a fresh Ubuntu/Debian box into a host where the assistant runs in
a tmux session that survives disconnects and reboots:

    1. check root / OS
    2. apt update, upgrade, essentials (tmux, mosh, git, ufw, ...)
    3. Node.js LTS from NodeSource
    4. the assistant CLI via npm
    5. service account with ~/projects, ~/.claude, ~/.local/bin, ~/logs
    6. ~/.tmux.conf
    7. claude-tmux.service (boot-time tmux session)
    8. claude-* helper scripts in ~/.local/bin
    9. ~/.claude/env template
    10. ufw: OpenSSH + mosh ports

Every step checks before it changes anything, so running the whole
sequence again leaves users, PATH lines and firewall rules as they were.
The first failing step aborts the rest with a :class:`ProvisionError`.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import requests

from . import systemd
from .preflight import read_os_release, require_root

logger = logging.getLogger("vpsdev.provision")

CLAUDE_PACKAGE = "@anthropic-ai/claude-code"
NODESOURCE_URL = "https://deb.nodesource.com/setup_{version}.x"
MOSH_PORTS = "60000:61000/udp"
APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}

PACKAGES = [
    "curl", "wget", "git", "tmux", "mosh", "htop", "vim", "nano",
    "build-essential", "ca-certificates", "gnupg", "lsb-release",
    "unzip", "jq", "tree", "ncdu", "fail2ban", "ufw",
]

TMUX_CONF = """\
# Claude Code tmux configuration

# C-a prefix
unbind C-b
set-option -g prefix C-a
bind-key C-a send-prefix

set -g mouse on
set -g history-limit 50000

set -g base-index 1
setw -g pane-base-index 1
set -g renumber-windows on

set -g default-terminal "screen-256color"
set -ga terminal-overrides ",*256col*:Tc"

set -s escape-time 10
set -sg repeat-time 600
set -g focus-events on

setw -g monitor-activity on
set -g visual-activity off

# Status bar
set -g status-interval 5
set -g status-position bottom
set -g status-bg colour234
set -g status-fg colour137
set -g status-left-length 40
set -g status-left '#[fg=colour233,bg=colour245,bold] #S #[bg=colour234] '
set -g status-right-length 80
set -g status-right '#[fg=colour245] %H:%M #[fg=colour233,bg=colour245,bold] %d-%b-%Y '
setw -g window-status-current-format '#[fg=colour234,bg=colour81,bold] #I:#W#F '
setw -g window-status-format ' #I:#W#F '

set -g pane-border-style fg=colour238
set -g pane-active-border-style fg=colour81

# Splits keep the current path
bind | split-window -h -c "#{pane_current_path}"
bind - split-window -v -c "#{pane_current_path}"
unbind '"'
unbind %

bind h select-pane -L
bind j select-pane -D
bind k select-pane -U
bind l select-pane -R

bind -r H resize-pane -L 5
bind -r J resize-pane -D 5
bind -r K resize-pane -U 5
bind -r L resize-pane -R 5

bind r source-file ~/.tmux.conf \\; display-message "Config reloaded!"

bind -n M-1 select-window -t 1
bind -n M-2 select-window -t 2
bind -n M-3 select-window -t 3
bind -n M-4 select-window -t 4
bind -n M-5 select-window -t 5

bind c new-window -c "#{pane_current_path}"
bind x kill-pane
bind X kill-window

# vi copy mode
setw -g mode-keys vi
bind -T copy-mode-vi v send -X begin-selection
bind -T copy-mode-vi y send -X copy-selection-and-cancel
bind -T copy-mode-vi Escape send -X cancel
"""

ENV_TEMPLATE = """\
# Claude Code environment
# Source this file from ~/.bashrc

# Anthropic API key (required)
# Get one from https://console.anthropic.com/
# export ANTHROPIC_API_KEY="sk-ant-..."

export CLAUDE_CODE_MAX_THINKING_TOKENS=10000

# tmux session name used by the claude-* helpers
export CLAUDE_SESSION_NAME="claude"
"""

BASHRC_SNIPPET = """
# Claude Code helper scripts
export PATH="$HOME/.local/bin:$PATH"
export CLAUDE_SESSION_NAME="claude"
"""

# name -> (description, script body)
HELPER_SCRIPTS: dict[str, tuple[str, str]] = {
    "claude-attach": (
        "Attach to the Claude Code tmux session",
        'exec vpsdev session start -d ~/projects "$@"',
    ),
    "claude-start": (
        "Start Claude Code in the tmux session",
        'exec vpsdev session window "$@"',
    ),
    "claude-stop": (
        "Stop the Claude Code tmux session gracefully",
        'exec vpsdev session stop "$@"',
    ),
    "claude-status": (
        "Show session windows and service status",
        'exec vpsdev session status "$@"',
    ),
    "claude-restart": (
        "Restart the Claude Code session",
        'exec vpsdev session restart "$@"',
    ),
    "claude-logs": (
        "View claude-tmux.service logs (-f to follow)",
        'exec vpsdev service logs "$@"',
    ),
    "claude-update": (
        "Update Claude Code to the latest version",
        f"sudo npm update -g {CLAUDE_PACKAGE}\n"
        'echo\necho "Current version:"\n'
        'claude --version 2>/dev/null || echo "Claude Code not found"',
    ),
}


class ProvisionError(RuntimeError):
    """A provisioning step failed; later steps were not run."""

    def __init__(self, step: str, cause: object) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"{step} failed: {cause}")


@dataclass
class ProvisionConfig:
    """What to provision and where."""

    user: str = "claude"
    session: str = "claude"
    node_version: str = "20"
    packages: list[str] = field(default_factory=lambda: list(PACKAGES))
    mosh_ports: str = MOSH_PORTS
    home: Optional[Path] = None
    unit_dir: Path = systemd.SYSTEM_UNIT_DIR
    os_release: Path = Path("/etc/os-release")

    @property
    def home_dir(self) -> Path:
        """The service account's home directory."""
        return self.home or Path("/home") / self.user

    @property
    def bin_dir(self) -> Path:
        return self.home_dir / ".local" / "bin"


def render_helper(name: str) -> str:
    """Full text of a helper script."""
    description, body = HELPER_SCRIPTS[name]
    return f"#!/bin/bash\n# {description}\n\n{body}\n"


# ---------------------------------------------------------------------------
# Command runner
# ---------------------------------------------------------------------------


class CommandRunner:
    """Runs external commands, or just reports them in dry-run mode.

    Read-only probes (``id``, ``node -v``, ``ufw status``) run even in
    dry-run so the plan reflects the machine's actual state.
    """

    def __init__(self, dry_run: bool = False, echo: Optional[Callable[[str], None]] = None):
        self.dry_run = dry_run
        self.echo = echo or (lambda line: None)
        self.history: list[list[str]] = []

    def run(
        self,
        cmd: list[str],
        env: Optional[dict[str, str]] = None,
        input: Optional[str] = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Run a command that changes the system.

        Raises:
            subprocess.CalledProcessError: On non-zero exit when ``check``.
        """
        self.history.append(cmd)
        if self.dry_run:
            self.echo(f"[dry-run] {' '.join(cmd)}")
            return subprocess.CompletedProcess(cmd, 0, "", "")

        logger.info("Running: %s", " ".join(cmd))
        full_env = {**os.environ, **env} if env else None
        return subprocess.run(
            cmd, env=full_env, input=input, capture_output=True, text=True, check=check,
        )

    def probe(self, cmd: list[str]) -> subprocess.CompletedProcess:
        """Run a read-only query; never raises on non-zero exit."""
        logger.debug("Probing: %s", " ".join(cmd))
        try:
            return subprocess.run(cmd, capture_output=True, text=True)
        except OSError as exc:
            return subprocess.CompletedProcess(cmd, 127, "", str(exc))

    def write_file(self, path: Path, content: str, mode: Optional[int] = None) -> None:
        """Write a file (skipped in dry-run)."""
        if self.dry_run:
            self.echo(f"[dry-run] write {path}")
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mode is not None:
            path.chmod(mode)
        logger.info("Wrote %s", path)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class Provisioner:
    """Runs the provisioning steps in order.

    Each step method returns a one-line summary of what it did.
    """

    def __init__(self, config: ProvisionConfig, runner: Optional[CommandRunner] = None):
        self.config = config
        self.runner = runner or CommandRunner()
        self.warnings: list[str] = []

    @property
    def steps(self) -> list[tuple[str, Callable[[], str]]]:
        return [
            ("Check root", self.check_root),
            ("Check OS", self.check_os),
            ("Update system packages", self.update_system),
            (f"Install Node.js {self.config.node_version}", self.install_nodejs),
            ("Install Claude Code", self.install_claude),
            ("Set up user", self.setup_user),
            ("Configure tmux", self.configure_tmux),
            ("Install systemd service", self.install_service),
            ("Create helper scripts", self.create_helper_scripts),
            ("Set up environment", self.setup_environment),
            ("Configure firewall", self.configure_firewall),
        ]

    def run(
        self,
        on_start: Optional[Callable[[str], None]] = None,
        on_done: Optional[Callable[[str, str], None]] = None,
    ) -> list[tuple[str, str]]:
        """Run every step, stopping at the first failure.

        Args:
            on_start: Called with the step name before it runs.
            on_done: Called with the step name and its summary.

        Returns:
            list of (step, summary) pairs.

        Raises:
            ProvisionError: Wrapping whatever the failing step raised.
        """
        results = []
        for name, step in self.steps:
            if on_start:
                on_start(name)
            try:
                summary = step()
            except ProvisionError:
                raise
            except (OSError, RuntimeError, ValueError, subprocess.SubprocessError,
                    requests.RequestException) as exc:
                logger.error("Step '%s' failed: %s", name, exc)
                raise ProvisionError(name, _describe(exc)) from exc
            results.append((name, summary))
            if on_done:
                on_done(name, summary)
        return results

    def _chown(self, path: Path, recursive: bool = False) -> None:
        owner = f"{self.config.user}:{self.config.user}"
        cmd = ["chown", "-R", owner, str(path)] if recursive else ["chown", owner, str(path)]
        self.runner.run(cmd)

    # -- prerequisites ------------------------------------------------------

    def check_root(self) -> str:
        require_root()
        return "Running as root"

    def check_os(self) -> str:
        release = read_os_release(self.config.os_release)
        if not release.is_debian_family:
            warning = f"Optimized for Ubuntu/Debian, found {release.id}. Proceeding anyway."
            self.warnings.append(warning)
            logger.warning(warning)
        return f"Detected OS: {release.id} {release.version_id}".strip()

    # -- packages -----------------------------------------------------------

    def update_system(self) -> str:
        self.runner.run(["apt-get", "update", "-qq"])
        self.runner.run(["apt-get", "upgrade", "-y", "-qq"], env=APT_ENV)
        self.runner.run(["apt-get", "install", "-y", "-qq", *self.config.packages], env=APT_ENV)
        return f"Installed {len(self.config.packages)} essential packages"

    def node_major(self) -> str:
        """Installed Node.js major version, or '' when absent."""
        if not shutil.which("node"):
            return ""
        r = self.runner.probe(["node", "-v"])
        if r.returncode != 0:
            return ""
        return r.stdout.strip().lstrip("v").split(".")[0]

    def install_nodejs(self) -> str:
        wanted = self.config.node_version
        current = self.node_major()
        if current == wanted:
            return f"Node.js {wanted} is already installed"
        if current:
            logger.info("Node.js %s found, upgrading to %s", current, wanted)

        url = NODESOURCE_URL.format(version=wanted)
        if self.runner.dry_run:
            self.runner.echo(f"[dry-run] curl -fsSL {url} | bash -")
        else:
            resp = requests.get(url, timeout=30)
            if resp.status_code >= 400:
                raise RuntimeError(f"NodeSource setup download failed (HTTP {resp.status_code})")
            self.runner.run(["bash", "-"], input=resp.text)
        self.runner.run(["apt-get", "install", "-y", "-qq", "nodejs"], env=APT_ENV)
        return f"Node.js {wanted} installed"

    def install_claude(self) -> str:
        if shutil.which("claude"):
            # a failed update leaves the working install in place
            self.runner.run(["npm", "update", "-g", CLAUDE_PACKAGE], check=False)
            summary = "Claude Code is up to date"
        else:
            self.runner.run(["npm", "install", "-g", CLAUDE_PACKAGE])
            summary = "Claude Code installed"

        if not self.runner.dry_run:
            location = shutil.which("claude")
            if not location:
                raise RuntimeError("claude not found on PATH after npm install")
            summary = f"{summary} ({location})"
        return summary

    # -- account ------------------------------------------------------------

    def user_exists(self) -> bool:
        return self.runner.probe(["id", self.config.user]).returncode == 0

    def in_sudo_group(self) -> bool:
        r = self.runner.probe(["id", "-nG", self.config.user])
        return r.returncode == 0 and "sudo" in r.stdout.split()

    def setup_user(self) -> str:
        user = self.config.user
        home = self.config.home_dir
        created = False
        if not self.user_exists():
            self.runner.run(["useradd", "-m", "-s", "/bin/bash", user])
            created = True
        if not self.in_sudo_group():
            self.runner.run(["usermod", "-aG", "sudo", user])

        for sub in (".claude", "projects", ".local/bin", "logs"):
            if self.runner.dry_run:
                self.runner.echo(f"[dry-run] mkdir -p {home / sub}")
            else:
                (home / sub).mkdir(parents=True, exist_ok=True)
        self._chown(home, recursive=True)
        return f"User '{user}' {'created' if created else 'already exists'}"

    # -- files --------------------------------------------------------------

    def configure_tmux(self) -> str:
        path = self.config.home_dir / ".tmux.conf"
        self.runner.write_file(path, TMUX_CONF)
        self._chown(path)
        return f"tmux configuration written to {path}"

    def install_service(self) -> str:
        cfg = self.config
        if self.runner.dry_run:
            self.runner.echo(f"[dry-run] install {cfg.unit_dir / systemd.SERVICE_NAME}")
            return "Service install skipped (dry run)"
        result = systemd.install_service(
            cfg.user, cfg.home_dir, cfg.session, unit_dir=cfg.unit_dir,
        )
        return f"Service enabled at boot: {result['unit_path']}"

    def create_helper_scripts(self) -> str:
        bin_dir = self.config.bin_dir
        for name in HELPER_SCRIPTS:
            self.runner.write_file(bin_dir / name, render_helper(name), mode=0o755)
        self._chown(bin_dir, recursive=True)

        bashrc = self.config.home_dir / ".bashrc"
        added = self.ensure_path_in_bashrc(bashrc)
        summary = f"Created {len(HELPER_SCRIPTS)} helper scripts in {bin_dir}"
        if added:
            summary += "; PATH updated in .bashrc"
        return summary

    def ensure_path_in_bashrc(self, bashrc: Path) -> bool:
        """Append the PATH export unless ``.local/bin`` is already there.

        Returns:
            bool: True if the file was changed.
        """
        existing = bashrc.read_text(encoding="utf-8") if bashrc.exists() else ""
        if ".local/bin" in existing:
            return False
        if self.runner.dry_run:
            self.runner.echo(f"[dry-run] append PATH to {bashrc}")
            return True
        with open(bashrc, "a", encoding="utf-8") as f:
            f.write(BASHRC_SNIPPET)
        self._chown(bashrc)
        return True

    def setup_environment(self) -> str:
        path = self.config.home_dir / ".claude" / "env"
        self.runner.write_file(path, ENV_TEMPLATE)
        self._chown(path)
        self.warnings.append("Remember to set ANTHROPIC_API_KEY!")
        return f"Environment template created at {path}"

    # -- firewall -----------------------------------------------------------

    def configure_firewall(self) -> str:
        status = self.runner.probe(["ufw", "status"]).stdout
        added = []
        if "OpenSSH" not in status:
            self.runner.run(["ufw", "allow", "OpenSSH"])
            added.append("OpenSSH")
        if self.config.mosh_ports not in status:
            self.runner.run(["ufw", "allow", self.config.mosh_ports])
            added.append(self.config.mosh_ports)
        if "Status: inactive" in status or not status:
            self.runner.run(["ufw", "--force", "enable"])
            added.append("enabled")
        if not added:
            return "Firewall already configured"
        return f"Firewall: {', '.join(added)}"


def _describe(exc: BaseException) -> str:
    """Readable cause, including stderr for failed commands."""
    if isinstance(exc, subprocess.CalledProcessError):
        detail = (exc.stderr or "").strip() if isinstance(exc.stderr, str) else ""
        cmd = " ".join(exc.cmd) if isinstance(exc.cmd, list) else str(exc.cmd)
        return f"'{cmd}' exited with {exc.returncode}" + (f": {detail}" if detail else "")
    return str(exc)


def next_steps(config: ProvisionConfig) -> list[str]:
    """What the operator does after provisioning."""
    user = config.user
    return [
        f"Set your Anthropic API key: su - {user}, then add "
        "'export ANTHROPIC_API_KEY=\"sk-ant-...\"' to ~/.bashrc",
        f"Start the service: sudo systemctl start {systemd.SERVICE_NAME}",
        f"Attach: su - {user}, then run claude-attach",
        f"Connect with: ssh {user}@your-server-ip or mosh {user}@your-server-ip",
    ]
