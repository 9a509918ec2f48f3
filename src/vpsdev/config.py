"""
Configuration for every vpsdev command.

Defaults match the paths and names the remote environment has always
used. A YAML file (``$VPSDEV_CONFIG`` or ``~/.config/vpsdev/config.yaml``)
can override them, and the long-standing environment variables win
over both:

    CLAUDE_TASK_LOG_DIR         tasks.log_dir
    CLAUDE_TASK_SLACK_WEBHOOK   tasks.slack_webhook
    CLAUDE_SESSION_NAME         session.name
    NTFY_TOPIC                  termius.topic
    NTFY_SERVER                 ntfy.server / termius.server
    TERMIUS_HOST_LABEL          termius.host_label
    TELEGRAM_BOT_TOKEN          telegram.bot_token
    TELEGRAM_CHAT_ID            telegram.chat_id
    VPS_USER / VPS_HOST / VPS_PORT   sync.*
    CLAUDE_USER                 vps.user
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from . import CONFIG_PATH

logger = logging.getLogger("vpsdev.config")


class SessionConfig(BaseModel):
    """tmux session defaults."""

    name: str = "claude"
    directory: Path = Path("~/Projects")
    window: str = "claude-code"
    claude_bin: str = "claude"


class TasksConfig(BaseModel):
    """Background task runner defaults."""

    log_dir: Path = Path("~/.claude-tasks")
    slack_webhook: Optional[str] = None


class NtfyConfig(BaseModel):
    """Hook-driven ntfy push notifications."""

    server: str = "https://ntfy.sh"
    config_dir: Path = Path("~/.config/claude-notify")
    ssh_user: str = Field(default_factory=lambda: os.environ.get("USER", "claude"))

    @property
    def topic_file(self) -> Path:
        """Where the private topic name lives."""
        return self.config_dir.expanduser() / "topic"


class TermiusConfig(BaseModel):
    """ntfy notifications carrying a Termius deep link."""

    server: str = "https://ntfy.sh"
    topic: Optional[str] = None
    host_label: str = "Claude VPS"


class TelegramConfig(BaseModel):
    """Telegram bot credentials and config file location."""

    config_file: Path = Path("~/.claude-telegram")
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None


class SyncConfig(BaseModel):
    """Credential sync target defaults."""

    user: str = "root"
    host: Optional[str] = None
    port: int = 22
    remote_command: str = "vpsdev credentials import"


class VpsConfig(BaseModel):
    """VPS provisioning defaults."""

    user: str = "claude"
    session: str = "claude"
    node_version: str = "20"


class Settings(BaseModel):
    """Complete vpsdev configuration."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    tasks: TasksConfig = Field(default_factory=TasksConfig)
    ntfy: NtfyConfig = Field(default_factory=NtfyConfig)
    termius: TermiusConfig = Field(default_factory=TermiusConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    vps: VpsConfig = Field(default_factory=VpsConfig)


# (env var, section, field)
ENV_OVERRIDES: list[tuple[str, str, str]] = [
    ("CLAUDE_TASK_LOG_DIR", "tasks", "log_dir"),
    ("CLAUDE_TASK_SLACK_WEBHOOK", "tasks", "slack_webhook"),
    ("CLAUDE_SESSION_NAME", "session", "name"),
    ("NTFY_SERVER", "ntfy", "server"),
    ("NTFY_SERVER", "termius", "server"),
    ("NTFY_TOPIC", "termius", "topic"),
    ("TERMIUS_HOST_LABEL", "termius", "host_label"),
    ("TELEGRAM_BOT_TOKEN", "telegram", "bot_token"),
    ("TELEGRAM_CHAT_ID", "telegram", "chat_id"),
    ("VPS_USER", "sync", "user"),
    ("VPS_HOST", "sync", "host"),
    ("VPS_PORT", "sync", "port"),
    ("CLAUDE_USER", "vps", "user"),
]


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read the YAML config file, returning {} when absent or unreadable."""
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to read config %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not a mapping", path)
        return {}
    return data


def load_settings(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from defaults, the YAML file, and the environment.

    Args:
        path: Config file override. Defaults to ``$VPSDEV_CONFIG``.
        environ: Environment mapping. Defaults to ``os.environ``.

    Returns:
        Settings: Fully resolved configuration.
    """
    env = os.environ if environ is None else environ
    config_path = (path or Path(CONFIG_PATH)).expanduser()
    data = _read_yaml(config_path)

    for var, section, field in ENV_OVERRIDES:
        value = env.get(var)
        if value:
            if not isinstance(data.get(section), dict):
                data[section] = {}
            data[section][field] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid configuration, using defaults: %s", exc)
        return Settings()
