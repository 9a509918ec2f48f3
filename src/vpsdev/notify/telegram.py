"""
Telegram bot notifications for assistant hooks.

The assistant pipes its hook payload (JSON on stdin) into
``vpsdev notify telegram <hook-type>``. Messages are sent with
``parse_mode=HTML`` so only ``&``, ``<`` and ``>`` need escaping.

Credentials live in ``~/.claude-telegram`` as shell assignments so the
same file can still be ``source``d by other scripts:

    TELEGRAM_BOT_TOKEN="123456:ABC..."
    TELEGRAM_CHAT_ID="987654321"
"""

from __future__ import annotations

import html
import json
import logging
import os
import socket
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping, Optional

import requests
from pydantic import BaseModel, ValidationError

from . import REQUEST_TIMEOUT

logger = logging.getLogger("vpsdev.notify.telegram")

API_BASE = "https://api.telegram.org"
HOOK_TYPES = ("stop", "notification", "test", "error", "custom")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class TelegramCredentials:
    """Bot token and destination chat."""

    bot_token: str
    chat_id: str


class HookInput(BaseModel):
    """Fields the assistant passes to hooks on stdin."""

    session_id: str = ""
    transcript_path: str = ""
    cwd: str = ""
    notification_type: str = ""
    message: str = ""

    @classmethod
    def from_stdin_text(cls, text: str) -> "HookInput":
        """Parse hook JSON, treating anything unparseable as empty."""
        if not text.strip():
            return cls()
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("Hook input is not JSON; ignoring")
            return cls()
        if not isinstance(data, dict):
            return cls()
        fields = {k: v for k, v in data.items() if k in cls.model_fields and isinstance(v, str)}
        try:
            return cls.model_validate(fields)
        except ValidationError:
            return cls()


# ---------------------------------------------------------------------------
# Config file
# ---------------------------------------------------------------------------


def parse_config(text: str) -> dict[str, str]:
    """Parse ``KEY="value"`` lines, ignoring comments and blank lines."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, _, value = line.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        values[key.strip()] = value
    return values


def load_credentials(
    config_file: Path,
    environ: Optional[Mapping[str, str]] = None,
) -> TelegramCredentials:
    """Load bot credentials from the config file and environment.

    Environment variables of the same name win over the file.

    Raises:
        FileNotFoundError: If neither source provides credentials and the
            config file does not exist.
        ValueError: If the token or chat id is missing.
    """
    env = os.environ if environ is None else environ
    values: dict[str, str] = {}
    path = config_file.expanduser()
    if path.is_file():
        values = parse_config(path.read_text(encoding="utf-8"))

    token = env.get("TELEGRAM_BOT_TOKEN") or values.get("TELEGRAM_BOT_TOKEN", "")
    chat_id = env.get("TELEGRAM_CHAT_ID") or values.get("TELEGRAM_CHAT_ID", "")

    if not path.is_file() and not (token and chat_id):
        raise FileNotFoundError(
            f"Configuration file not found at {path}. "
            "Run 'vpsdev notify setup-telegram' to configure."
        )
    if not token or not chat_id:
        raise ValueError("TELEGRAM_BOT_TOKEN or TELEGRAM_CHAT_ID not set")
    return TelegramCredentials(bot_token=token, chat_id=chat_id)


def save_credentials(config_file: Path, creds: TelegramCredentials) -> Path:
    """Write the config file (mode 600)."""
    path = config_file.expanduser()
    path.write_text(
        "# Telegram Bot Configuration for Claude Code\n"
        f"# Generated on {datetime.now():%a %b %d %H:%M:%S %Y}\n"
        "\n"
        f'TELEGRAM_BOT_TOKEN="{creds.bot_token}"\n'
        f'TELEGRAM_CHAT_ID="{creds.chat_id}"\n',
        encoding="utf-8",
    )
    path.chmod(0o600)
    logger.info("Saved Telegram configuration to %s", path)
    return path


def mask_token(token: str) -> str:
    """Show just enough of a token to recognise it."""
    if len(token) <= 15:
        return token[:4] + "..."
    return f"{token[:10]}...{token[-5:]}"


# ---------------------------------------------------------------------------
# Message building
# ---------------------------------------------------------------------------


def escape_html(text: str) -> str:
    """Escape the characters Telegram's HTML mode cares about."""
    return html.escape(text, quote=False)


def last_assistant_message(transcript: Path, lines: int = 20, width: int = 100) -> str:
    """Last assistant text in the tail of a JSONL transcript.

    Args:
        transcript: Transcript file written by the assistant.
        lines: How many trailing lines to scan.
        width: Maximum characters to return.

    Returns:
        str: Single-line summary, or '' when nothing usable was found.
    """
    if not transcript.is_file():
        return ""
    try:
        with open(transcript, encoding="utf-8", errors="replace") as f:
            tail = deque(f, maxlen=lines)
    except OSError:
        return ""

    last = ""
    for line in tail:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        message = entry.get("message") if isinstance(entry, dict) else None
        if not isinstance(message, dict) or message.get("role") != "assistant":
            continue
        content = message.get("content")
        if isinstance(content, list) and content and isinstance(content[0], dict):
            text = content[0].get("text") or ""
            if text:
                last = text
    return " ".join(last.split("\n")).strip()[:width]


def _header(emoji: str, title: str, host: str, project: str) -> str:
    return (
        f"<b>{emoji} Claude Code {title}</b>\n\n"
        f"<b>Host:</b> <code>{escape_html(host)}</code>\n"
        f"<b>Project:</b> <code>{escape_html(project)}</code>"
    )


def build_message(
    hook_type: str,
    hook: HookInput,
    host: str,
    project: str,
    creds: Optional[TelegramCredentials] = None,
    custom_message: str = "",
    now: Optional[datetime] = None,
) -> str:
    """Build the HTML message for a hook type.

    Args:
        hook_type: One of :data:`HOOK_TYPES`.
        hook: Parsed hook input.
        host: Short hostname.
        project: Project name.
        creds: Credentials, shown masked in the test message.
        custom_message: Text for the ``custom`` hook type.
        now: Timestamp override.

    Returns:
        str: HTML message body.

    Raises:
        ValueError: For an unknown hook type or an empty custom message.
    """
    stamp = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)

    if hook_type == "stop":
        msg = _header("✅", "Task Completed", host, project)
        if hook.session_id:
            msg += f"\n<b>Session:</b> <code>{escape_html(hook.session_id[:8])}...</code>"
        summary = ""
        if hook.transcript_path:
            summary = last_assistant_message(Path(hook.transcript_path))
        if summary:
            msg += f"\n\n<b>Summary:</b>\n<i>{escape_html(summary)}</i>"
        return f"{msg}\n\n<i>{stamp}</i>"

    if hook_type == "notification":
        emoji, title = "🔔", "Needs Attention"
        if hook.notification_type == "permission":
            emoji, title = "🔐", "Permission Required"
        elif hook.notification_type == "idle":
            emoji, title = "⏰", "Input Required"
        msg = _header(emoji, title, host, project)
        if hook.message:
            msg += f"\n\n<b>Message:</b>\n<code>{escape_html(hook.message)}</code>"
        return f"{msg}\n\n<i>{stamp}</i>"

    if hook_type == "test":
        token = creds.bot_token[:10] if creds else ""
        chat = creds.chat_id if creds else ""
        return (
            "<b>🧪 Claude Code Test Notification</b>\n\n"
            f"<b>Host:</b> <code>{escape_html(host)}</code>\n"
            "<b>Status:</b> ✅ Working correctly\n\n"
            "<b>Configuration:</b>\n"
            f"• Bot Token: <code>{escape_html(token)}...</code>\n"
            f"• Chat ID: <code>{escape_html(chat)}</code>\n"
            "• Hook: <code>vpsdev notify telegram</code>\n\n"
            f"<i>Sent at {stamp}</i>"
        )

    if hook_type == "error":
        msg = (
            "<b>❌ Claude Code Error</b>\n\n"
            f"<b>Host:</b> <code>{escape_html(host)}</code>\n"
            f"<b>Project:</b> <code>{escape_html(project)}</code>"
        )
        if hook.message:
            msg += f"\n\n<b>Error:</b>\n<pre>{escape_html(hook.message)}</pre>"
        return f"{msg}\n\n<i>{stamp}</i>"

    if hook_type == "custom":
        text = custom_message or hook.message
        if not text:
            raise ValueError("No custom message provided")
        return (
            "<b>📬 Claude Code</b>\n\n"
            f"<b>Host:</b> <code>{escape_html(host)}</code>\n"
            f"<b>Project:</b> <code>{escape_html(project)}</code>\n\n"
            f"{text}\n\n"
            f"<i>{stamp}</i>"
        )

    raise ValueError(f"Unknown hook type: {hook_type}. Use one of: {'|'.join(HOOK_TYPES)}")


def project_name(hook: HookInput) -> str:
    """Project name from the hook's cwd, falling back to the process cwd."""
    name = Path(hook.cwd).name if hook.cwd else ""
    return name or Path.cwd().name


def short_hostname() -> str:
    """Hostname without the domain part."""
    return socket.gethostname().split(".")[0] or "unknown"


# ---------------------------------------------------------------------------
# Bot API
# ---------------------------------------------------------------------------


def _api(token: str, method: str, data: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    """Call a Bot API method.

    Raises:
        RuntimeError: On transport errors, HTTP errors, or ``ok: false``.
    """
    url = f"{API_BASE}/bot{token}/{method}"
    try:
        if data is None:
            resp = requests.get(url, timeout=REQUEST_TIMEOUT)
        else:
            resp = requests.post(url, data=data, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise RuntimeError(f"Telegram API {method} failed: {exc}") from exc

    try:
        body = resp.json()
    except ValueError:
        body = {}
    if resp.status_code >= 400 or not body.get("ok"):
        raise RuntimeError(f"Telegram API {method} failed. Response: {resp.text}")
    return body


def send_message(
    creds: TelegramCredentials,
    text: str,
    parse_mode: str = "HTML",
) -> dict[str, Any]:
    """Send a message to the configured chat.

    Returns:
        dict: The API response.
    """
    body = _api(
        creds.bot_token,
        "sendMessage",
        {"chat_id": creds.chat_id, "text": text, "parse_mode": parse_mode},
    )
    logger.info("Telegram message sent to chat %s", creds.chat_id)
    return body


def fetch_chat_id(token: str) -> str:
    """Chat id of the first message the bot has received.

    Returns:
        str: Chat id, or '' when the bot has no updates yet.

    Raises:
        RuntimeError: If the token is invalid.
    """
    body = _api(token, "getUpdates")
    for update in body.get("result", []):
        chat = (update.get("message") or {}).get("chat") or {}
        if "id" in chat:
            return str(chat["id"])
    return ""
