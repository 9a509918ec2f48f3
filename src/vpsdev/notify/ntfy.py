"""
ntfy push notifications driven by assistant hooks.

The assistant calls ``vpsdev notify hook <event> "<message>"`` from its
Notification and Stop hooks. The event type picks a title, priority,
and emoji tags; the message lands in the body prefixed with
``[host:project]`` so you can tell sessions apart on the lock screen.

The topic name is the only secret: anyone who knows it can read the
notifications. It lives in ``~/.config/claude-notify/topic`` (mode 600)
and is rotated by running setup again and declining the existing one.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import requests

from . import REQUEST_TIMEOUT

logger = logging.getLogger("vpsdev.notify.ntfy")

DEFAULT_SERVER = "https://ntfy.sh"
MAX_MESSAGE = 500
PERMISSION_WORDS = re.compile(r"permission|approve|confirm|allow", re.IGNORECASE)

HOOKS_SNIPPET = """\
"hooks": {
  "Notification": [
    {
      "matcher": {},
      "hooks": [
        {
          "type": "command",
          "command": "vpsdev notify hook notification \\"$CLAUDE_NOTIFICATION_MESSAGE\\""
        }
      ]
    }
  ],
  "Stop": [
    {
      "matcher": {},
      "hooks": [
        {
          "type": "command",
          "command": "vpsdev notify hook stop \\"$CLAUDE_STOP_REASON\\""
        }
      ]
    }
  ]
}"""


@dataclass
class NtfyMessage:
    """One ntfy publish request."""

    title: str
    body: str
    priority: str = "default"
    tags: str = ""
    click: str = ""
    actions: str = ""

    def headers(self) -> dict[str, str]:
        """HTTP headers ntfy reads the metadata from.

        Values that do not fit Latin-1 (emoji in a title, say) are sent
        as RFC 2047 encoded words, which ntfy decodes.
        """
        headers = {"Title": self.title, "Priority": self.priority, "Tags": self.tags}
        if self.click:
            headers["Click"] = self.click
        if self.actions:
            headers["Actions"] = self.actions
        return {name: encode_header(value) for name, value in headers.items()}


def encode_header(value: str) -> str:
    """Header value safe for http.client, RFC 2047 encoded when needed."""
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return f"=?UTF-8?B?{encoded}?="
    return value


# (title, body, tags, priority) per stop reason
STOP_REASONS: dict[str, tuple[str, str, str, str]] = {
    "end_turn": (
        "Claude Completed", "Task finished - ready for next instruction.",
        "robot,white_check_mark", "default",
    ),
    "user_interrupt": (
        "Claude Interrupted", "Session was interrupted by user.",
        "robot,stop_sign", "low",
    ),
    "tool_error": (
        "Claude Error", "A tool encountered an error. Check session.",
        "robot,x,warning", "high",
    ),
    "max_turns": (
        "Claude Hit Turn Limit", "Maximum conversation turns reached.",
        "robot,hourglass", "default",
    ),
}


def short_hostname() -> str:
    """Hostname without the domain part."""
    return socket.gethostname().split(".")[0] or "unknown"


def truncate_message(message: str, limit: int = MAX_MESSAGE) -> str:
    """Cut long messages to ntfy's comfortable size, marking the cut."""
    if len(message) > limit:
        return message[: limit - 3] + "..."
    return message


def topic_url(topic: str, server: str = DEFAULT_SERVER) -> str:
    """Publish/subscribe URL for a topic."""
    return f"{server.rstrip('/')}/{topic}"


def load_topic(topic_file: Path) -> str:
    """Read the configured topic.

    Raises:
        FileNotFoundError: If setup has not been run.
    """
    if not topic_file.is_file():
        raise FileNotFoundError(
            "ntfy topic not configured. Run 'vpsdev notify setup-ntfy' first."
        )
    topic = topic_file.read_text(encoding="utf-8").strip()
    if not topic:
        raise FileNotFoundError(f"ntfy topic file is empty: {topic_file}")
    return topic


def generate_topic(user: str) -> str:
    """A hard-to-guess topic name such as ``claude-matt-1a2b3c4d``."""
    return f"claude-{user}-{secrets.token_hex(4)}"


def save_topic(topic_file: Path, topic: str) -> Path:
    """Write the topic file with owner-only permissions."""
    topic_file.parent.mkdir(parents=True, exist_ok=True)
    topic_file.write_text(topic + "\n", encoding="utf-8")
    topic_file.chmod(0o600)
    logger.info("Saved ntfy topic to %s", topic_file)
    return topic_file


def build_event(
    event_type: str,
    message: str,
    host: str,
    project: str,
    ssh_user: Optional[str] = None,
) -> NtfyMessage:
    """Turn a hook event into a notification.

    Args:
        event_type: ``notification``, ``stop``, ``test``, or anything else.
        message: Hook message (stop reason for ``stop``).
        host: Short hostname shown in the body prefix.
        project: Project (working directory) name.
        ssh_user: User for the "Connect via SSH" action button.

    Returns:
        NtfyMessage ready to send.
    """
    prefix = f"[{host}:{project}]"
    message = truncate_message(message)

    if event_type == "notification":
        if PERMISSION_WORDS.search(message):
            title, tags, priority = "Claude Needs Permission", "robot,warning,loudspeaker", "high"
        else:
            title, tags, priority = "Claude Notification", "robot,bell", "default"
        actions = f"view, Connect via SSH, ssh://{ssh_user}@{host}" if ssh_user else ""
        return NtfyMessage(
            title=title,
            body=f"{prefix}\n{message}\n\nTap to connect and respond.",
            priority=priority,
            tags=tags,
            actions=actions,
        )

    if event_type == "stop":
        if message in STOP_REASONS:
            title, text, tags, priority = STOP_REASONS[message]
        else:
            title, text, tags, priority = (
                "Claude Stopped", f"Reason: {message}", "robot,octagonal_sign", "default",
            )
        return NtfyMessage(title=title, body=f"{prefix}\n{text}", priority=priority, tags=tags)

    if event_type == "test":
        return NtfyMessage(
            title="Test Notification",
            body=f"{prefix}\n{message}\n\nPush notifications are working!",
            tags="robot,test_tube,white_check_mark",
        )

    return NtfyMessage(
        title=f"Claude Event: {event_type}",
        body=f"{prefix}\n{message}",
        tags="robot,question",
    )


def send(topic: str, msg: NtfyMessage, server: str = DEFAULT_SERVER) -> int:
    """Publish a notification.

    Returns:
        int: HTTP status code.

    Raises:
        RuntimeError: If the request fails or ntfy rejects it; the
            message carries the raw response.
    """
    url = topic_url(topic, server)
    try:
        resp = requests.post(
            url,
            data=msg.body.encode("utf-8"),
            headers=msg.headers(),
            timeout=REQUEST_TIMEOUT,
        )
    except (requests.RequestException, UnicodeError) as exc:
        raise RuntimeError(f"Failed to send notification: {exc}") from exc

    if resp.status_code >= 400:
        raise RuntimeError(
            f"Failed to send notification (HTTP {resp.status_code}): {resp.text}"
        )
    logger.info("Sent '%s' to %s", msg.title, url)
    return resp.status_code


def ready_message(ssh_user: str, host: str = "your-vps-ip") -> NtfyMessage:
    """The first notification sent by setup."""
    return NtfyMessage(
        title="Claude Code Ready!",
        body=(
            "Push notifications are configured! You'll be notified when "
            "Claude needs your input or completes tasks."
        ),
        priority="high",
        tags="robot,white_check_mark",
        click=f"ssh://{ssh_user}@{host}",
    )
