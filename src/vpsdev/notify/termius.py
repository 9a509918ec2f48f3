"""ntfy notifications that open Termius on the VPS when tapped."""

from __future__ import annotations

from typing import Optional

from .ntfy import NtfyMessage

DEFAULT_LABEL = "Claude VPS"
DEFAULT_TITLE = "VPS Alert"
DEFAULT_PRIORITY = "default"
DEFAULT_TAGS = "computer"
# ntfy names plus its "max" and 1-5 aliases
PRIORITIES = ("min", "low", "default", "high", "urgent", "max", "1", "2", "3", "4", "5")


def termius_deep_link(label: str = DEFAULT_LABEL) -> str:
    """``termius://`` URL selecting a saved host by its label."""
    return f"termius://host?label={label.replace(' ', '%20')}"


def build_message(
    message: str,
    title: str = DEFAULT_TITLE,
    priority: str = DEFAULT_PRIORITY,
    tags: str = DEFAULT_TAGS,
    click: Optional[str] = None,
) -> NtfyMessage:
    """Compose the notification.

    Args:
        message: Body text.
        title: Notification title.
        priority: ntfy priority name or number (1-5).
        tags: Comma-separated tags/emoji shortcodes.
        click: Tap action URL, or None/empty for no action.

    Raises:
        ValueError: If the message is empty.
    """
    if not message:
        raise ValueError("No message provided")
    return NtfyMessage(
        title=title, body=message, priority=priority, tags=tags, click=click or "",
    )
