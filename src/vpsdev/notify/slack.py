"""Slack webhook message for finished background tasks."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from . import REQUEST_TIMEOUT

logger = logging.getLogger("vpsdev.notify.slack")


def build_task_payload(
    task_name: str,
    exit_code: int,
    duration: str,
    log_file: str,
) -> dict[str, Any]:
    """Build the webhook body for a completed task.

    Args:
        task_name: Task label (``unnamed`` when not given).
        exit_code: Assistant exit code.
        duration: Human-readable duration.
        log_file: Path of the task log.

    Returns:
        dict: Slack attachment payload.
    """
    ok = exit_code == 0
    icon = "white_check_mark" if ok else "x"
    status = "Success" if ok else f"Failed (exit code: {exit_code})"
    text = (
        f":{icon}: *Claude Task Completed*\n"
        f"*Task:* {task_name}\n"
        f"*Duration:* {duration}\n"
        f"*Status:* {status}"
    )
    return {
        "attachments": [
            {
                "color": "good" if ok else "danger",
                "blocks": [
                    {"type": "section", "text": {"type": "mrkdwn", "text": text}},
                    {
                        "type": "context",
                        "elements": [{"type": "mrkdwn", "text": f"Log: `{log_file}`"}],
                    },
                ],
            }
        ]
    }


def post_task_completion(
    webhook: Optional[str],
    task_name: str,
    exit_code: int,
    duration: str,
    log_file: str,
) -> bool:
    """Post a completion message; a missing webhook is a no-op.

    Delivery problems are logged and never fail the task.

    Returns:
        bool: True if Slack accepted the message.
    """
    if not webhook:
        return False

    payload = build_task_payload(task_name, exit_code, duration, log_file)
    try:
        resp = requests.post(webhook, json=payload, timeout=REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        logger.warning("Slack notification failed: %s", exc)
        return False

    if resp.status_code >= 400:
        logger.warning("Slack webhook returned %s: %s", resp.status_code, resp.text)
        return False
    return True
