"""Tests for ntfy hook notifications."""

from __future__ import annotations

import base64
import stat
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from vpsdev.notify.ntfy import (
    NtfyMessage,
    build_event,
    encode_header,
    generate_topic,
    load_topic,
    ready_message,
    save_topic,
    send,
    topic_url,
    truncate_message,
)


class TestBuildEvent:
    """Tests for turning hook events into notifications."""

    def test_permission_notification_is_urgent(self) -> None:
        """Permission prompts get high priority and a warning tag."""
        msg = build_event("notification", "Claude needs permission to edit", "vps", "app")
        assert msg.title == "Claude Needs Permission"
        assert msg.priority == "high"
        assert "warning" in msg.tags
        assert msg.body == "[vps:app]\nClaude needs permission to edit\n\nTap to connect and respond."

    def test_plain_notification(self) -> None:
        """Other notifications use default priority."""
        msg = build_event("notification", "Waiting for input", "vps", "app")
        assert msg.title == "Claude Notification"
        assert msg.priority == "default"
        assert msg.actions == ""

    def test_ssh_action(self) -> None:
        """An ssh user adds a Connect via SSH action."""
        msg = build_event("notification", "hi", "vps", "app", ssh_user="claude")
        assert msg.headers()["Actions"] == "view, Connect via SSH, ssh://claude@vps"

    @pytest.mark.parametrize("reason,title,priority", [
        ("end_turn", "Claude Completed", "default"),
        ("user_interrupt", "Claude Interrupted", "low"),
        ("tool_error", "Claude Error", "high"),
        ("max_turns", "Claude Hit Turn Limit", "default"),
    ])
    def test_stop_reasons(self, reason: str, title: str, priority: str) -> None:
        """Known stop reasons map to their own title and priority."""
        msg = build_event("stop", reason, "vps", "app")
        assert msg.title == title
        assert msg.priority == priority
        assert msg.body.startswith("[vps:app]\n")

    def test_unknown_stop_reason(self) -> None:
        """Unknown reasons are shown verbatim."""
        msg = build_event("stop", "cosmic_ray", "vps", "app")
        assert msg.title == "Claude Stopped"
        assert msg.body == "[vps:app]\nReason: cosmic_ray"

    def test_test_event(self) -> None:
        """The test event confirms delivery."""
        msg = build_event("test", "ping", "vps", "app")
        assert msg.title == "Test Notification"
        assert "Push notifications are working!" in msg.body

    def test_other_event(self) -> None:
        """Anything else is labelled with its event type."""
        assert build_event("compact", "x", "vps", "app").title == "Claude Event: compact"

    def test_long_messages_truncated(self) -> None:
        """Bodies are capped at 500 characters of message."""
        long = "a" * 600
        assert len(truncate_message(long)) == 500
        assert truncate_message(long).endswith("...")
        assert truncate_message("short") == "short"


class TestTopic:
    """Tests for topic storage."""

    def test_generate(self) -> None:
        """Topics embed the user and 8 hex characters."""
        topic = generate_topic("matt")
        assert topic.startswith("claude-matt-")
        assert len(topic.rsplit("-", 1)[1]) == 8
        assert generate_topic("matt") != topic

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Saved topics are private and read back stripped."""
        path = save_topic(tmp_path / "claude-notify" / "topic", "claude-x-1234abcd")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        assert load_topic(path) == "claude-x-1234abcd"

    def test_load_missing(self, tmp_path: Path) -> None:
        """Missing topic points at setup."""
        with pytest.raises(FileNotFoundError, match="setup-ntfy"):
            load_topic(tmp_path / "topic")

    def test_load_empty(self, tmp_path: Path) -> None:
        """An empty topic file is treated as unconfigured."""
        path = tmp_path / "topic"
        path.write_text("\n")
        with pytest.raises(FileNotFoundError):
            load_topic(path)

    def test_topic_url(self) -> None:
        """Trailing slashes on the server are ignored."""
        assert topic_url("t", "https://ntfy.example.com/") == "https://ntfy.example.com/t"


class TestSend:
    """Tests for publishing."""

    @patch("vpsdev.notify.ntfy.requests.post")
    def test_headers_and_body(self, mock_post: MagicMock) -> None:
        """Metadata travels in headers and the body is UTF-8."""
        mock_post.return_value = MagicMock(status_code=200)
        msg = NtfyMessage(title="T", body="héllo", priority="high", tags="a,b", click="termius://x")

        assert send("topic", msg) == 200

        args, kwargs = mock_post.call_args
        assert args[0] == "https://ntfy.sh/topic"
        assert kwargs["data"] == "héllo".encode("utf-8")
        assert kwargs["headers"] == {
            "Title": "T", "Priority": "high", "Tags": "a,b", "Click": "termius://x",
        }

    @patch("vpsdev.notify.ntfy.requests.post")
    def test_http_error_raises(self, mock_post: MagicMock) -> None:
        """Rejections surface the raw response."""
        mock_post.return_value = MagicMock(status_code=500, text="boom")
        with pytest.raises(RuntimeError, match="HTTP 500.*boom"):
            send("topic", NtfyMessage(title="T", body="b"))

    @patch("vpsdev.notify.ntfy.requests.post")
    def test_network_error_raises(self, mock_post: MagicMock) -> None:
        """Transport errors become RuntimeError."""
        mock_post.side_effect = requests.ConnectionError("offline")
        with pytest.raises(RuntimeError, match="offline"):
            send("topic", NtfyMessage(title="T", body="b"))

    @patch("vpsdev.notify.ntfy.requests.post")
    def test_emoji_title_encoded(self, mock_post: MagicMock) -> None:
        """Non-Latin-1 header values go out as RFC 2047 encoded words."""
        mock_post.return_value = MagicMock(status_code=200)
        send("topic", NtfyMessage(title="Build ✅", body="done", tags="déjà"))

        headers = mock_post.call_args.kwargs["headers"]
        expected = base64.b64encode("Build ✅".encode("utf-8")).decode("ascii")
        assert headers["Title"] == f"=?UTF-8?B?{expected}?="
        assert headers["Tags"] == "déjà"
        for value in headers.values():
            value.encode("latin-1")

    def test_encode_header_passthrough(self) -> None:
        """Latin-1 values are left alone."""
        assert encode_header("Claude Completed") == "Claude Completed"

    @patch("vpsdev.notify.ntfy.requests.post")
    def test_encoding_error_raises(self, mock_post: MagicMock) -> None:
        """Header encoding failures become RuntimeError."""
        mock_post.side_effect = UnicodeEncodeError("latin-1", "✅", 0, 1, "ordinal not in range")
        with pytest.raises(RuntimeError, match="latin-1"):
            send("topic", NtfyMessage(title="T", body="b"))

    def test_ready_message(self) -> None:
        """Setup's first message links back over ssh."""
        msg = ready_message("claude")
        assert msg.priority == "high"
        assert msg.click == "ssh://claude@your-vps-ip"
