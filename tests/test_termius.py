"""Tests for Termius-linked notifications."""

from __future__ import annotations

import pytest

from vpsdev.notify.termius import build_message, termius_deep_link


class TestTermius:
    """Tests for deep links and message composition."""

    def test_deep_link_encodes_spaces(self) -> None:
        """Spaces in the host label are percent-encoded."""
        assert termius_deep_link("Claude VPS") == "termius://host?label=Claude%20VPS"

    def test_defaults(self) -> None:
        """Defaults match the push command's defaults."""
        msg = build_message("Build done")
        assert (msg.title, msg.priority, msg.tags) == ("VPS Alert", "default", "computer")
        assert msg.click == ""
        assert "Click" not in msg.headers()

    def test_click_header(self) -> None:
        """A click URL becomes the Click header."""
        msg = build_message("Deploy", title="Deploy", priority="high", click="termius://host?label=x")
        assert msg.headers()["Click"] == "termius://host?label=x"

    def test_empty_message_rejected(self) -> None:
        """A message is required."""
        with pytest.raises(ValueError, match="No message provided"):
            build_message("")
