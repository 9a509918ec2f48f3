"""Tests for the claude-tmux systemd service.

Tests unit file generation, install logic, and status parsing.
Actual systemctl commands are mocked to avoid system dependencies.
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from vpsdev.systemd import (
    SERVICE_NAME,
    generate_unit_file,
    install_service,
    restart_service,
    service_logs,
    service_status,
)


class TestGenerateUnitFile:
    """Tests for unit file generation."""

    def test_unit_file(self) -> None:
        """Unit runs a forking tmux session as the service user."""
        content = generate_unit_file("claude", Path("/home/claude"))
        assert "Description=Claude Code tmux Session" in content
        assert "After=network.target" in content
        assert "Type=forking" in content
        assert "User=claude" in content
        assert "Group=claude" in content
        assert "WorkingDirectory=/home/claude" in content
        assert "ExecStart=/usr/bin/tmux new-session -d -s claude -c /home/claude/projects" in content
        assert "ExecStop=/usr/bin/tmux kill-session -t claude" in content
        assert "Restart=on-failure" in content
        assert "RestartSec=10" in content
        assert 'Environment="HOME=/home/claude"' in content
        assert "/home/claude/.local/bin" in content
        assert "WantedBy=multi-user.target" in content

    def test_custom_session(self) -> None:
        """The session name flows into start and stop."""
        content = generate_unit_file("dev", Path("/srv/dev"), session="work")
        assert "-s work" in content
        assert "kill-session -t work" in content


class TestInstallService:
    """Tests for install_service."""

    @patch("vpsdev.systemd._systemctl")
    def test_install_writes_and_enables(self, mock_ctl: MagicMock, tmp_path: Path) -> None:
        """Unit is written, systemd reloaded, and the service enabled."""
        mock_ctl.return_value = subprocess.CompletedProcess([], 0)

        result = install_service("claude", Path("/home/claude"), unit_dir=tmp_path)

        assert result == {
            "unit_path": str(tmp_path / SERVICE_NAME), "installed": True, "enabled": True,
        }
        assert "User=claude" in (tmp_path / SERVICE_NAME).read_text()
        assert mock_ctl.call_args_list[0][0] == ("daemon-reload",)
        assert mock_ctl.call_args_list[1][0] == ("enable", SERVICE_NAME)

    @patch("vpsdev.systemd._systemctl")
    def test_install_twice_is_harmless(self, mock_ctl: MagicMock, tmp_path: Path) -> None:
        """Reinstalling rewrites the same unit."""
        mock_ctl.return_value = subprocess.CompletedProcess([], 0)
        install_service("claude", Path("/home/claude"), unit_dir=tmp_path)
        first = (tmp_path / SERVICE_NAME).read_text()
        install_service("claude", Path("/home/claude"), unit_dir=tmp_path)
        assert (tmp_path / SERVICE_NAME).read_text() == first

    @patch("vpsdev.systemd._systemctl")
    def test_install_no_enable(self, mock_ctl: MagicMock, tmp_path: Path) -> None:
        """enable=False only reloads."""
        mock_ctl.return_value = subprocess.CompletedProcess([], 0)
        result = install_service("claude", Path("/home/claude"), unit_dir=tmp_path, enable=False)
        assert result["enabled"] is False
        assert mock_ctl.call_count == 1

    @patch("vpsdev.systemd._run")
    def test_reload_failure_raises(self, mock_run: MagicMock, tmp_path: Path) -> None:
        """A failing daemon-reload propagates."""
        mock_run.side_effect = subprocess.CalledProcessError(1, ["systemctl", "daemon-reload"])
        with pytest.raises(subprocess.CalledProcessError):
            install_service("claude", Path("/home/claude"), unit_dir=tmp_path)


class TestServiceStatus:
    """Tests for status parsing."""

    def test_not_installed(self, tmp_path: Path) -> None:
        """No unit file means not installed."""
        status = service_status(unit_dir=tmp_path)
        assert status.installed is False
        assert status.active is False

    @patch("vpsdev.systemd._systemctl")
    def test_running(self, mock_ctl: MagicMock, tmp_path: Path) -> None:
        """Enabled, active, PID and timestamp are parsed."""
        (tmp_path / SERVICE_NAME).write_text("[Unit]\n")
        mock_ctl.side_effect = [
            subprocess.CompletedProcess([], 0, stdout="enabled\n"),
            subprocess.CompletedProcess([], 0, stdout="active\n"),
            subprocess.CompletedProcess([], 0, stdout=(
                "MainPID=1234\nActiveEnterTimestamp=Mon 2025-01-06 10:00:00 UTC\nExecMainStatus=0\n"
            )),
        ]
        status = service_status(unit_dir=tmp_path)
        assert status.installed and status.enabled and status.active
        assert status.pid == 1234
        assert status.since == "Mon 2025-01-06 10:00:00 UTC"
        assert status.exit_code == "0"

    @patch("vpsdev.systemd._systemctl")
    def test_stopped(self, mock_ctl: MagicMock, tmp_path: Path) -> None:
        """Inactive services report their last exit status."""
        (tmp_path / SERVICE_NAME).write_text("[Unit]\n")
        mock_ctl.side_effect = [
            subprocess.CompletedProcess([], 1, stdout="disabled\n"),
            subprocess.CompletedProcess([], 3, stdout="inactive\n"),
            subprocess.CompletedProcess([], 0, stdout="MainPID=0\nExecMainStatus=1\n"),
        ]
        status = service_status(unit_dir=tmp_path)
        assert not status.enabled
        assert not status.active
        assert status.pid == 0
        assert status.exit_code == "1"


class TestLogsAndRestart:
    """Tests for journal access and restart."""

    def test_follow_returns_command(self) -> None:
        """Follow mode hands back the journalctl command."""
        assert service_logs(follow=True) == f"journalctl -u {SERVICE_NAME} -f"

    @patch("vpsdev.systemd._run")
    def test_recent_lines(self, mock_run: MagicMock) -> None:
        """Recent lines come from journalctl without a pager."""
        mock_run.return_value = subprocess.CompletedProcess([], 0, stdout="line\n")
        assert service_logs(lines=10) == "line\n"
        mock_run.assert_called_once_with(
            ["journalctl", "-u", SERVICE_NAME, "-n", "10", "--no-pager"]
        )

    @patch("vpsdev.systemd._systemctl")
    def test_restart(self, mock_ctl: MagicMock) -> None:
        """Restart success follows the exit code."""
        mock_ctl.return_value = subprocess.CompletedProcess([], 0)
        assert restart_service() is True
        mock_ctl.return_value = subprocess.CompletedProcess([], 1)
        assert restart_service() is False
