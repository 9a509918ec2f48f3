"""Tests for VPS provisioning.

System commands go through a recording runner backed by a small fake
machine, so the steps can be run end to end against a temporary home.
"""

from __future__ import annotations

import stat
import subprocess
from pathlib import Path
from typing import Optional
from unittest.mock import MagicMock, patch

import pytest

from vpsdev.provision import (
    BASHRC_SNIPPET,
    HELPER_SCRIPTS,
    CommandRunner,
    ProvisionConfig,
    ProvisionError,
    Provisioner,
    next_steps,
    render_helper,
)

UBUNTU = 'ID=ubuntu\nVERSION_ID="22.04"\nVERSION_CODENAME=jammy\n'


class FakeMachine:
    """The bits of system state provisioning looks at."""

    def __init__(self) -> None:
        self.users: set[str] = set()
        self.sudoers: set[str] = set()
        self.ufw_rules: list[str] = []
        self.ufw_active = False
        self.node = ""
        self.claude = False

    def which(self, name: str) -> Optional[str]:
        if name == "node" and self.node:
            return "/usr/bin/node"
        if name == "claude" and self.claude:
            return "/usr/bin/claude"
        return None

    def ufw_status(self) -> str:
        if not self.ufw_active:
            return "Status: inactive\n"
        rules = "".join(f"{rule:<28}ALLOW       Anywhere\n" for rule in self.ufw_rules)
        return f"Status: active\n\nTo                          Action      From\n{rules}"


class RecordingRunner(CommandRunner):
    """CommandRunner that applies commands to a FakeMachine."""

    def __init__(self, machine: FakeMachine, dry_run: bool = False, fail_on: str = "") -> None:
        self.lines: list[str] = []
        super().__init__(dry_run=dry_run, echo=self.lines.append)
        self.machine = machine
        self.fail_on = fail_on

    def run(self, cmd, env=None, input=None, check=True):
        if self.dry_run:
            return super().run(cmd, env=env, input=input, check=check)
        self.history.append(cmd)
        joined = " ".join(cmd)
        if self.fail_on and joined.startswith(self.fail_on):
            raise subprocess.CalledProcessError(100, cmd, output="", stderr="E: Could not get lock")

        m = self.machine
        if cmd[0] == "useradd":
            m.users.add(cmd[-1])
        elif cmd[0] == "usermod":
            m.sudoers.add(cmd[-1])
        elif cmd[:2] == ["ufw", "allow"]:
            m.ufw_rules.append(cmd[2])
        elif cmd == ["ufw", "--force", "enable"]:
            m.ufw_active = True
        elif cmd[:2] == ["apt-get", "install"] and "nodejs" in cmd:
            m.node = "20"
        elif cmd[:3] == ["npm", "install", "-g"]:
            m.claude = True
        return subprocess.CompletedProcess(cmd, 0, "", "")

    def probe(self, cmd):
        m = self.machine
        if cmd[:2] == ["id", "-nG"]:
            user = cmd[2]
            groups = f"{user} sudo" if user in m.sudoers else user
            return subprocess.CompletedProcess(cmd, 0 if user in m.users else 1, groups + "\n", "")
        if cmd[0] == "id":
            return subprocess.CompletedProcess(cmd, 0 if cmd[1] in m.users else 1, "", "")
        if cmd == ["ufw", "status"]:
            return subprocess.CompletedProcess(cmd, 0, m.ufw_status(), "")
        if cmd == ["node", "-v"]:
            return subprocess.CompletedProcess(cmd, 0, f"v{m.node}.11.0\n", "")
        return subprocess.CompletedProcess(cmd, 127, "", "not found")

    def commands(self) -> list[str]:
        return [" ".join(c) for c in self.history]


@pytest.fixture
def machine() -> FakeMachine:
    return FakeMachine()


@pytest.fixture
def config(tmp_path: Path) -> ProvisionConfig:
    os_release = tmp_path / "os-release"
    os_release.write_text(UBUNTU)
    return ProvisionConfig(
        user="claude",
        home=tmp_path / "home" / "claude",
        unit_dir=tmp_path / "units",
        os_release=os_release,
    )


@pytest.fixture
def system(machine: FakeMachine):
    """Patch root check, PATH lookups, downloads and systemd install."""
    download = MagicMock(status_code=200, text="#!/bin/bash\necho nodesource\n")
    with patch("vpsdev.provision.require_root"), \
         patch("vpsdev.provision.shutil.which", side_effect=machine.which), \
         patch("vpsdev.provision.requests.get", return_value=download) as mock_get, \
         patch("vpsdev.provision.systemd.install_service",
               return_value={"unit_path": "/etc/systemd/system/claude-tmux.service"}) as mock_install:
        yield {"get": mock_get, "install": mock_install}


class TestHelpers:
    """Tests for helper scripts and static content."""

    def test_all_helpers_present(self) -> None:
        """Every documented helper is generated."""
        assert set(HELPER_SCRIPTS) == {
            "claude-attach", "claude-start", "claude-stop", "claude-status",
            "claude-restart", "claude-logs", "claude-update",
        }

    def test_render_helper(self) -> None:
        """Helpers are bash scripts with a description line."""
        text = render_helper("claude-attach")
        assert text.startswith("#!/bin/bash\n# Attach to the Claude Code tmux session\n")
        assert 'vpsdev session start -d ~/projects "$@"' in text

    def test_update_helper(self) -> None:
        """claude-update updates the npm package."""
        assert "sudo npm update -g @anthropic-ai/claude-code" in render_helper("claude-update")

    def test_next_steps_mention_user(self, config: ProvisionConfig) -> None:
        """Next steps name the service account."""
        steps = next_steps(config)
        assert any("su - claude" in step for step in steps)
        assert any("systemctl start claude-tmux.service" in step for step in steps)

    def test_home_and_bin_dir(self) -> None:
        """Home defaults to /home/<user>."""
        cfg = ProvisionConfig(user="dev")
        assert cfg.home_dir == Path("/home/dev")
        assert cfg.bin_dir == Path("/home/dev/.local/bin")


class TestSteps:
    """Tests for individual steps."""

    def test_bashrc_appended_once(self, tmp_path: Path, machine: FakeMachine, config: ProvisionConfig) -> None:
        """The PATH line is added only when missing."""
        bashrc = tmp_path / ".bashrc"
        bashrc.write_text("alias ll='ls -l'\n")
        provisioner = Provisioner(config, RecordingRunner(machine))

        assert provisioner.ensure_path_in_bashrc(bashrc) is True
        assert provisioner.ensure_path_in_bashrc(bashrc) is False
        assert bashrc.read_text() == "alias ll='ls -l'\n" + BASHRC_SNIPPET

    def test_existing_user_left_alone(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """An existing sudo user is neither recreated nor modified."""
        machine.users.add("claude")
        machine.sudoers.add("claude")
        runner = RecordingRunner(machine)

        summary = Provisioner(config, runner).setup_user()

        assert summary == "User 'claude' already exists"
        assert not any(c.startswith(("useradd", "usermod")) for c in runner.commands())
        assert (config.home_dir / "projects").is_dir()
        assert (config.home_dir / ".local" / "bin").is_dir()

    def test_new_user_created(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """A missing user is created and added to sudo."""
        runner = RecordingRunner(machine)
        assert Provisioner(config, runner).setup_user() == "User 'claude' created"
        assert "useradd -m -s /bin/bash claude" in runner.commands()
        assert "usermod -aG sudo claude" in runner.commands()

    def test_firewall_fresh(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """A fresh firewall gets both rules and is enabled."""
        runner = RecordingRunner(machine)
        summary = Provisioner(config, runner).configure_firewall()
        assert runner.commands() == [
            "ufw allow OpenSSH", "ufw allow 60000:61000/udp", "ufw --force enable",
        ]
        assert summary == "Firewall: OpenSSH, 60000:61000/udp, enabled"

    def test_firewall_already_configured(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """Existing rules are not duplicated."""
        machine.ufw_active = True
        machine.ufw_rules = ["OpenSSH", "60000:61000/udp"]
        runner = RecordingRunner(machine)
        assert Provisioner(config, runner).configure_firewall() == "Firewall already configured"
        assert runner.history == []

    def test_non_debian_warns(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """Other distributions produce a warning, not a failure."""
        config.os_release.write_text("ID=arch\n")
        provisioner = Provisioner(config, RecordingRunner(machine))
        provisioner.check_os()
        assert any("arch" in w for w in provisioner.warnings)

    @patch("vpsdev.provision.shutil.which", return_value="/usr/bin/node")
    def test_node_already_current(self, _which: MagicMock, machine: FakeMachine, config: ProvisionConfig) -> None:
        """The wanted Node.js major is not reinstalled."""
        machine.node = "20"
        runner = RecordingRunner(machine)
        assert Provisioner(config, runner).install_nodejs() == "Node.js 20 is already installed"
        assert runner.history == []


class TestFullRun:
    """Tests for running every step."""

    def test_fresh_machine(self, system: dict, machine: FakeMachine, config: ProvisionConfig) -> None:
        """A fresh box ends up fully provisioned."""
        runner = RecordingRunner(machine)
        provisioner = Provisioner(config, runner)
        started: list[str] = []

        results = provisioner.run(on_start=started.append)

        assert [name for name, _ in results] == [name for name, _ in provisioner.steps]
        assert started[0] == "Check root"
        commands = runner.commands()
        assert "apt-get update -qq" in commands
        assert any(c.startswith("apt-get install -y -qq curl wget git tmux mosh") for c in commands)
        assert "bash -" in commands
        assert "npm install -g @anthropic-ai/claude-code" in commands
        system["get"].assert_called_once_with("https://deb.nodesource.com/setup_20.x", timeout=30)
        system["install"].assert_called_once_with(
            "claude", config.home_dir, "claude", unit_dir=config.unit_dir,
        )

        home = config.home_dir
        assert "prefix C-a" in (home / ".tmux.conf").read_text()
        assert "ANTHROPIC_API_KEY" in (home / ".claude" / "env").read_text()
        for name in HELPER_SCRIPTS:
            script = home / ".local" / "bin" / name
            assert stat.S_IMODE(script.stat().st_mode) == 0o755
        assert ".local/bin" in (home / ".bashrc").read_text()
        assert "Remember to set ANTHROPIC_API_KEY!" in provisioner.warnings

    def test_second_run_changes_nothing_persistent(
        self, system: dict, machine: FakeMachine, config: ProvisionConfig,
    ) -> None:
        """Running again leaves users, PATH and firewall rules as they were."""
        Provisioner(config, RecordingRunner(machine)).run()
        bashrc = (config.home_dir / ".bashrc").read_text()
        system["get"].reset_mock()

        runner = RecordingRunner(machine)
        results = dict(Provisioner(config, runner).run())

        commands = runner.commands()
        assert not any(c.startswith(("useradd", "usermod", "ufw")) for c in commands)
        assert "npm update -g @anthropic-ai/claude-code" in commands
        system["get"].assert_not_called()
        assert results["Configure firewall"] == "Firewall already configured"
        assert results["Set up user"] == "User 'claude' already exists"
        assert (config.home_dir / ".bashrc").read_text() == bashrc
        assert machine.ufw_rules == ["OpenSSH", "60000:61000/udp"]

    def test_failure_aborts(self, system: dict, machine: FakeMachine, config: ProvisionConfig) -> None:
        """The first failing step stops the run."""
        runner = RecordingRunner(machine, fail_on="apt-get update")

        with pytest.raises(ProvisionError) as excinfo:
            Provisioner(config, runner).run()

        assert excinfo.value.step == "Update system packages"
        assert "'apt-get update -qq' exited with 100: E: Could not get lock" in str(excinfo.value)
        assert not any(c.startswith("useradd") for c in runner.commands())
        system["install"].assert_not_called()

    def test_root_required(self, machine: FakeMachine, config: ProvisionConfig) -> None:
        """Non-root runs fail at the first step."""
        with patch("vpsdev.preflight.os.geteuid", return_value=1000):
            with pytest.raises(ProvisionError) as excinfo:
                Provisioner(config, RecordingRunner(machine)).run()
        assert excinfo.value.step == "Check root"

    def test_dry_run_changes_nothing(self, system: dict, machine: FakeMachine, config: ProvisionConfig) -> None:
        """Dry run reports the plan without touching the machine."""
        runner = RecordingRunner(machine, dry_run=True)

        Provisioner(config, runner).run()

        assert not config.home_dir.exists()
        assert machine.users == set()
        system["get"].assert_not_called()
        system["install"].assert_not_called()
        assert "[dry-run] useradd -m -s /bin/bash claude" in runner.lines
        assert any(line.startswith("[dry-run] curl -fsSL https://deb.nodesource.com") for line in runner.lines)
        assert any("claude-tmux.service" in line for line in runner.lines)
