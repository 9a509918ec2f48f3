"""
Credential export, import, and sync between machines.

Packages the assistant's configuration (``~/.claude.json`` and a few
files under ``~/.claude/``) into an encrypted archive that can be
copied to a VPS and unpacked there. Known secret values are replaced
with ``SET_ON_VPS`` before anything leaves the machine, so the archive
carries structure, not tokens.

Archive layout (before encryption, gzip-compressed tar):
    ./.claude.json          # redacted when secrets were detected
    ./.claude/settings.json
    ./.claude/CLAUDE.md
    ./.claude/statsig.json
    ./.claude/projects.json
    ./.claude/skills/...
    ./MANIFEST.txt

Archive name: ``claude-credentials-<YYYYmmdd_HHMMSS>.tar.gz.enc``.
"""

from __future__ import annotations

import getpass
import io
import json
import logging
import re
import shutil
import socket
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from . import crypto

logger = logging.getLogger("vpsdev.credentials")

PLACEHOLDER = "SET_ON_VPS"
MAIN_CONFIG = ".claude.json"
CONFIG_DIR = ".claude"
CONFIG_DIR_FILES = ["settings.json", "CLAUDE.md", "statsig.json", "projects.json"]
SKILLS_DIR = "skills"
MANIFEST_NAME = "MANIFEST.txt"
ARCHIVE_PREFIX = "claude-credentials-"
ARCHIVE_SUFFIX = ".tar.gz.enc"

SENSITIVE_MARKERS = [
    "sk-", "xoxp-", "xoxb-", "ghp_", "ghs_", "ANTHROPIC_API_KEY", "password", "secret",
]

# Applied in order; later patterns see the output of earlier ones.
REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r'"SLACK_MCP_XOXP_TOKEN"\s*:\s*"[^"]*"'), f'"SLACK_MCP_XOXP_TOKEN": "{PLACEHOLDER}"'),
    (re.compile(r'"ANTHROPIC_API_KEY"\s*:\s*"[^"]*"'), f'"ANTHROPIC_API_KEY": "{PLACEHOLDER}"'),
    (re.compile(r'"GITHUB_TOKEN"\s*:\s*"[^"]*"'), f'"GITHUB_TOKEN": "{PLACEHOLDER}"'),
    (re.compile(r'"SUPABASE_[^"]*_KEY"\s*:\s*"[^"]*"'), f'"SUPABASE_KEY": "{PLACEHOLDER}"'),
    (re.compile(r"xoxp-[a-zA-Z0-9-]*"), PLACEHOLDER),
    (re.compile(r"sk-[a-zA-Z0-9-]*"), PLACEHOLDER),
    (re.compile(r"ghp_[a-zA-Z0-9]*"), PLACEHOLDER),
]

PLACEHOLDER_KEY = re.compile(r'"([^"]*)"\s*:\s*"' + PLACEHOLDER + '"')

VPS_SETUP_COMMANDS = [
    "npm install -g @anthropic-ai/claude-code",
    "npm install -g @modelcontextprotocol/server-github",
    "npm install -g @supabase/mcp-server-supabase",
    "npm install -g slack-mcp-server",
    "npm install -g @anthropic-ai/claude-mcp-server-puppeteer",
]


@dataclass
class ExportResult:
    """Outcome of an export."""

    archive: Path
    files: list[str] = field(default_factory=list)
    redacted: bool = False
    size: int = 0


@dataclass
class ImportResult:
    """Outcome of an import."""

    installed: list[str] = field(default_factory=list)
    backup_dir: Optional[Path] = None
    manifest: str = ""
    json_valid: Optional[bool] = None
    placeholders: list[str] = field(default_factory=list)
    claude_version: str = ""

    @property
    def validation_passed(self) -> bool:
        """True unless the main config is missing or invalid JSON."""
        return self.json_valid is not False and MAIN_CONFIG in self.installed


@dataclass
class SyncTarget:
    """Where ``sync`` ships the archive."""

    host: str
    user: str = "root"
    port: int = 22

    @property
    def destination(self) -> str:
        """``user@host`` for ssh/scp."""
        return f"{self.user}@{self.host}"

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


# ---------------------------------------------------------------------------
# Redaction
# ---------------------------------------------------------------------------


def contains_secrets(text: str) -> bool:
    """Whether text mentions anything that looks like a credential."""
    lowered = text.lower()
    return any(marker.lower() in lowered for marker in SENSITIVE_MARKERS)


def redact(text: str) -> str:
    """Replace known token values with the placeholder.

    Args:
        text: Raw config file content.

    Returns:
        str: Redacted content with the same structure.
    """
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


def placeholder_keys(text: str) -> list[str]:
    """Keys whose value is still the placeholder after import."""
    return PLACEHOLDER_KEY.findall(text)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def archive_name(timestamp: Optional[str] = None) -> str:
    """Encrypted archive filename for a timestamp."""
    ts = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{ARCHIVE_PREFIX}{ts}{ARCHIVE_SUFFIX}"


def build_manifest(files: list[str], host: str, user: str, created: Optional[datetime] = None) -> str:
    """Render MANIFEST.txt for the archive."""
    created = created or datetime.now()
    lines = [
        "Claude Code Credentials Export",
        "==============================",
        f"Created: {created:%a %b %d %H:%M:%S %Y}",
        f"Source: {host}",
        f"User: {user}",
        "",
        "Files Included:",
        *sorted(files),
        "",
        "IMPORTANT NOTES:",
        "----------------",
        "1. API tokens have been REDACTED from .claude.json",
        "2. You must manually set the following on the VPS:",
        "   - ANTHROPIC_API_KEY",
        "   - SLACK_MCP_XOXP_TOKEN (if using Slack MCP)",
        "   - GITHUB_TOKEN (if using GitHub MCP)",
        "   - Any Supabase access tokens",
        "",
        "3. After import, edit ~/.claude.json to add your tokens",
        "4. MCP server npm packages must be installed separately",
        "",
        "Setup Commands for VPS:",
        "-----------------------",
        "# Install Claude Code",
        VPS_SETUP_COMMANDS[0],
        "",
        "# Install MCP servers (as needed)",
        *VPS_SETUP_COMMANDS[1:],
        "",
    ]
    return "\n".join(lines)


def _stage(home: Path, staging: Path) -> tuple[list[str], bool]:
    """Copy config files into a staging directory.

    Returns:
        (relative paths staged, whether the main config was redacted).
    """
    main = home / MAIN_CONFIG
    if not main.is_file():
        raise FileNotFoundError(f"{main} not found - this is required!")

    staged: list[str] = []
    text = main.read_text(encoding="utf-8")
    redacted = contains_secrets(text)
    (staging / MAIN_CONFIG).write_text(redact(text) if redacted else text, encoding="utf-8")
    staged.append(MAIN_CONFIG)
    if redacted:
        logger.info("%s contains potential secrets; staged a sanitized copy", MAIN_CONFIG)

    (staging / CONFIG_DIR).mkdir()
    for name in CONFIG_DIR_FILES:
        src = home / CONFIG_DIR / name
        if src.is_file():
            shutil.copy2(src, staging / CONFIG_DIR / name)
            staged.append(f"{CONFIG_DIR}/{name}")
        else:
            logger.debug("Skipping %s (not found)", src)

    skills = home / CONFIG_DIR / SKILLS_DIR
    if skills.is_dir():
        shutil.copytree(skills, staging / CONFIG_DIR / SKILLS_DIR)
        for path in sorted((staging / CONFIG_DIR / SKILLS_DIR).rglob("*")):
            if path.is_file():
                staged.append(str(path.relative_to(staging)))

    return staged, redacted


def _tar_directory(source: Path) -> bytes:
    """gzip-compressed tar of a directory's contents, rooted at ``.``."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        tar.add(source, arcname=".")
    return buf.getvalue()


def export_credentials(
    passphrase: str,
    home: Optional[Path] = None,
    output_dir: Optional[Path] = None,
    on_file: Optional[Callable[[str], None]] = None,
) -> ExportResult:
    """Create the encrypted credentials archive.

    Args:
        passphrase: Encryption password.
        home: Home directory holding the config. Defaults to ``~``.
        output_dir: Where to write the archive. Defaults to ``~/Desktop``.
        on_file: Called with each staged relative path (for progress output).

    Returns:
        ExportResult describing the archive.

    Raises:
        FileNotFoundError: If ``~/.claude.json`` is missing.
    """
    home_path = (home or Path.home()).expanduser()
    out_dir = (output_dir or home_path / "Desktop").expanduser()
    out_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory(prefix="claude-export-") as tmp:
        staging = Path(tmp)
        files, redacted = _stage(home_path, staging)
        if on_file:
            for name in files:
                on_file(name)

        manifest = build_manifest(files, socket.gethostname(), getpass.getuser())
        (staging / MANIFEST_NAME).write_text(manifest, encoding="utf-8")

        archive = out_dir / archive_name()
        archive.write_bytes(crypto.encrypt(_tar_directory(staging), passphrase))

    size = archive.stat().st_size
    logger.info("Exported %d file(s) to %s (%d bytes)", len(files), archive, size)
    return ExportResult(archive=archive, files=files, redacted=redacted, size=size)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


def _extract(payload: bytes, target: Path) -> None:
    """Extract a decrypted tarball, refusing paths outside ``target``."""
    try:
        with tarfile.open(fileobj=io.BytesIO(payload), mode="r:gz") as tar:
            tar.extractall(target, filter="data")
    except (tarfile.TarError, OSError) as exc:
        raise ValueError(f"Archive could not be extracted: {exc}") from exc


def backup_existing(home: Path, timestamp: Optional[str] = None) -> Optional[Path]:
    """Copy any existing config aside before it is overwritten.

    Returns:
        Path of the backup directory, or None when there was nothing to keep.
    """
    main = home / MAIN_CONFIG
    config_dir = home / CONFIG_DIR
    if not main.exists() and not config_dir.exists():
        return None

    ts = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_dir = home / f".claude-backup-{ts}"
    backup_dir.mkdir(parents=True, exist_ok=True)
    if main.is_file():
        shutil.copy2(main, backup_dir / MAIN_CONFIG)
    if config_dir.is_dir():
        shutil.copytree(config_dir, backup_dir / CONFIG_DIR, dirs_exist_ok=True)
    logger.info("Backed up existing configuration to %s", backup_dir)
    return backup_dir


def _install(staging: Path, home: Path) -> list[str]:
    """Copy extracted files into place with owner-only permissions."""
    installed: list[str] = []
    config_dir = home / CONFIG_DIR
    config_dir.mkdir(parents=True, exist_ok=True)

    src_main = staging / MAIN_CONFIG
    if src_main.is_file():
        shutil.copy2(src_main, home / MAIN_CONFIG)
        (home / MAIN_CONFIG).chmod(0o600)
        installed.append(MAIN_CONFIG)

    for name in CONFIG_DIR_FILES:
        src = staging / CONFIG_DIR / name
        if src.is_file():
            shutil.copy2(src, config_dir / name)
            installed.append(f"{CONFIG_DIR}/{name}")

    skills = staging / CONFIG_DIR / SKILLS_DIR
    if skills.is_dir():
        shutil.copytree(skills, config_dir / SKILLS_DIR, dirs_exist_ok=True)
        installed.append(f"{CONFIG_DIR}/{SKILLS_DIR}/")

    config_dir.chmod(0o700)
    for path in config_dir.rglob("*"):
        if path.is_file():
            path.chmod(0o600)

    return installed


def _claude_version() -> str:
    """``claude --version`` output, or '' when the CLI is absent."""
    binary = shutil.which("claude")
    if not binary:
        return ""
    try:
        r = subprocess.run([binary, "--version"], capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.TimeoutExpired):
        return "unknown"
    return r.stdout.strip() or "unknown"


def import_credentials(
    archive: Path,
    passphrase: str,
    home: Optional[Path] = None,
) -> ImportResult:
    """Decrypt an archive and install its files.

    Decryption and extraction happen before anything in ``home`` is
    touched, so a wrong passphrase leaves the existing setup intact.

    Args:
        archive: Path to the ``.tar.gz.enc`` file.
        passphrase: Encryption password.
        home: Target home directory. Defaults to ``~``.

    Returns:
        ImportResult with installed files, backup location, and validation.

    Raises:
        FileNotFoundError: If the archive does not exist.
        ValueError: If decryption or extraction fails.
    """
    archive = archive.expanduser()
    if not archive.is_file():
        raise FileNotFoundError(f"Archive not found: {archive}")

    home_path = (home or Path.home()).expanduser()
    result = ImportResult()

    with tempfile.TemporaryDirectory(prefix="claude-import-") as tmp:
        staging = Path(tmp)
        payload = crypto.decrypt(archive.read_bytes(), passphrase)
        _extract(payload, staging)

        manifest = staging / MANIFEST_NAME
        if manifest.is_file():
            result.manifest = manifest.read_text(encoding="utf-8")

        result.backup_dir = backup_existing(home_path)
        result.installed = _install(staging, home_path)

    main = home_path / MAIN_CONFIG
    if main.is_file():
        text = main.read_text(encoding="utf-8")
        try:
            json.loads(text)
            result.json_valid = True
        except json.JSONDecodeError:
            result.json_valid = False
        result.placeholders = placeholder_keys(text)

    result.claude_version = _claude_version()
    logger.info("Imported %d item(s) into %s", len(result.installed), home_path)
    return result


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


def parse_target(
    target: Optional[str],
    default_user: str = "root",
    default_host: Optional[str] = None,
    default_port: int = 22,
) -> SyncTarget:
    """Parse ``[user@]host[:port]``.

    Raises:
        ValueError: If no host is given and no default exists, or the
            port is not a number.
    """
    user, host, port = default_user, default_host, default_port
    if target:
        if "@" in target:
            user, _, target = target.partition("@")
        if ":" in target:
            host, _, port_text = target.partition(":")
            try:
                port = int(port_text)
            except ValueError:
                raise ValueError(f"Invalid port: {port_text}") from None
        else:
            host = target

    if not host:
        raise ValueError("VPS hostname is required")
    return SyncTarget(host=host, user=user or default_user, port=int(port))


def sync_commands(target: SyncTarget, archive: Path, remote_command: str, no_import: bool) -> list[list[str]]:
    """The scp/ssh invocations a sync performs, in order."""
    remote_archive = f"/tmp/{archive.name}"
    commands = [["scp", "-P", str(target.port), str(archive), f"{target.destination}:/tmp/"]]
    if not no_import:
        commands.append([
            "ssh", "-t", "-p", str(target.port), target.destination,
            f"{remote_command} {remote_archive} && rm {remote_archive}",
        ])
    return commands


def sync_credentials(
    target: SyncTarget,
    passphrase: str,
    home: Optional[Path] = None,
    remote_command: str = "vpsdev credentials import",
    dry_run: bool = False,
    no_import: bool = False,
    echo: Callable[[str], None] = print,
) -> dict:
    """Export, copy to the VPS, and optionally import there.

    Args:
        target: Destination host.
        passphrase: Encryption password (also needed remotely).
        home: Local home directory.
        remote_command: Command run on the VPS with the archive path.
        dry_run: Print what would run without exporting or connecting.
        no_import: Stop after the copy.
        echo: Where progress lines go.

    Returns:
        dict: 'archive' name, 'commands' run (or planned), 'imported'.

    Raises:
        RuntimeError: If scp or ssh exits non-zero.
    """
    result: dict = {"archive": "", "commands": [], "imported": False}

    with tempfile.TemporaryDirectory(prefix="claude-sync-") as tmp:
        if dry_run:
            archive = Path(tmp) / archive_name("TIMESTAMP")
            echo(f"[DRY RUN] Would export credentials to {tmp}")
        else:
            archive = export_credentials(passphrase, home=home, output_dir=Path(tmp)).archive
        result["archive"] = archive.name

        for cmd in sync_commands(target, archive, remote_command, no_import):
            result["commands"].append(cmd)
            if dry_run:
                echo(f"[DRY RUN] Would run: {' '.join(cmd)}")
                continue
            logger.info("Running: %s", " ".join(cmd))
            r = subprocess.run(cmd)
            if r.returncode != 0:
                raise RuntimeError(f"{cmd[0]} exited with code {r.returncode}")

    result["imported"] = not dry_run and not no_import
    return result
