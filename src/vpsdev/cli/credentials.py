"""Credential commands: export, import, sync."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import console, fail, get_settings, info, success, warning

from rich.panel import Panel
from rich.text import Text


def _passphrase(confirm: bool) -> str:
    passphrase = click.prompt(
        "Encryption password", hide_input=True, confirmation_prompt=confirm,
    )
    if not passphrase:
        fail("Password cannot be empty")
    return passphrase


def register_credentials_commands(main: click.Group) -> None:
    """Register the credentials command group."""

    @main.group()
    def credentials():
        """Move Claude Code configuration between machines.

        Archives ~/.claude.json and selected ~/.claude/ files, replaces
        known secrets with SET_ON_VPS, and encrypts the result with
        AES-256-CBC (openssl-compatible, PBKDF2 100k iterations).
        """

    @credentials.command("export")
    @click.argument("output_dir", required=False, type=click.Path())
    def credentials_export(output_dir: str):
        """Create an encrypted credentials archive (default: ~/Desktop).

        Examples:

            vpsdev credentials export

            vpsdev credentials export /tmp

            openssl enc -aes-256-cbc -d -salt -pbkdf2 -iter 100000 -in ARCHIVE | tar -tzf -
        """
        from ..credentials import export_credentials

        info("Collecting Claude Code configuration files...")
        console.print("[blue]Remember this password - you'll need it on the VPS![/]")
        passphrase = _passphrase(confirm=True)

        try:
            result = export_credentials(
                passphrase,
                output_dir=Path(output_dir) if output_dir else None,
                on_file=lambda name: console.print(f"  [green]+[/] {name}", highlight=False),
            )
        except FileNotFoundError as exc:
            fail(str(exc))

        if result.redacted:
            warning(".claude.json contained potential secrets; they were replaced with SET_ON_VPS")

        console.print(Panel(
            f"[bold green]Export complete[/]\n"
            f"Files: {len(result.files)}\n"
            f"Size: {result.size:,} bytes\n"
            f"Archive: [cyan]{result.archive}[/]\n\n"
            f"Next: scp {result.archive.name} to the VPS and run\n"
            f"  vpsdev credentials import /tmp/{result.archive.name}",
            title="Credentials Export",
            border_style="green",
        ))
        console.print("[red]Delete the archive after importing it on the VPS.[/]")

    @credentials.command("import")
    @click.argument("archive", type=click.Path())
    def credentials_import(archive: str):
        """Decrypt an archive and install it into ~/.

        Existing configuration is backed up to ~/.claude-backup-<timestamp>/
        first. A wrong password aborts before anything is touched.
        """
        from ..credentials import import_credentials

        archive_path = Path(archive).expanduser()
        if not archive_path.is_file():
            fail(f"Archive not found: {archive_path}")

        passphrase = _passphrase(confirm=False)
        try:
            result = import_credentials(archive_path, passphrase)
        except (FileNotFoundError, ValueError) as exc:
            fail(f"Decryption failed. Check your password. ({exc})")

        if result.manifest:
            console.print(Panel(Text(result.manifest.strip()), title="Manifest", border_style="blue"))
        if result.backup_dir:
            success(f"Backup created at {result.backup_dir}")
        for name in result.installed:
            console.print(f"  [green]+[/] {name} installed", highlight=False)
        success("Permissions set (700 for directory, 600 for files)")

        if result.json_valid:
            success(".claude.json is valid JSON")
        elif result.json_valid is False:
            warning(".claude.json is not valid JSON")
        else:
            warning(".claude.json not found after import")

        if result.placeholders:
            warning("Tokens need to be configured! Replace SET_ON_VPS in ~/.claude.json for:")
            for key in result.placeholders:
                console.print(f"    {key}", markup=False)

        if not result.claude_version:
            warning("Claude Code CLI not found. Install with: npm install -g @anthropic-ai/claude-code")
        else:
            info(f"Claude Code version: {result.claude_version}")

        if result.validation_passed:
            success("Credentials successfully imported.")
        else:
            warning("Import completed with warnings - see above.")

    @credentials.command("sync")
    @click.argument("target", required=False)
    @click.option("--dry-run", is_flag=True, help="Show what would happen without doing it.")
    @click.option("--no-import", is_flag=True, help="Only copy the archive, don't run import remotely.")
    @click.option("--remote-command", default=None, help="Import command to run on the VPS.")
    def credentials_sync(target: str, dry_run: bool, no_import: bool, remote_command: str):
        """Export, copy to the VPS, and import there in one step.

        TARGET is [user@]host[:port]; VPS_USER, VPS_HOST and VPS_PORT
        fill in whatever is left out.

        Examples:

            vpsdev credentials sync 192.168.1.100

            vpsdev credentials sync root@myvps.example.com:2222

            vpsdev credentials sync --dry-run myvps
        """
        from ..credentials import parse_target, sync_credentials

        settings = get_settings().sync
        try:
            sync_target = parse_target(target, settings.user, settings.host, settings.port)
        except ValueError as exc:
            fail(str(exc))

        info(f"Target: {sync_target}")
        passphrase = "dry-run" if dry_run else _passphrase(confirm=True)

        try:
            result = sync_credentials(
                sync_target,
                passphrase,
                remote_command=remote_command or settings.remote_command,
                dry_run=dry_run,
                no_import=no_import,
                echo=lambda line: console.print(line, markup=False, highlight=False),
            )
        except FileNotFoundError as exc:
            fail(str(exc))
        except RuntimeError as exc:
            fail(f"Sync failed: {exc}")

        if dry_run:
            info("Dry run complete; nothing was copied.")
        elif result["imported"]:
            success(f"Credentials synced to {sync_target.destination}")
        else:
            success(f"Archive copied to {sync_target.destination}:/tmp/{result['archive']}")
            info(f"Import it there with: vpsdev credentials import /tmp/{result['archive']}")

    main.add_command(credentials)
