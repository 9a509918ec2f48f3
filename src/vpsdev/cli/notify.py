"""Notification commands: hook, push, telegram, setup-ntfy, setup-telegram."""

from __future__ import annotations

import getpass
import sys
from pathlib import Path

import click

from ..notify.termius import PRIORITIES
from ._common import console, fail, get_settings, info, success, warning

from rich.panel import Panel


def register_notify_commands(main: click.Group) -> None:
    """Register the notify command group."""

    @main.group()
    def notify():
        """Phone notifications: ntfy push, Termius links, Telegram.

        Wire these into the assistant's Notification and Stop hooks to
        hear about permission prompts and finished work away from the
        terminal.
        """

    @notify.command("hook")
    @click.argument("event_type", default="notification")
    @click.argument("message", default="Claude needs your attention")
    def notify_hook(event_type: str, message: str):
        """Send an ntfy notification for an assistant hook event.

        EVENT_TYPE is notification, stop, or test. For stop, MESSAGE is
        the stop reason (end_turn, user_interrupt, tool_error, max_turns).

        Examples:

            vpsdev notify hook notification "Claude needs permission to edit files"

            vpsdev notify hook stop end_turn
        """
        from ..notify.ntfy import build_event, load_topic, send, short_hostname

        settings = get_settings().ntfy
        try:
            topic = load_topic(settings.topic_file)
        except FileNotFoundError as exc:
            fail(str(exc))

        msg = build_event(
            event_type, message, short_hostname(), Path.cwd().name, ssh_user=settings.ssh_user,
        )
        try:
            send(topic, msg, settings.server)
        except RuntimeError as exc:
            fail(str(exc))

    @notify.command("push")
    @click.argument("message", required=False, default="")
    @click.option("--title", "-t", default="VPS Alert", help="Notification title.")
    @click.option("--priority", "-p", default="default",
                  type=click.Choice(PRIORITIES, case_sensitive=False),
                  help="Priority: min, low, default, high, urgent/max, or 1-5.")
    @click.option("--tags", "-g", default="computer", help="Comma-separated tags/emojis.")
    @click.option("--click", "-c", "click_url", default=None, help="Custom click URL (overrides Termius).")
    @click.option("--no-termius", "-n", is_flag=True, help="Don't add the Termius deep link.")
    def notify_push(message: str, title: str, priority: str, tags: str, click_url: str, no_termius: bool):
        """Push a notification whose tap opens Termius on this host.

        Needs NTFY_TOPIC; NTFY_SERVER and TERMIUS_HOST_LABEL are optional.

        Examples:

            vpsdev notify push "Build completed successfully"

            vpsdev notify push -t "Deploy" -p high "Production deploy finished"

            vpsdev notify push -n "Simple notification without Termius link"
        """
        from ..notify.ntfy import send
        from ..notify.termius import build_message, termius_deep_link

        settings = get_settings().termius
        if not settings.topic:
            fail('NTFY_TOPIC environment variable not set. Set it with: export NTFY_TOPIC="your-topic-name"')

        if click_url is None and not no_termius:
            click_url = termius_deep_link(settings.host_label)

        try:
            msg = build_message(message, title, priority, tags, click_url)
        except ValueError as exc:
            fail(str(exc))

        try:
            send(settings.topic, msg, settings.server)
        except RuntimeError as exc:
            fail(str(exc))
        info(f"Notification sent to topic: {settings.topic}")
        if msg.click:
            info(f"Click action: {msg.click}")

    @notify.command("telegram")
    @click.argument("hook_type", default="stop")
    @click.argument("message", required=False, default="")
    def notify_telegram(hook_type: str, message: str):
        """Send a Telegram message for an assistant hook.

        HOOK_TYPE is stop, notification, test, error, or custom. Reads
        the hook's JSON payload from stdin when piped.

        Examples:

            vpsdev notify telegram test

            vpsdev notify telegram custom "Deploy finished"
        """
        from ..notify.telegram import (
            HookInput, build_message, load_credentials, project_name, send_message, short_hostname,
        )

        settings = get_settings().telegram
        try:
            creds = load_credentials(settings.config_file)
        except (FileNotFoundError, ValueError) as exc:
            fail(str(exc))

        stdin_text = "" if sys.stdin.isatty() else sys.stdin.read()
        hook = HookInput.from_stdin_text(stdin_text)

        try:
            text = build_message(
                hook_type, hook, short_hostname(), project_name(hook), creds, custom_message=message,
            )
            send_message(creds, text)
        except (ValueError, RuntimeError) as exc:
            fail(str(exc))

    @notify.command("setup-ntfy")
    @click.option("--yes", "-y", "reuse", is_flag=True, help="Reuse an existing topic without asking.")
    def notify_setup_ntfy(reuse: bool):
        """Create a private ntfy topic and send a test notification."""
        from ..notify.ntfy import (
            HOOKS_SNIPPET, generate_topic, load_topic, ready_message, save_topic, send, topic_url,
        )

        settings = get_settings().ntfy
        topic = ""
        if settings.topic_file.is_file():
            try:
                topic = load_topic(settings.topic_file)
            except FileNotFoundError:
                topic = ""
        if topic:
            warning(f"Existing topic found: {topic}")
            if not reuse and not click.confirm("Use existing topic?", default=True):
                topic = ""

        if not topic:
            topic = generate_topic(getpass.getuser())
            save_topic(settings.topic_file, topic)
            success(f"Generated new topic: {topic}")

        info("Testing notification...")
        try:
            status = send(topic, ready_message(settings.ssh_user), settings.server)
        except RuntimeError as exc:
            fail(f"{exc}. Check your internet connection and try again.")
        if status != 200:
            fail(f"Failed to send notification (HTTP {status})")
        success("Test notification sent successfully!")

        url = topic_url(topic, settings.server)
        console.print(Panel(
            f"[bold green]Your private ntfy topic:[/] [yellow]{topic}[/]\n"
            f"Subscribe URL: [cyan]{url}[/]\n\n"
            "1. Install the ntfy app on your phone\n"
            "   iOS:     https://apps.apple.com/app/ntfy/id1625396347\n"
            "   Android: https://play.google.com/store/apps/details?id=io.heckel.ntfy\n"
            f"2. Subscribe: tap '+' and enter [yellow]{topic}[/]\n"
            "3. Add the hooks below to ~/.claude/settings.json",
            title="Setup Complete",
            border_style="cyan",
        ))
        console.print(HOOKS_SNIPPET, markup=False, highlight=False)
        info(f"Configuration saved to: {settings.topic_file.parent}")

    @notify.command("setup-telegram")
    def notify_setup_telegram():
        """Configure the Telegram bot interactively.

        You need a bot from @BotFather and to have sent it one message
        so the chat id can be detected.
        """
        from ..notify.telegram import (
            TelegramCredentials, build_message, fetch_chat_id, load_credentials, mask_token,
            save_credentials, send_message, short_hostname, HookInput,
        )

        config_file = get_settings().telegram.config_file.expanduser()
        if config_file.is_file():
            try:
                existing = load_credentials(config_file, environ={})
                info(f"Existing configuration found at {config_file}")
                console.print(f"  Bot Token: {mask_token(existing.bot_token)}")
                console.print(f"  Chat ID: {existing.chat_id}")
            except (FileNotFoundError, ValueError):
                info(f"Incomplete configuration found at {config_file}")
            if not click.confirm("Do you want to reconfigure?", default=False):
                info("Keeping existing configuration.")
                return

        console.print("\n[bold]STEP 1: Bot Token[/]")
        console.print("  1. Open Telegram and search for @BotFather")
        console.print("  2. Send /newbot and follow the prompts")
        console.print("  3. Copy the API token provided\n")
        token = click.prompt("Enter your Telegram Bot Token", default="", show_default=False).strip()
        if not token:
            fail("Bot token cannot be empty")
        if ":" not in token:
            warning("Token doesn't appear to be in the expected format (should contain ':')")
            if not click.confirm("Continue anyway?", default=False):
                raise SystemExit(1)

        console.print("\n[bold]STEP 2: Chat ID[/]")
        console.print("  1. Start a chat with your bot in Telegram")
        console.print("  2. Send any message to the bot\n")
        if not click.confirm("Have you sent a message to your bot?", default=True):
            fail("Please send a message to your bot first, then run this again.")

        info("Fetching chat ID from Telegram API...")
        try:
            chat_id = fetch_chat_id(token)
        except RuntimeError as exc:
            fail(f"Invalid bot token or API error. {exc}")

        if not chat_id:
            warning("Could not automatically detect chat ID.")
            console.print("  Forward a message to @userinfobot or @RawDataBot to find it.")
            chat_id = click.prompt("Enter your Chat ID manually", default="", show_default=False).strip()
            if not chat_id:
                fail("Chat ID cannot be empty")
        success(f"Chat ID detected: {chat_id}")

        creds = TelegramCredentials(bot_token=token, chat_id=chat_id)
        console.print("\n[bold]STEP 3: Testing Connection[/]")
        try:
            send_message(creds, build_message("test", HookInput(), short_hostname(), "", creds))
        except RuntimeError as exc:
            fail(f"Failed to send test message. {exc}")
        success("Test message sent successfully!")

        console.print("\n[bold]STEP 4: Saving Configuration[/]")
        save_credentials(config_file, creds)
        success(f"Configuration saved to {config_file}")
        info("Hook command: vpsdev notify telegram <stop|notification|test|error|custom>")

    main.add_command(notify)
