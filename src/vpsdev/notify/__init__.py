"""
Phone notifications for remote sessions.

Three independent senders, one outbound HTTP request per call:

    ntfy       hook-driven push to a private ntfy topic
    termius    ntfy push whose tap action opens Termius on the VPS
    telegram   HTML-formatted messages from a Telegram bot

plus the Slack webhook used by background tasks on completion.
"""

REQUEST_TIMEOUT = 30
