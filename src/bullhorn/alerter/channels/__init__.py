"""Notification channel implementations."""

from bullhorn.alerter.channels.console import ConsoleChannel
from bullhorn.alerter.channels.ntfy import NtfyChannel

__all__ = [
    "ConsoleChannel",
    "NtfyChannel",
]
