"""Console channel implementation."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from bullhorn.alerter.models import Notification

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 60


class ConsoleChannel:
    """Prints notifications, including the payment QR code, to a stream."""

    def __init__(self, stream: TextIO | None = None, *, show_codes: bool = True) -> None:
        """Initialize console channel.

        Args:
            stream: Output stream, stdout when not given.
            show_codes: Print the QR code of payment attachments.
        """
        self._stream = stream
        self.show_codes = show_codes
        self.name = "console"

    @property
    def stream(self) -> TextIO:
        """The stream written to. Resolved lazily so redirected stdout is honoured."""
        return self._stream if self._stream is not None else sys.stdout

    def render(self, notification: Notification) -> str:
        """Render a notification as console text."""
        lines = [SEPARATOR, notification.title, SEPARATOR, notification.rendered_body]
        if notification.click_url:
            lines.append(notification.click_url)
        if notification.attachment is not None and self.show_codes:
            lines.extend(["", notification.attachment.text, "", notification.attachment.data])
        lines.append("")
        return "\n".join(lines)

    async def send(self, notification: Notification) -> bool:
        """Write the notification to the stream."""
        try:
            self.stream.write(self.render(notification) + "\n")
            self.stream.flush()
        except OSError as e:
            logger.error("Console output failed: %s", e)
            return False
        return True
