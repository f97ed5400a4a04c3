"""ntfy channel implementation."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from bullhorn.alerter.models import Notification

logger = logging.getLogger(__name__)

DEFAULT_NTFY_SERVER = "https://ntfy.sh"
ATTACHMENT_FILENAME = "payment-request.svg"


def encode_header(value: str) -> str:
    """Encode a header value, using RFC 2047 when it is not plain ASCII.

    Header values cannot hold line breaks. Plain values get the literal
    ``\\n`` escape that ntfy turns back into a newline; encoded values carry
    the newline inside the base64 text.
    """
    value = value.replace("\r\n", "\n").replace("\r", "\n")
    try:
        value.encode("ascii")
    except UnicodeEncodeError:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return f"=?UTF-8?B?{encoded}?="
    return value.replace("\n", "\\n")


class NtfyChannel:
    """ntfy topic channel for push notifications.

    Plain notifications are POSTed as the message body. Notifications with a
    payment code are PUT with the QR code SVG as an attachment and the text
    in the ``X-Message`` header. Each ``send`` makes one attempt; retries are
    the dispatcher's job.
    """

    def __init__(
        self,
        topic: str,
        *,
        server: str = DEFAULT_NTFY_SERVER,
        timeout: float = 10.0,
        attach_codes: bool = True,
    ) -> None:
        """Initialize ntfy channel.

        Args:
            topic: ntfy topic the phone app subscribes to.
            server: ntfy server base URL.
            timeout: HTTP request timeout in seconds.
            attach_codes: Upload payment QR codes as attachments.
        """
        self.topic = topic
        self.server = server.rstrip("/")
        self.timeout = timeout
        self.attach_codes = attach_codes
        self.name = "ntfy"

    @property
    def endpoint(self) -> str:
        """Publish URL of the topic."""
        return f"{self.server}/{self.topic}"

    def build_headers(self, notification: Notification) -> dict[str, str]:
        """Build the ntfy headers for a notification."""
        headers = {
            "X-Title": encode_header(notification.title),
            "X-Priority": str(int(notification.priority)),
        }
        if notification.tags:
            headers["X-Tags"] = ",".join(notification.tags)
        if notification.click_url:
            headers["X-Click"] = notification.click_url
        return headers

    async def send(self, notification: Notification) -> bool:
        """Publish a notification to the topic.

        Returns:
            True if ntfy accepted the message, False otherwise.
        """
        headers = self.build_headers(notification)
        attachment = notification.attachment if self.attach_codes else None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                if attachment is not None:
                    headers["X-Message"] = encode_header(notification.rendered_body)
                    headers["X-Filename"] = ATTACHMENT_FILENAME
                    response = await client.put(
                        self.endpoint, content=attachment.svg, headers=headers
                    )
                else:
                    response = await client.post(
                        self.endpoint,
                        content=notification.rendered_body.encode("utf-8"),
                        headers=headers,
                    )
        except httpx.TimeoutException:
            logger.warning("ntfy request timed out")
            return False
        except httpx.HTTPError as e:
            logger.warning("ntfy request failed: %s", e)
            return False

        if response.is_success:
            logger.info("ntfy notification %s delivered", notification.source_event_id)
            return True

        if response.status_code == 429:
            logger.warning("ntfy rate limited")
        else:
            logger.error("ntfy publish failed: %s %s", response.status_code, response.text)
        return False
