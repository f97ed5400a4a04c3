"""Tests for notification channels."""

import base64
import io
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from bullhorn.alerter.channels.console import ConsoleChannel
from bullhorn.alerter.channels.ntfy import ATTACHMENT_FILENAME, NtfyChannel, encode_header
from bullhorn.alerter.models import Notification, NotificationKind, PaymentCode, Priority


@pytest.fixture
def live_notification() -> Notification:
    """Create a live event notification."""
    return Notification(
        kind=NotificationKind.LIVE_EVENT_STARTED,
        source_event_id="ab" * 32,
        author="a1" * 32,
        title="Event announcement",
        rendered_body="Weekly show is live",
        click_url="nostr:note1xyz",
        tags=("spiral_calendar",),
    )


@pytest.fixture
def payment_notification() -> Notification:
    """Create a payment notification with a code attachment."""
    return Notification(
        kind=NotificationKind.PAYMENT_RECEIVED,
        source_event_id="cd" * 32,
        author="e5" * 32,
        title="Zaps Received",
        rendered_body="You've received 21 sats in zaps!",
        attachment=PaymentCode(data="lnbc210n1test", text="##  ##", svg=b"<svg/>"),
        priority=Priority.HIGH,
        tags=("moneybag",),
    )


def mock_http_client(mock_client_class: MagicMock, status_code: int = 200) -> AsyncMock:
    """Wire a patched httpx.AsyncClient to return one response."""
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.is_success = 200 <= status_code < 300
    mock_response.text = "error"
    mock_client = AsyncMock()
    mock_client.post.return_value = mock_response
    mock_client.put.return_value = mock_response
    mock_client.__aenter__.return_value = mock_client
    mock_client.__aexit__.return_value = None
    mock_client_class.return_value = mock_client
    return mock_client


class TestEncodeHeader:
    """Tests for header encoding."""

    def test_ascii_unchanged(self) -> None:
        """Test that ASCII values pass through."""
        assert encode_header("Zaps Received") == "Zaps Received"

    def test_non_ascii_encoded(self) -> None:
        """Test RFC 2047 encoding of non-ASCII values."""
        encoded = encode_header("⚡ Zaps")

        assert encoded.startswith("=?UTF-8?B?")
        assert encoded.endswith("?=")
        assert base64.b64decode(encoded[10:-2]).decode("utf-8") == "⚡ Zaps"

    def test_line_breaks_escaped(self) -> None:
        """Test that line breaks become the ntfy newline escape."""
        encoded = encode_header("21 sats\r\nFrom npub1xyz\nThanks")

        assert encoded == "21 sats\\nFrom npub1xyz\\nThanks"

    def test_non_ascii_line_breaks_encoded(self) -> None:
        """Test that non-ASCII multi-line values keep the newline in the encoded text."""
        encoded = encode_header("⚡ 21 sats\nFrom npub1xyz")

        assert "\n" not in encoded
        assert base64.b64decode(encoded[10:-2]).decode("utf-8") == "⚡ 21 sats\nFrom npub1xyz"


class TestConsoleChannel:
    """Tests for ConsoleChannel."""

    def test_init(self) -> None:
        """Test channel initialization."""
        channel = ConsoleChannel()

        assert channel.name == "console"
        assert channel.show_codes is True

    async def test_send_live_event(self, live_notification: Notification) -> None:
        """Test printing a notification."""
        stream = io.StringIO()
        channel = ConsoleChannel(stream)

        assert await channel.send(live_notification) is True

        output = stream.getvalue()
        assert "Event announcement" in output
        assert "Weekly show is live" in output
        assert "nostr:note1xyz" in output

    async def test_send_payment_with_code(self, payment_notification: Notification) -> None:
        """Test that the payment code and request are printed."""
        stream = io.StringIO()
        channel = ConsoleChannel(stream)

        await channel.send(payment_notification)

        output = stream.getvalue()
        assert "##  ##" in output
        assert "lnbc210n1test" in output

    async def test_send_payment_without_codes(self, payment_notification: Notification) -> None:
        """Test that codes can be hidden."""
        stream = io.StringIO()
        channel = ConsoleChannel(stream, show_codes=False)

        await channel.send(payment_notification)

        assert "##  ##" not in stream.getvalue()

    async def test_send_failure(self, live_notification: Notification) -> None:
        """Test that a write error is reported as failure."""
        stream = MagicMock()
        stream.write.side_effect = OSError("closed")
        channel = ConsoleChannel(stream)

        assert await channel.send(live_notification) is False


class TestNtfyChannel:
    """Tests for NtfyChannel."""

    def test_init(self) -> None:
        """Test channel initialization."""
        channel = NtfyChannel("topic-1", server="https://ntfy.example/")

        assert channel.name == "ntfy"
        assert channel.endpoint == "https://ntfy.example/topic-1"

    def test_build_headers(self, live_notification: Notification) -> None:
        """Test ntfy header mapping."""
        headers = NtfyChannel("t").build_headers(live_notification)

        assert headers == {
            "X-Title": "Event announcement",
            "X-Priority": "3",
            "X-Tags": "spiral_calendar",
            "X-Click": "nostr:note1xyz",
        }

    async def test_send_plain(self, live_notification: Notification) -> None:
        """Test publishing a notification without attachment."""
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)

            result = await channel.send(live_notification)

        assert result is True
        mock_client.post.assert_called_once()
        args, kwargs = mock_client.post.call_args
        assert args[0] == "https://ntfy.sh/topic-1"
        assert kwargs["content"] == b"Weekly show is live"
        mock_client.put.assert_not_called()

    async def test_send_with_attachment(self, payment_notification: Notification) -> None:
        """Test publishing the payment code as an attachment."""
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)

            result = await channel.send(payment_notification)

        assert result is True
        _, kwargs = mock_client.put.call_args
        assert kwargs["content"] == b"<svg/>"
        assert kwargs["headers"]["X-Filename"] == ATTACHMENT_FILENAME
        assert kwargs["headers"]["X-Message"] == "You've received 21 sats in zaps!"
        assert kwargs["headers"]["X-Priority"] == "4"
        mock_client.post.assert_not_called()

    async def test_send_multiline_body_with_attachment(
        self, payment_notification: Notification
    ) -> None:
        """Test that a multi-line body is sent as a valid X-Message header."""
        notification = replace(
            payment_notification,
            rendered_body="You've received 21 sats in zaps!\nFrom npub1xyz",
        )
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)

            result = await channel.send(notification)

        assert result is True
        _, kwargs = mock_client.put.call_args
        headers = kwargs["headers"]
        assert headers["X-Message"] == "You've received 21 sats in zaps!\\nFrom npub1xyz"
        assert all("\n" not in value and "\r" not in value for value in headers.values())

    async def test_send_without_attachments(self, payment_notification: Notification) -> None:
        """Test that attachments can be disabled."""
        channel = NtfyChannel("topic-1", attach_codes=False)

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)

            await channel.send(payment_notification)

        mock_client.post.assert_called_once()
        mock_client.put.assert_not_called()

    @pytest.mark.parametrize("status_code", [429, 500, 403])
    async def test_send_rejected(self, live_notification: Notification, status_code: int) -> None:
        """Test that error responses are reported as failure."""
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_http_client(mock_client_class, status_code=status_code)

            assert await channel.send(live_notification) is False

    async def test_send_timeout(self, live_notification: Notification) -> None:
        """Test that a timeout is reported as failure."""
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)
            mock_client.post.side_effect = httpx.ReadTimeout("slow")

            assert await channel.send(live_notification) is False

    async def test_send_connection_error(self, live_notification: Notification) -> None:
        """Test that a transport error is reported as failure."""
        channel = NtfyChannel("topic-1")

        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = mock_http_client(mock_client_class)
            mock_client.post.side_effect = httpx.ConnectError("refused")

            assert await channel.send(live_notification) is False
