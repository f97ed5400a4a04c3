"""Tests for the notification builder."""

import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from bullhorn.alerter.builder import (
    LIVE_EVENT_TITLE,
    PAYMENT_TITLE,
    NotificationBuilder,
    PaymentRequestError,
    decode_payment_request,
    format_duration,
    format_sats,
)
from bullhorn.alerter.models import NotificationKind, PaymentCode
from bullhorn.relay.keys import encode_npub, nostr_uri
from bullhorn.watcher.models import ClassifiedEvent
from bullhorn.watcher.payloads import LiveEventPayload, ZapReceiptPayload

PRIMARY = "a1" * 32
ZAPPER = "d4" * 32
NOW = 1_700_000_000

FAKE_CODE = PaymentCode(data="lnbc210n1fake", text="##", svg=b"<svg/>")


def fake_invoice(amount_msat: int | None = 21000, description: str | None = "thanks"):
    return SimpleNamespace(
        amount_msat=amount_msat, description=description, payment_hash="00" * 32
    )


@pytest.fixture
def render_code() -> MagicMock:
    """Replace QR rendering."""
    return MagicMock(return_value=FAKE_CODE)


@pytest.fixture
def builder(render_code: MagicMock) -> NotificationBuilder:
    """Builder with a fixed clock."""
    return NotificationBuilder(clock=lambda: NOW, render_code=render_code)


def classify_live(event) -> ClassifiedEvent:
    return ClassifiedEvent(
        kind=NotificationKind.LIVE_EVENT_STARTED,
        event=event,
        payload=LiveEventPayload.from_event(event),
    )


def classify_zap(event) -> ClassifiedEvent:
    return ClassifiedEvent(
        kind=NotificationKind.PAYMENT_RECEIVED,
        event=event,
        payload=ZapReceiptPayload.from_event(event),
    )


class TestFormatting:
    """Tests for formatting helpers."""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [
            (0, "0s"),
            (45, "45s"),
            (300, "5m"),
            (3_900, "1h 5m"),
            (93_900, "1d 2h 5m"),
            (-10, "0s"),
        ],
    )
    def test_format_duration(self, seconds: int, expected: str) -> None:
        """Test duration formatting."""
        assert format_duration(seconds) == expected

    def test_format_sats(self) -> None:
        """Test millisatoshi to sats formatting."""
        assert format_sats(21_000) == "21 sats"
        assert format_sats(2_100_000_500) == "2,100,000 sats"


class TestDecodePaymentRequest:
    """Tests for decode_payment_request."""

    def test_decoded_fields(self) -> None:
        """Test mapping of the decoded invoice."""
        with patch("bullhorn.alerter.builder.bolt11.decode", return_value=fake_invoice()):
            request = decode_payment_request(" lnbc210n1fake ")

        assert request.raw == " lnbc210n1fake "
        assert request.amount_msat == 21000
        assert request.description == "thanks"

    def test_no_amount(self) -> None:
        """Test an invoice without an amount."""
        with patch(
            "bullhorn.alerter.builder.bolt11.decode",
            return_value=fake_invoice(amount_msat=None),
        ):
            assert decode_payment_request("lnbc1fake").amount_msat is None

    def test_malformed(self) -> None:
        """Test that garbage raises PaymentRequestError."""
        with pytest.raises(PaymentRequestError):
            decode_payment_request("definitely not an invoice")


class TestLiveEventNotification:
    """Tests for live event notifications."""

    def test_upcoming_event(self, builder: NotificationBuilder, make_live_event) -> None:
        """Test an event that starts in the future."""
        event = make_live_event(
            title="Weekly show",
            summary="Relays and more",
            starts=NOW + 3_900,
            streaming="https://stream.example/live.m3u8",
        )

        notification = builder.build(classify_live(event))

        assert notification.kind == NotificationKind.LIVE_EVENT_STARTED
        assert notification.title == LIVE_EVENT_TITLE
        assert notification.source_event_id == event.id
        assert notification.author == PRIMARY
        lines = notification.rendered_body.splitlines()
        assert lines[0] == "Weekly show starts in 1h 5m"
        assert lines[1] == f"Announced by {encode_npub(PRIMARY)}"
        assert "Relays and more" in lines
        assert "https://stream.example/live.m3u8" in lines
        assert notification.click_url == nostr_uri(event.id)
        assert notification.tags == ("spiral_calendar",)
        assert notification.attachment is None

    def test_live_status(self, builder: NotificationBuilder, make_live_event) -> None:
        """Test an event that already started."""
        event = make_live_event(title="Weekly show", status="live", starts=NOW - 60)

        notification = builder.build(classify_live(event))

        assert notification.rendered_body.startswith("Weekly show is live")

    def test_untitled(self, builder: NotificationBuilder, make_live_event) -> None:
        """Test an event without title, status or start time."""
        event = make_live_event()

        notification = builder.build(classify_live(event))

        assert notification.rendered_body.startswith("Event note1")

    def test_long_summary_truncated(self, builder: NotificationBuilder, make_live_event) -> None:
        """Test that long summaries are shortened."""
        event = make_live_event(title="T", summary="word " * 100)

        notification = builder.build(classify_live(event))

        summary = notification.rendered_body.splitlines()[2]
        assert len(summary) <= 140
        assert summary.endswith("…")


class TestPaymentNotification:
    """Tests for payment notifications."""

    def test_decodable_payment(
        self, builder: NotificationBuilder, render_code: MagicMock, make_zap_receipt
    ) -> None:
        """Test a zap with a valid payment request."""
        event = make_zap_receipt(
            bolt11="lnbc210n1fake", comment="great show", zapped_event="ef" * 32
        )

        with patch("bullhorn.alerter.builder.bolt11.decode", return_value=fake_invoice()):
            notification = builder.build(classify_zap(event))

        assert notification.kind == NotificationKind.PAYMENT_RECEIVED
        assert notification.title == PAYMENT_TITLE
        assert notification.attachment is FAKE_CODE
        render_code.assert_called_once_with("lnbc210n1fake")
        lines = notification.rendered_body.splitlines()
        assert lines[0] == "You've received 21 sats in zaps!"
        assert f"From {encode_npub(ZAPPER)}" in lines
        assert '"great show"' in lines
        assert "Memo: thanks" in lines
        assert notification.click_url == nostr_uri("ef" * 32)
        assert notification.tags == ("moneybag",)

    def test_malformed_payment_request(
        self,
        builder: NotificationBuilder,
        render_code: MagicMock,
        make_zap_receipt,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a bad request still notifies, without attachment."""
        event = make_zap_receipt(bolt11="garbage", amount_msat=5000)

        with caplog.at_level(logging.WARNING, logger="bullhorn.alerter.builder"):
            notification = builder.build(classify_zap(event))

        assert notification.attachment is None
        assert notification.rendered_body.startswith("You've received 5 sats in zaps!")
        render_code.assert_not_called()
        assert any("Invalid payment request" in r.message for r in caplog.records)

    def test_missing_payment_request(
        self, builder: NotificationBuilder, make_zap_receipt, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a receipt without bolt11 tag."""
        event = make_zap_receipt(bolt11=None, amount_msat=None)

        with caplog.at_level(logging.WARNING, logger="bullhorn.alerter.builder"):
            notification = builder.build(classify_zap(event))

        assert notification.attachment is None
        assert notification.rendered_body.startswith("You've received a zap!")
        assert notification.click_url is None
        assert any("no payment request" in r.message for r in caplog.records)

    def test_invoice_without_amount_uses_request(
        self, builder: NotificationBuilder, make_zap_receipt
    ) -> None:
        """Test fallback to the zap request amount."""
        event = make_zap_receipt(amount_msat=100_000)

        with patch(
            "bullhorn.alerter.builder.bolt11.decode",
            return_value=fake_invoice(amount_msat=None, description=None),
        ):
            notification = builder.build(classify_zap(event))

        assert notification.rendered_body.startswith("You've received 100 sats in zaps!")
        assert "Memo:" not in notification.rendered_body

    def test_zap_request_description_not_shown(
        self, builder: NotificationBuilder, make_zap_receipt
    ) -> None:
        """Test that a JSON invoice description is not repeated as memo."""
        with patch(
            "bullhorn.alerter.builder.bolt11.decode",
            return_value=fake_invoice(description='{"kind":9734}'),
        ):
            notification = builder.build(classify_zap(make_zap_receipt()))

        assert "Memo:" not in notification.rendered_body

    def test_render_failure_drops_attachment(
        self, builder: NotificationBuilder, render_code: MagicMock, make_zap_receipt
    ) -> None:
        """Test that a rendering error only costs the attachment."""
        render_code.side_effect = ValueError("too long")

        with patch("bullhorn.alerter.builder.bolt11.decode", return_value=fake_invoice()):
            notification = builder.build(classify_zap(make_zap_receipt()))

        assert notification.attachment is None
        assert notification.rendered_body.startswith("You've received 21 sats")

    def test_real_rendering(self, make_zap_receipt) -> None:
        """Test the default renderer produces a QR attachment."""
        builder = NotificationBuilder(clock=lambda: NOW)

        with patch("bullhorn.alerter.builder.bolt11.decode", return_value=fake_invoice()):
            notification = builder.build(classify_zap(make_zap_receipt(bolt11="lnbc210n1fake")))

        assert notification.attachment is not None
        assert notification.attachment.data == "lnbc210n1fake"
        assert b"<svg" in notification.attachment.svg


class TestBuildDispatch:
    """Tests for payload type checks."""

    def test_mismatched_payload(self, builder: NotificationBuilder, make_live_event) -> None:
        """Test that a wrong payload type is rejected."""
        event = make_live_event()
        classified = ClassifiedEvent(
            kind=NotificationKind.PAYMENT_RECEIVED,
            event=event,
            payload=LiveEventPayload.from_event(event),
        )

        with pytest.raises(TypeError):
            builder.build(classified)
