"""Alerting layer - Notification building and delivery."""

from bullhorn.alerter.builder import (
    NotificationBuilder,
    PaymentRequest,
    PaymentRequestError,
    decode_payment_request,
)
from bullhorn.alerter.channels.console import ConsoleChannel
from bullhorn.alerter.channels.ntfy import NtfyChannel
from bullhorn.alerter.dispatcher import (
    CircuitBreakerState,
    DispatchResult,
    NotificationChannel,
    NotificationDispatcher,
)
from bullhorn.alerter.models import Notification, NotificationKind, PaymentCode, Priority

__all__ = [
    "CircuitBreakerState",
    "ConsoleChannel",
    "DispatchResult",
    "Notification",
    "NotificationBuilder",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationKind",
    "NtfyChannel",
    "PaymentCode",
    "PaymentRequest",
    "PaymentRequestError",
    "Priority",
    "decode_payment_request",
]
