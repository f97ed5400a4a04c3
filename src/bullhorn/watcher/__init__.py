"""Watcher layer - Event de-duplication and classification."""

from bullhorn.watcher.classifier import ClassifierStats, EventClassifier, build_filters
from bullhorn.watcher.models import ClassifiedEvent, RecipientRule, WatchConfig
from bullhorn.watcher.payloads import (
    PAYLOAD_SCHEMAS,
    LiveEventPayload,
    ZapReceiptPayload,
    parse_payload,
)

__all__ = [
    "PAYLOAD_SCHEMAS",
    "ClassifiedEvent",
    "ClassifierStats",
    "EventClassifier",
    "LiveEventPayload",
    "RecipientRule",
    "WatchConfig",
    "ZapReceiptPayload",
    "build_filters",
    "parse_payload",
]
