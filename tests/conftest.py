"""Shared fixtures for bullhorn tests."""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from typing import Any

import pytest

from bullhorn.relay.models import EventKind, RawEvent, normalize_tags
from bullhorn.watcher.models import RecipientRule, WatchConfig

PRIMARY = "a1" * 32
ALLOWED = "b2" * 32
STRANGER = "c3" * 32
ZAPPER = "d4" * 32
ZAP_SERVICE = "e5" * 32


EventFactory = Callable[..., RawEvent]


@pytest.fixture
def make_event() -> EventFactory:
    """Factory for events whose id matches their content."""

    def _make(
        kind: int,
        author: str = PRIMARY,
        tags: list[list[str]] | None = None,
        content: str = "",
        created_at: int = 1_700_000_000,
    ) -> RawEvent:
        draft = RawEvent(
            id="",
            author=author,
            kind=kind,
            created_at=created_at,
            tags=normalize_tags(tags or []),
            content=content,
        )
        return RawEvent(
            id=draft.compute_id(),
            author=author,
            kind=kind,
            created_at=created_at,
            tags=draft.tags,
            content=content,
        )

    return _make


@pytest.fixture
def make_live_event(make_event: EventFactory) -> EventFactory:
    """Factory for NIP-53 live events."""

    def _make(author: str = PRIMARY, **tag_values: Any) -> RawEvent:
        tags = [["d", tag_values.pop("identifier", "stream-1")]]
        tags.extend([name, str(value)] for name, value in tag_values.items())
        return make_event(EventKind.LIVE_EVENT, author=author, tags=tags)

    return _make


@pytest.fixture
def make_zap_receipt(make_event: EventFactory) -> EventFactory:
    """Factory for NIP-57 zap receipts."""

    def _make(
        recipient: str | None = PRIMARY,
        author: str = ZAP_SERVICE,
        bolt11: str | None = "lnbc10n1fake",
        amount_msat: int | None = 21000,
        comment: str = "",
        sender: str = ZAPPER,
        zapped_event: str | None = None,
    ) -> RawEvent:
        tags: list[list[str]] = []
        if recipient is not None:
            tags.append(["p", recipient])
        if zapped_event is not None:
            tags.append(["e", zapped_event])
        if bolt11 is not None:
            tags.append(["bolt11", bolt11])

        request_tags: list[list[str]] = [["p", recipient or PRIMARY]]
        if amount_msat is not None:
            request_tags.append(["amount", str(amount_msat)])
        zap_request = {
            "kind": EventKind.ZAP_REQUEST,
            "pubkey": sender,
            "content": comment,
            "tags": request_tags,
        }
        tags.append(["description", json.dumps(zap_request)])
        return make_event(EventKind.ZAP_RECEIPT, author=author, tags=tags)

    return _make


@pytest.fixture
def watch_config() -> WatchConfig:
    """Watch configuration for PRIMARY plus one allowed identity."""
    return WatchConfig(
        primary_identity=PRIMARY,
        allowed_identities=frozenset({ALLOWED}),
        relay_endpoints=("wss://relay.one", "wss://relay.two"),
        payment_recipient_rule=RecipientRule.EITHER,
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path):
    """Keep tests away from the real config, data directories and .env."""
    for name in list(os.environ):
        if name.startswith("BULLHORN_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.chdir(tmp_path)
    return tmp_path
