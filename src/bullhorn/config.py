"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for bullhorn,
loading and validating settings at startup from, in priority order:

1. Environment variables, prefixed ``BULLHORN_`` with ``__`` between nested
   keys (``BULLHORN_NOSTR__NPUB``).
2. A ``.env`` file in the working directory.
3. ``config.toml`` in the bullhorn config directory, or the file named by
   ``BULLHORN_CONFIG_FILE``.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from bullhorn.relay.keys import parse_public_key
from bullhorn.watcher.models import RecipientRule, WatchConfig

APP_DIR_NAME = "bullhorn"
CONFIG_FILE_ENV = "BULLHORN_CONFIG_FILE"

DEFAULT_RELAYS = (
    "wss://relay.damus.io",
    "wss://nostr.plebchain.org/",
    "wss://bitcoiner.social/",
    "wss://relay.snort.social",
    "wss://relayable.org",
    "wss://nos.lol",
    "wss://nostr.mom",
    "wss://e.nos.lol",
    "wss://nostr.bitcoiner.social",
)


def config_dir() -> Path:
    """Directory holding config.toml and the ntfy topic."""
    base = os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config"
    return Path(base) / APP_DIR_NAME


def data_dir() -> Path:
    """Directory holding the seen-event database."""
    base = os.environ.get("XDG_DATA_HOME") or Path.home() / ".local" / "share"
    return Path(base) / APP_DIR_NAME


def config_file_path() -> Path:
    """Location of the TOML config file."""
    override = os.environ.get(CONFIG_FILE_ENV)
    return Path(override) if override else config_dir() / "config.toml"


class NostrSettings(BaseModel):
    """Identities and relays to watch."""

    npub: str = Field(description="Identity being watched (npub or hex)")
    event_npubs: list[str] = Field(
        default_factory=list,
        description="Identities whose live events are also reported",
    )
    relays: list[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYS),
        description="Relay websocket URLs",
    )
    payment_recipient_rule: RecipientRule = Field(
        default=RecipientRule.EITHER,
        description="How zap receipts are matched to the watched identity",
    )
    verify_event_ids: bool = Field(
        default=True,
        description="Drop events whose id does not match their content",
    )
    initial_reconnect_delay: float = Field(default=1.0, gt=0)
    max_reconnect_delay: float = Field(default=300.0, gt=0)

    @field_validator("npub")
    @classmethod
    def validate_npub(cls, v: str) -> str:
        """Normalize the watched identity to hex."""
        return parse_public_key(v)

    @field_validator("event_npubs")
    @classmethod
    def validate_event_npubs(cls, v: list[str]) -> list[str]:
        """Normalize the allow-list to hex."""
        return [parse_public_key(key) for key in v]

    @field_validator("relays")
    @classmethod
    def validate_relays(cls, v: list[str]) -> list[str]:
        """Validate relay URL format."""
        if not v:
            raise ValueError("At least one relay is required")
        for url in v:
            if not url.startswith(("ws://", "wss://")):
                raise ValueError(f"Relay URL must start with ws:// or wss://: {url}")
        return v


class StorageSettings(BaseModel):
    """Seen-event database settings."""

    path: Path = Field(
        default_factory=lambda: data_dir() / "seen.db",
        description="SQLite database of processed events",
    )
    echo_sql: bool = Field(default=False, description="Log SQL statements")


class NtfySettings(BaseModel):
    """ntfy push notification settings."""

    enabled: bool = Field(default=True, description="Publish to ntfy")
    server: str = Field(default="https://ntfy.sh", description="ntfy server URL")
    topic: str | None = Field(
        default=None,
        description="ntfy topic; generated and persisted when not set",
    )
    topic_file: Path = Field(
        default_factory=lambda: config_dir() / "topic",
        description="File holding the generated topic",
    )
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("server")
    @classmethod
    def validate_server(cls, v: str) -> str:
        """Validate ntfy server URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("ntfy server must be an HTTP(S) URL")
        return v.rstrip("/")


class ConsoleSettings(BaseModel):
    """Console output settings."""

    enabled: bool = Field(default=True, description="Print notifications")
    show_codes: bool = Field(default=True, description="Print payment QR codes")


class DispatchSettings(BaseModel):
    """Delivery retry settings."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay: float = Field(default=1.0, ge=0)
    max_retry_delay: float = Field(default=30.0, ge=0)
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_seconds: int = Field(default=60, ge=0)


class Settings(BaseSettings):
    """Main application settings.

    Example:
        ```python
        from bullhorn.config import get_settings

        settings = get_settings()
        print(settings.nostr.relays)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_prefix="BULLHORN_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Nested configuration groups
    nostr: NostrSettings
    storage: StorageSettings = Field(default_factory=StorageSettings)
    ntfy: NtfySettings = Field(default_factory=NtfySettings)
    console: ConsoleSettings = Field(default_factory=ConsoleSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        description="Print notifications without publishing to ntfy",
    )
    shutdown_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Seconds to wait for in-flight deliveries on shutdown",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Add the TOML config file below environment variables."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls, toml_file=config_file_path()),
            file_secret_settings,
        )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def watch_config(self) -> WatchConfig:
        """Build the immutable watch configuration for the pipeline."""
        return WatchConfig(
            primary_identity=self.nostr.npub,
            allowed_identities=frozenset(self.nostr.event_npubs),
            relay_endpoints=tuple(self.nostr.relays),
            payment_recipient_rule=self.nostr.payment_recipient_rule,
        )

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        The ntfy topic acts as a password: anyone who knows it can read the
        notifications.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "npub": self.nostr.npub,
            "event_npubs": str(len(self.nostr.event_npubs)),
            "relays": str(len(self.nostr.relays)),
            "payment_recipient_rule": self.nostr.payment_recipient_rule.value,
            "database": str(self.storage.path),
            "ntfy": {
                "enabled": str(self.ntfy.enabled),
                "server": self.ntfy.server,
                "topic": "(set)" if self.ntfy.topic else "(generated)",
            },
            "console_enabled": str(self.console.enabled),
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required settings are missing or have invalid
            values.
    """
    return Settings()  # type: ignore[call-arg]


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
