"""CLI entry point for bullhorn.

Usage:
    python -m bullhorn [options]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.config
import sys
import tomllib
from typing import NoReturn, cast

from pydantic import ValidationError

from bullhorn import __version__
from bullhorn.config import Settings, clear_settings_cache, config_file_path, get_settings
from bullhorn.pipeline import Pipeline, resolve_topic
from bullhorn.relay.keys import display_key
from bullhorn.shutdown import GracefulShutdown
from bullhorn.storage.seen import StoreError
from bullhorn.topic import TopicError, print_subscription_topic

APP_NAME = "bullhorn"
APP_VERSION = __version__

# Exit codes
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance.
    """
    parser = argparse.ArgumentParser(
        prog="bullhorn",
        description="Push notifications for Nostr live events and zaps.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  bullhorn                     Watch relays and send notifications
  bullhorn --config-check      Validate config and exit
  bullhorn --dry-run           Print notifications instead of sending them
  bullhorn --show-topic        Print the ntfy topic and its QR code
  bullhorn --log-level DEBUG   Enable debug logging
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {APP_VERSION}",
    )

    parser.add_argument(
        "--config-check",
        action="store_true",
        help="Validate configuration and exit without watching relays",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging level (default: from settings)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print notifications to the console only, without publishing to ntfy",
    )

    parser.add_argument(
        "--show-topic",
        action="store_true",
        help="Print the ntfy subscription topic and its QR code, then exit",
    )

    return parser


def configure_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "detailed": {
                "format": (
                    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
                ),
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "detailed" if level == "DEBUG" else "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": level,
            "handlers": ["console"],
        },
        # Quieter logging for noisy libraries
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "websockets": {"level": "WARNING"},
            "sqlalchemy": {"level": "WARNING"},
            "aiosqlite": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)


def print_banner() -> None:
    """Print the application startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════╗
║                                                              ║
║   {APP_NAME:^56}   ║
║   {"v" + APP_VERSION:^56}   ║
║                                                              ║
╚══════════════════════════════════════════════════════════════╝
"""
    print(banner)


def print_config_summary(settings: Settings, dry_run: bool) -> None:
    """Print a summary of the configuration.

    Args:
        settings: Application settings.
        dry_run: Whether dry-run mode is enabled.
    """
    summary = settings.redacted_summary()
    ntfy = cast("dict[str, str]", summary["ntfy"])

    print("Configuration:")
    print(f"  Watching: {display_key(settings.nostr.npub)}")
    print(f"  Event identities: {summary['event_npubs']}")
    print(f"  Relays: {summary['relays']}")
    print(f"  Zap recipient rule: {summary['payment_recipient_rule']}")
    print(f"  Database: {summary['database']}")
    print(f"  Log Level: {summary['log_level']}")
    print(f"  Dry Run: {dry_run}")
    print(f"  Console: {'enabled' if summary['console_enabled'] == 'True' else 'disabled'}")
    if ntfy["enabled"] == "True" and not dry_run:
        print(f"  ntfy: {ntfy['server']} (topic {ntfy['topic']})")
    else:
        print("  ntfy: disabled")
    print()


def validate_config() -> Settings | None:
    """Validate and load configuration.

    Returns:
        Settings instance if valid, None if invalid.
    """
    try:
        # Clear cache to force reload
        clear_settings_cache()
        return get_settings()
    except ValidationError as e:
        print("Configuration validation failed:", file=sys.stderr)
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            msg = error["msg"]
            print(f"  {field}: {msg}", file=sys.stderr)
        return None
    except tomllib.TOMLDecodeError as e:
        print(f"Invalid config file {config_file_path()}: {e}", file=sys.stderr)
        return None


def run_config_check(settings: Settings) -> int:
    """Run configuration check and exit.

    Args:
        settings: Validated settings.

    Returns:
        Exit code (0 for success).
    """
    print("Configuration is valid!")
    print()
    print_config_summary(settings, dry_run=settings.dry_run)

    print("Relays:")
    for url in settings.nostr.relays:
        print(f"  {url}")
    print()

    if settings.ntfy.enabled and not settings.ntfy.topic and not settings.ntfy.topic_file.exists():
        print(f"  ntfy topic will be generated at {settings.ntfy.topic_file}")
        print()

    print("All checks passed. Ready to run.")
    return EXIT_SUCCESS


def run_show_topic(settings: Settings) -> int:
    """Print the ntfy topic with its QR code.

    Returns:
        Exit code.
    """
    try:
        topic = resolve_topic(settings)
    except TopicError as e:
        print(str(e), file=sys.stderr)
        return EXIT_ERROR

    print_subscription_topic(topic)
    return EXIT_SUCCESS


async def run_pipeline(settings: Settings, dry_run: bool) -> int:
    """Run the pipeline until a shutdown signal or a fatal error.

    Args:
        settings: Application settings.
        dry_run: Whether to skip publishing to ntfy.

    Returns:
        Exit code.
    """
    logger = logging.getLogger(__name__)
    shutdown = GracefulShutdown()

    try:
        async with shutdown:
            pipeline = Pipeline(settings, dry_run=dry_run, on_fatal=shutdown.request_shutdown)

            # Register pipeline cleanup
            shutdown.register_cleanup(pipeline.stop)

            logger.info("Starting pipeline...")
            await pipeline.start()

            logger.info("Pipeline running. Press Ctrl+C to stop.")
            await shutdown.wait()

            await pipeline.stop()

        return EXIT_ERROR if pipeline.failed else EXIT_SUCCESS
    except StoreError as e:
        logger.error("Seen-event store unavailable: %s", e)
        return EXIT_ERROR
    except TopicError as e:
        logger.error("%s", e)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return EXIT_INTERRUPTED
    except Exception as e:
        logger.exception("Pipeline failed: %s", e)
        return EXIT_ERROR


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:]).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # Validate configuration first
    settings = validate_config()
    if settings is None:
        sys.exit(EXIT_CONFIG_ERROR)

    log_level = args.log_level or settings.log_level
    configure_logging(log_level)

    if args.show_topic:
        sys.exit(run_show_topic(settings))

    print_banner()

    if args.config_check:
        sys.exit(run_config_check(settings))

    dry_run = args.dry_run or settings.dry_run
    print_config_summary(settings, dry_run)

    if settings.ntfy.enabled and not dry_run:
        exit_code = run_show_topic(settings)
        if exit_code != EXIT_SUCCESS:
            sys.exit(exit_code)
        print()

    exit_code = asyncio.run(run_pipeline(settings, dry_run))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
