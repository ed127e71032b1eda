"""
News monitor entry point.

Commands:
    run            Start the scheduler (default)
    check-config   Validate the environment configuration
    scrape         Fetch the listing page once and print what was found
    status         Show statistics of the seen-news store
    cleanup        Keep only the most recent stored items

SIGINT stops the scheduler and flushes any pending batch before exiting;
SIGTERM stops it without flushing.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from news_monitor.core.config import ConfigLoader, MonitorConfig, PushMode
from news_monitor.core.exceptions import ConfigError, NewsMonitorError
from news_monitor.core.fetch_news import NewsScraper
from news_monitor.core.log_handler import setup_logging
from news_monitor.core.scheduler import NewsScheduler
from news_monitor.core.store_news import DEFAULT_KEEP_COUNT, NewsStorage

logger = logging.getLogger(__name__)

BANNER_WIDTH = 50


def _mask(secret: str) -> str:
    return "*" * min(len(secret), 10)


def print_banner(config: MonitorConfig) -> None:
    """Print the start-up summary with secrets hidden."""
    print("=" * BANNER_WIDTH)
    print("News monitor")
    print("=" * BANNER_WIDTH)
    print(f"  Check interval: {config.check_interval}")
    print(f"  Push mode:      {config.push_mode.value}")
    if config.push_mode is PushMode.BATCH:
        print(f"  Batch time:     {config.batch_time}")
    print(f"  Recipient:      {config.email.to_email}")
    print(f"  SMTP server:    {config.email.smtp_host}:{config.email.smtp_port}")
    print(f"  Data file:      {config.data_file}")
    print("")


def run(config: MonitorConfig) -> int:
    """Run the scheduler until SIGINT or SIGTERM."""
    scheduler = NewsScheduler(config)
    try:
        scheduler.initialize()
    except NewsMonitorError as e:
        logger.error("Startup failed: %s", e)
        return 1

    shutdown = threading.Event()
    flush_on_exit = threading.Event()

    def _on_sigint(signum, frame):  # pylint: disable=unused-argument
        logger.info("Received SIGINT, stopping...")
        flush_on_exit.set()
        shutdown.set()

    def _on_sigterm(signum, frame):  # pylint: disable=unused-argument
        logger.info("Received SIGTERM, stopping...")
        shutdown.set()

    signal.signal(signal.SIGINT, _on_sigint)
    signal.signal(signal.SIGTERM, _on_sigterm)

    scheduler.start()
    logger.info("Monitor started, press Ctrl+C to stop")

    while not shutdown.wait(1.0):
        pass

    scheduler.stop()
    if flush_on_exit.is_set() and scheduler.batch_queue:
        logger.info(
            "%d news items still in the batch queue, trying to send them",
            len(scheduler.batch_queue),
        )
        if not scheduler.flush_batch_queue():
            logger.error("Could not deliver pending batch items before exit")

    logger.info("Monitor stopped")
    return 0


def check_config(loader: ConfigLoader) -> int:
    """Validate configuration and report problems, like a pre-flight check."""
    try:
        config = loader.load()
    except ConfigError as e:
        print(f"Configuration check failed: {e}")
        for key in e.missing:
            print(f"  missing: {key}")
        return 1

    print("Required settings:")
    print(f"  SMTP_HOST:     {config.email.smtp_host}")
    print(f"  SMTP_PORT:     {config.email.smtp_port}")
    print(f"  SMTP_USER:     {config.email.smtp_user}")
    print(f"  SMTP_PASSWORD: {_mask(config.email.smtp_password)}")
    print(f"  TO_EMAIL:      {config.email.to_email}")
    print("Optional settings:")
    print(f"  FROM_EMAIL:     {config.email.sender}")
    print(f"  CHECK_INTERVAL: {config.check_interval}")
    print(f"  PUSH_MODE:      {config.push_mode.value}")
    print(f"  BATCH_TIME:     {config.batch_time}")

    warnings = ConfigLoader.warnings(config)
    for warning in warnings:
        print(f"  warning: {warning}")
    print("Configuration check passed")
    return 0


def scrape(url: str, limit: int) -> int:
    """Fetch the listing once and print the first items."""
    try:
        news_list = NewsScraper(url).fetch_news()
    except NewsMonitorError as e:
        logger.error("Scrape failed: %s", e)
        return 1

    print(f"Fetched {len(news_list)} news items")
    for index, news in enumerate(news_list[:limit], start=1):
        print(f"{index}. {news.title}")
        print(f"   Link: {news.link}")
        print(f"   Time: {news.publish_time}")
        print(f"   ID:   {news.id}")
        if news.summary:
            print(f"   Summary: {news.summary[:50]}...")
    if not news_list:
        print("No news found, the page layout may have changed")
    return 0


def show_status(data_file: str) -> int:
    storage = NewsStorage(data_file)
    try:
        storage.initialize()
    except NewsMonitorError as e:
        logger.error("Cannot open store: %s", e)
        return 1
    stats = storage.stats()
    print(f"Stored news items: {stats.total_count}")
    print(f"Last update:       {stats.last_update or 'never'}")
    return 0


def cleanup(data_file: str, keep: int) -> int:
    storage = NewsStorage(data_file)
    try:
        removed = storage.trim(keep)
    except NewsMonitorError as e:
        logger.error("Cleanup failed: %s", e)
        return 1
    print(f"Removed {removed} old news items, {storage.stats().total_count} kept")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Monitor a news listing page and mail new items")
    parser.add_argument("--env-file", default=None, help="Path of the .env file to load")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the scheduler (default)")
    subparsers.add_parser("check-config", help="Validate the configuration")

    scrape_parser = subparsers.add_parser("scrape", help="Fetch the listing page once")
    scrape_parser.add_argument("--url", default=None, help="Listing page URL")
    scrape_parser.add_argument("--limit", type=int, default=5, help="Items to print")

    status_parser = subparsers.add_parser("status", help="Show store statistics")
    status_parser.add_argument("--data-file", default=None)

    cleanup_parser = subparsers.add_parser("cleanup", help="Trim the store")
    cleanup_parser.add_argument("--data-file", default=None)
    cleanup_parser.add_argument("--keep", type=int, default=None, help="Items to keep")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "run"
    loader = ConfigLoader(args.env_file)

    if command == "check-config":
        setup_logging("WARNING")
        return check_config(loader)

    if command in ("scrape", "status", "cleanup"):
        # These work without mail settings.
        setup_logging("INFO")
        news_url, data_file = loader.load_local_settings()
        if command == "scrape":
            return scrape(args.url or news_url, args.limit)
        data_file = args.data_file or data_file
        if command == "status":
            return show_status(data_file)
        return cleanup(data_file, args.keep if args.keep is not None else DEFAULT_KEEP_COUNT)

    try:
        config = loader.load()
    except ConfigError as e:
        setup_logging("INFO")
        logger.error("Configuration error: %s", e)
        logger.error("Copy .env.example to .env and fill in the required settings")
        return 1

    setup_logging(config.log_level, config.log_file)
    print_banner(config)
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
