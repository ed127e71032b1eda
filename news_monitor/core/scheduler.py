"""
Scheduling module.

NewsScheduler ties scraping, deduplication and delivery together. All
scheduled work (the periodic check and the daily batch delivery) runs on a
single worker thread, and a check that fires while the previous one is still
running is skipped rather than queued.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from croniter import croniter

from .config import MonitorConfig, PushMode
from .exceptions import NewsMonitorError, StorageError
from .fetch_news import NewsScraper
from .send_email import EmailSender
from .store_news import NewsStorage
from .types import NewsItem, SchedulerState, SchedulerStatus
from .utils import NotificationFormatter

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 15
DEFAULT_CRON = f"*/{DEFAULT_INTERVAL_MINUTES} * * * *"
DEFAULT_BATCH_TIME = "18:00"


def parse_cron_expression(interval: Optional[str]) -> str:
    """Turn the configured check interval into a cron expression.

    A plain minute count in [1, 59] becomes ``*/N * * * *``. A valid five-field
    cron expression, or a six-field one with a leading seconds field, is
    returned unchanged. Anything else falls back to every 15 minutes with a
    warning. Never raises.
    """
    value = str(interval).strip() if interval is not None else ""
    if value.isdecimal():
        minutes = int(value)
        if not 1 <= minutes <= 59:
            logger.warning(
                "Check interval of %d minutes is out of range [1, 59], using %d minutes",
                minutes,
                DEFAULT_INTERVAL_MINUTES,
            )
            return DEFAULT_CRON
        return f"*/{minutes} * * * *"

    if value and len(value.split()) in (5, 6) and croniter.is_valid(
        value, second_at_beginning=_has_seconds(value)
    ):
        return value

    logger.warning(
        "Invalid check interval %r, using %d minutes", interval, DEFAULT_INTERVAL_MINUTES
    )
    return DEFAULT_CRON


def _has_seconds(expression: str) -> bool:
    """Six-field expressions carry a leading seconds field."""
    return len(expression.split()) == 6


def parse_batch_time(batch_time: Optional[str]) -> str:
    """Turn an ``HH:mm`` delivery time into a daily cron expression.

    Invalid values fall back to 18:00 with a warning.
    """
    try:
        hour_text, minute_text = str(batch_time).strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError(f"{batch_time} is out of range")
    except ValueError:
        logger.warning("Invalid batch time %r, using %s", batch_time, DEFAULT_BATCH_TIME)
        hour, minute = (int(part) for part in DEFAULT_BATCH_TIME.split(":"))
    return f"{minute} {hour} * * *"


@dataclass
class ScheduledJob:
    name: str
    expression: str
    callback: Callable[[], object]
    next_run: Optional[datetime] = field(default=None)

    def schedule_after(self, moment: datetime) -> datetime:
        self.next_run = croniter(
            self.expression, moment, second_at_beginning=_has_seconds(self.expression)
        ).get_next(datetime)
        return self.next_run


class NewsScheduler:
    """Run news checks on a cron schedule and deliver what is new.

    In real-time mode new items are mailed right away and only committed to
    the store once the mail went out, so a failed send is retried on the
    next check. In batch mode items are queued and committed immediately;
    the queue is mailed once a day and restored if that send fails.
    """

    def __init__(
        self,
        config: MonitorConfig,
        scraper: Optional[NewsScraper] = None,
        storage: Optional[NewsStorage] = None,
        email_sender: Optional[EmailSender] = None,
    ) -> None:
        self.config = config
        self.timezone = ZoneInfo(config.timezone)
        self.scraper = scraper or NewsScraper(config.news_url)
        self.storage = storage or NewsStorage(config.data_file)
        self.email_sender = email_sender or EmailSender(
            config.email,
            formatter=NotificationFormatter(source_url=config.news_url, tz=self.timezone),
        )
        self.batch_queue: list[NewsItem] = []
        self._queued_ids: set[str] = set()
        self.state = SchedulerState.IDLE
        self.jobs: list[ScheduledJob] = []
        self._check_lock = threading.Lock()
        self._queue_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        """True while a check is in progress."""
        return self._check_lock.locked()

    def initialize(self) -> None:
        """Load the store and verify the mail transport.

        Raises:
            NewsMonitorError: If either collaborator cannot start.
        """
        logger.info("Initializing scheduler...")
        self.storage.initialize()
        self.email_sender.initialize()
        logger.info("Scheduler initialized")

    def start(self, run_immediately: bool = True) -> None:
        """Start the worker thread.

        Args:
            run_immediately: Run one check as soon as the worker starts.

        Raises:
            RuntimeError: If the scheduler has already been stopped.
        """
        if self.state is SchedulerState.STOPPED:
            raise RuntimeError("Scheduler has been stopped; create a new one to restart")
        if self._thread is not None:
            logger.info("Scheduler is already running")
            return

        check_cron = parse_cron_expression(self.config.check_interval)
        logger.info(
            "Starting scheduler, check interval: %s (cron: %s)",
            self.config.check_interval,
            check_cron,
        )
        self.jobs = [ScheduledJob("check", check_cron, self.execute_check)]

        if self.config.push_mode is PushMode.BATCH:
            batch_cron = parse_batch_time(self.config.batch_time)
            logger.info("Batch delivery scheduled daily (cron: %s)", batch_cron)
            self.jobs.append(ScheduledJob("batch", batch_cron, self.send_batch_queue))

        self._thread = threading.Thread(
            target=self._run_loop,
            args=(run_immediately,),
            name="news-scheduler",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop scheduling further work. A check already in flight may finish."""
        with self._state_lock:
            if self.state is SchedulerState.STOPPED:
                return
            self.state = SchedulerState.STOPPED
        self._stop_event.set()
        logger.info("Scheduler stopped")

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the worker thread to exit."""
        if self._thread is not None:
            self._thread.join(timeout)

    def _now(self) -> datetime:
        return datetime.now(self.timezone)

    def _run_loop(self, run_immediately: bool) -> None:
        if run_immediately:
            logger.info("Running initial check...")
            self._run_job(self.jobs[0])

        now = self._now()
        for job in self.jobs:
            job.schedule_after(now)

        while not self._stop_event.is_set():
            job = min(self.jobs, key=lambda j: j.next_run)
            delay = (job.next_run - self._now()).total_seconds()
            if delay > 0 and self._stop_event.wait(delay):
                break
            self._run_job(job)
            # Missed fire times are skipped, not replayed.
            job.schedule_after(max(self._now(), job.next_run))

    def _run_job(self, job: ScheduledJob) -> None:
        try:
            job.callback()
        except Exception:  # pylint: disable=broad-except
            logger.exception("Scheduled job %s failed", job.name)

    def execute_check(self) -> int:
        """Run one check: fetch, filter, deliver or queue, commit.

        Errors are logged and never propagate, so a failed check does not
        stop the schedule.

        Returns:
            Number of new items handled; 0 if nothing was new, the check was
            skipped or it failed.
        """
        if self.state is SchedulerState.STOPPED:
            logger.info("Scheduler is stopped, skipping check")
            return 0
        if not self._check_lock.acquire(blocking=False):
            logger.info("Previous check still in progress, skipping this one")
            return 0

        with self._state_lock:
            if self.state is SchedulerState.STOPPED:
                self._check_lock.release()
                logger.info("Scheduler stopped before the check started")
                return 0
            self.state = SchedulerState.CHECKING
        started = time.monotonic()
        try:
            handled = self._check_once()
            logger.info("Check finished in %.2f seconds", time.monotonic() - started)
            return handled
        except NewsMonitorError as e:
            logger.error("Error during news check: %s", e)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Unexpected error during news check")
        finally:
            with self._state_lock:
                if self.state is SchedulerState.CHECKING:
                    self.state = SchedulerState.IDLE
            self._check_lock.release()
        return 0

    def _check_once(self) -> int:
        logger.info("Checking for news (%s)", self._now().strftime("%Y-%m-%d %H:%M:%S"))
        current_news = self.scraper.fetch_news()
        if not current_news:
            logger.info("No news fetched")
            return 0

        new_news = self.storage.filter_new(current_news)
        if not new_news:
            logger.info("No new news found")
            return 0

        logger.info("Found %d new news items", len(new_news))
        if self.config.push_mode is PushMode.BATCH:
            self.add_to_batch_queue(new_news)
        else:
            self.send_news_immediately(new_news)

        self._commit(new_news)
        return len(new_news)

    def _commit(self, news_list: list[NewsItem]) -> None:
        try:
            self.storage.commit(news_list)
        except StorageError as e:
            logger.error(
                "Failed to persist %d news items, they may be delivered again: %s",
                len(news_list),
                e,
            )

    def send_news_immediately(self, news_list: list[NewsItem]) -> None:
        """Mail news right away; failures propagate so nothing is committed."""
        logger.info("Real-time mode: sending %d news items", len(news_list))
        try:
            self.email_sender.send_email(news_list)
        except NewsMonitorError as e:
            logger.error("Email delivery failed, will retry on next check: %s", e)
            raise
        logger.info("Email sent successfully")

    def add_to_batch_queue(self, news_list: list[NewsItem]) -> None:
        with self._queue_lock:
            queued = []
            for news in news_list:
                if news.id in self._queued_ids:
                    continue
                queued.append(news)
                self._queued_ids.add(news.id)
            self.batch_queue.extend(queued)
            queue_length = len(self.batch_queue)
        logger.info("Batch mode: queued %d items, queue length: %d", len(queued), queue_length)

    def send_batch_queue(self) -> bool:
        """Mail everything in the batch queue.

        The queue is swapped out before sending; if the send fails the drained
        items are put back at the front of the queue in their original order.

        Returns:
            True if a batch was sent, False if the queue was empty or the send failed.
        """
        with self._queue_lock:
            if not self.batch_queue:
                logger.info("Batch queue is empty, nothing to send")
                return False
            news_to_send = self.batch_queue
            self.batch_queue = []
            self._queued_ids = set()

        try:
            logger.info("Batch mode: sending %d news items", len(news_to_send))
            self.email_sender.send_email(news_to_send)
        except Exception as e:  # pylint: disable=broad-except
            if isinstance(e, NewsMonitorError):
                logger.error("Batch email failed, items returned to the queue: %s", e)
            else:
                logger.exception("Unexpected error sending batch, items returned to the queue")
            with self._queue_lock:
                drained_ids = {news.id for news in news_to_send}
                self.batch_queue = news_to_send + [
                    news for news in self.batch_queue if news.id not in drained_ids
                ]
                self._queued_ids = {news.id for news in self.batch_queue}
            return False

        logger.info("Batch email sent successfully")
        return True

    def flush_batch_queue(self) -> bool:
        """Best-effort delivery of pending batch items, typically before exit."""
        pending = len(self.batch_queue)
        if pending:
            logger.info("Flushing %d pending batch items", pending)
        return self.send_batch_queue()

    def manual_check(self) -> int:
        logger.info("Manual check triggered")
        return self.execute_check()

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            state=self.state,
            is_running=self.is_running,
            batch_queue_length=len(self.batch_queue),
            storage_stats=self.storage.stats(),
        )
