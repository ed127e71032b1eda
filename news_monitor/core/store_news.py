"""
Seen-news storage module.

This module keeps the set of news items that have already been delivered,
persisted as a JSON document of the form ``{"news": [...], "lastUpdate": ...}``.

Components:
- NewsStorage: load, filter, commit and trim the seen-news set
"""

import json
import logging
import os
import tempfile
import threading
from typing import Iterable, Optional

from pydantic import ValidationError

from .exceptions import StorageError
from .types import NewsDocument, NewsItem, StoreStats
from .utils import now_iso

logger = logging.getLogger(__name__)

DEFAULT_DATA_FILE = os.path.join("data", "news.json")
DEFAULT_KEEP_COUNT = 1000


class NewsStorage:
    """Handle persistence and deduplication of delivered news items.

    The whole document is rewritten on every mutation. Every public method
    initializes the store lazily on first use.
    """

    def __init__(self, data_file: str = DEFAULT_DATA_FILE) -> None:
        """Initialize the storage with the path of its JSON file.

        Args:
            data_file: Path to the JSON document holding seen news.
        """
        self.data_file = data_file
        self._document = NewsDocument()
        self._ids: set[str] = set()
        self._lock = threading.RLock()
        self.initialized = False

    def initialize(self) -> None:
        """Load the seen-news document, recreating it when missing or corrupt.

        Raises:
            StorageError: If the file or its directory cannot be read or written.
        """
        with self._lock:
            data_dir = os.path.dirname(os.path.abspath(self.data_file))
            try:
                os.makedirs(data_dir, exist_ok=True)
            except OSError as e:
                logger.error("Cannot create data directory %s: %s", data_dir, e)
                raise StorageError(f"Cannot create data directory {data_dir}: {e}") from e

            try:
                with open(self.data_file, "r", encoding="utf-8") as f:
                    raw = f.read()
            except FileNotFoundError:
                logger.info("No existing data found, creating %s", self.data_file)
                self._reset()
            except UnicodeDecodeError:
                logger.warning("Stored data in %s is not UTF-8, starting empty", self.data_file)
                self._reset()
            except OSError as e:
                logger.error("Cannot read %s: %s", self.data_file, e)
                raise StorageError(f"Cannot read {self.data_file}: {e}") from e
            else:
                try:
                    self._set_document(NewsDocument.model_validate_json(raw))
                    logger.info("Loaded %d stored news items", len(self._document.news))
                except ValidationError as e:
                    logger.warning(
                        "Stored data in %s is malformed, starting empty: %s",
                        self.data_file,
                        e.errors()[0]["msg"] if e.errors() else e,
                    )
                    self._reset()

            self.initialized = True

    def _ensure_initialized(self) -> None:
        if not self.initialized:
            self.initialize()

    def _reset(self) -> None:
        self._set_document(NewsDocument())
        self._save()

    def _set_document(self, document: NewsDocument) -> None:
        self._document = document
        self._ids = {news.id for news in document.news}

    def _save(self) -> None:
        """Atomically rewrite the JSON document.

        Raises:
            StorageError: If the document cannot be written.
        """
        payload = self._document.model_dump(mode="json", by_alias=True)
        data_dir = os.path.dirname(os.path.abspath(self.data_file))
        tmp_path: Optional[str] = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".news-", suffix=".json", dir=data_dir)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.data_file)
        except OSError as e:
            logger.error("Failed to save news data to %s: %s", self.data_file, e)
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise StorageError(f"Failed to save {self.data_file}: {e}") from e

    def load_news(self) -> list[NewsItem]:
        """Return a copy of the stored news items, oldest first."""
        with self._lock:
            self._ensure_initialized()
            return list(self._document.news)

    def is_new(self, news: NewsItem) -> bool:
        """Check whether a single news item has not been seen yet."""
        with self._lock:
            self._ensure_initialized()
            return news.id not in self._ids

    def filter_new(self, candidates: Iterable[NewsItem]) -> list[NewsItem]:
        """Return the candidates that are not in the store, preserving order.

        This is a pure read: calling it twice without a commit in between
        returns the same result.
        """
        with self._lock:
            self._ensure_initialized()
            return [news for news in candidates if news.id not in self._ids]

    def commit(self, news_list: Iterable[NewsItem]) -> list[NewsItem]:
        """Append unseen news items and persist the document.

        Args:
            news_list: Items that were delivered (or queued for delivery).

        Returns:
            The items that were actually appended.

        Raises:
            StorageError: If the document cannot be written. The in-memory
                state is rolled back so the items stay uncommitted.
        """
        with self._lock:
            self._ensure_initialized()
            added: list[NewsItem] = []
            added_ids: set[str] = set()
            for news in news_list:
                if news.id in self._ids or news.id in added_ids:
                    continue
                added.append(news)
                added_ids.add(news.id)

            if not added:
                return []

            previous = self._document
            self._document = NewsDocument(
                news=previous.news + added,
                last_update=now_iso(),
            )
            try:
                self._save()
            except StorageError:
                self._document = previous
                raise
            self._ids |= added_ids
            logger.info("Saved %d new news items", len(added))
            return added

    def stats(self) -> StoreStats:
        with self._lock:
            self._ensure_initialized()
            return StoreStats(
                total_count=len(self._document.news),
                last_update=self._document.last_update,
            )

    def trim(self, keep: int = DEFAULT_KEEP_COUNT) -> int:
        """Keep only the ``keep`` most recently appended items.

        Returns:
            Number of items removed.
        """
        if keep < 0:
            raise ValueError("keep must be non-negative")
        with self._lock:
            self._ensure_initialized()
            excess = len(self._document.news) - keep
            if excess <= 0:
                return 0
            previous = self._document
            kept = previous.news[excess:]
            self._document = NewsDocument(news=kept, last_update=previous.last_update)
            try:
                self._save()
            except StorageError:
                self._document = previous
                raise
            self._ids = {news.id for news in kept}
            logger.info("Cleanup finished, kept the latest %d news items", keep)
            return excess
