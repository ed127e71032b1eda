# pylint: disable=redefined-outer-name
"""
Unit tests for the store_news module.

This module tests NewsStorage: loading, self-healing, filtering, committing,
trimming and the on-disk document format.
"""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from news_monitor.core.exceptions import StorageError
from news_monitor.core.hashing import generate_news_id
from news_monitor.core.store_news import NewsStorage
from news_monitor.core.types import NewsItem

# --- Fixtures ---


@pytest.fixture
def sample_news() -> list[NewsItem]:
    """Provide a list of sample news items."""
    return [
        NewsItem(
            title="State Council executive meeting held",
            link="https://www.gov.cn/yaowen/1.htm",
            publish_time="2024-01-15",
            summary="Employment measures.",
        ),
        NewsItem(title="New guideline published", link="https://www.gov.cn/yaowen/2.htm"),
        NewsItem(title="Premier meets delegation", link="https://www.gov.cn/yaowen/3.htm"),
    ]


@pytest.fixture
def data_file(tmp_path: Path) -> Path:
    """Path of a news file inside a not-yet-existing data directory."""
    return tmp_path / "data" / "news.json"


@pytest.fixture
def storage(data_file: Path) -> NewsStorage:
    """Provide an initialized storage backed by a temporary file."""
    store = NewsStorage(str(data_file))
    store.initialize()
    return store


# --- Tests for initialization ---


def test_initialize_creates_empty_file(storage: NewsStorage, data_file: Path) -> None:
    """A missing file is created with an empty document."""
    assert data_file.exists()
    assert json.loads(data_file.read_text(encoding="utf-8")) == {
        "news": [],
        "lastUpdate": None,
    }
    assert storage.stats().total_count == 0


def test_initialize_recovers_from_corrupt_file(data_file: Path) -> None:
    """Malformed JSON is replaced by an empty document instead of failing."""
    data_file.parent.mkdir(parents=True)
    data_file.write_text("{not json", encoding="utf-8")

    store = NewsStorage(str(data_file))
    store.initialize()

    assert store.stats().total_count == 0
    assert json.loads(data_file.read_text(encoding="utf-8"))["news"] == []


def test_initialize_loads_existing_items(data_file: Path) -> None:
    """Items written by earlier runs are loaded, ids computed when absent."""
    data_file.parent.mkdir(parents=True)
    data_file.write_text(
        json.dumps(
            {
                "news": [
                    {"id": "abc", "title": "Stored one", "link": "http://x/1"},
                    {"title": "Stored two", "link": "http://x/2", "publishTime": "2024-01-01"},
                ],
                "lastUpdate": "2024-01-01T00:00:00.000Z",
            }
        ),
        encoding="utf-8",
    )

    store = NewsStorage(str(data_file))
    store.initialize()

    stored = store.load_news()
    assert [news.id for news in stored] == ["abc", generate_news_id("Stored two", "http://x/2")]
    assert stored[1].publish_time == "2024-01-01"
    assert store.stats().last_update == "2024-01-01T00:00:00.000Z"


def test_initialize_unreadable_file_raises(data_file: Path) -> None:
    """Unrecoverable I/O errors surface as StorageError."""
    store = NewsStorage(str(data_file))
    with patch("builtins.open", side_effect=PermissionError("denied")):
        with pytest.raises(StorageError, match="denied"):
            store.initialize()


# --- Tests for filter_new / commit ---


def test_filter_new_is_idempotent(storage: NewsStorage, sample_news: list[NewsItem]) -> None:
    """Filtering twice without a commit gives the same result."""
    first = storage.filter_new(sample_news)
    second = storage.filter_new(sample_news)
    assert first == second == sample_news


def test_commit_then_filter_returns_nothing(
    storage: NewsStorage, sample_news: list[NewsItem]
) -> None:
    """Committed items are no longer new."""
    storage.commit(sample_news)
    assert storage.filter_new(sample_news) == []
    assert not storage.is_new(sample_news[0])


def test_filter_new_preserves_order(storage: NewsStorage, sample_news: list[NewsItem]) -> None:
    storage.commit([sample_news[1]])
    assert storage.filter_new(sample_news) == [sample_news[0], sample_news[2]]


def test_commit_skips_already_stored(storage: NewsStorage, sample_news: list[NewsItem]) -> None:
    """Committing the same items twice does not duplicate them."""
    assert len(storage.commit(sample_news)) == 3
    assert storage.commit(sample_news) == []
    assert storage.commit(sample_news[:1] + sample_news[:1]) == []
    assert storage.stats().total_count == 3


def test_commit_empty_is_noop(storage: NewsStorage, data_file: Path) -> None:
    before = data_file.read_text(encoding="utf-8")
    assert storage.commit([]) == []
    assert data_file.read_text(encoding="utf-8") == before
    assert storage.stats().last_update is None


def test_commit_persists_document(
    storage: NewsStorage, sample_news: list[NewsItem], data_file: Path
) -> None:
    """The file holds every item with the original key names."""
    storage.commit(sample_news)

    document = json.loads(data_file.read_text(encoding="utf-8"))
    assert [entry["id"] for entry in document["news"]] == [news.id for news in sample_news]
    assert document["news"][0]["publishTime"] == "2024-01-15"
    assert document["lastUpdate"]

    reloaded = NewsStorage(str(data_file))
    reloaded.initialize()
    assert reloaded.filter_new(sample_news) == []


def test_commit_write_failure_rolls_back(
    storage: NewsStorage, sample_news: list[NewsItem]
) -> None:
    """A failed write leaves the items uncommitted."""
    with patch("news_monitor.core.store_news.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(StorageError, match="disk full"):
            storage.commit(sample_news)

    assert storage.filter_new(sample_news) == sample_news
    assert storage.stats().total_count == 0


def test_lazy_initialization(data_file: Path, sample_news: list[NewsItem]) -> None:
    """Operations initialize the store on first use."""
    store = NewsStorage(str(data_file))
    assert store.filter_new(sample_news) == sample_news
    assert store.initialized


def test_stats_initializes_lazily(data_file: Path, sample_news: list[NewsItem]) -> None:
    """Stats of a fresh instance reflect what is already on disk."""
    NewsStorage(str(data_file)).commit(sample_news)

    stats = NewsStorage(str(data_file)).stats()

    assert stats.total_count == 3
    assert stats.last_update is not None


# --- Tests for trim ---


def test_trim_keeps_most_recent(storage: NewsStorage, sample_news: list[NewsItem]) -> None:
    """Only the newest entries survive and older ones become new again."""
    storage.commit(sample_news)

    removed = storage.trim(keep=2)

    assert removed == 1
    assert storage.load_news() == sample_news[1:]
    assert storage.filter_new(sample_news) == sample_news[:1]


def test_trim_within_limit_is_noop(storage: NewsStorage, sample_news: list[NewsItem]) -> None:
    storage.commit(sample_news)
    assert storage.trim(keep=10) == 0
    assert storage.stats().total_count == 3
