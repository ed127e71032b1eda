"""
Type definitions and Pydantic models for the News Monitor.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .hashing import generate_news_id


class NewsItem(BaseModel):
    """Represents a news item extracted from the listing page.

    ``id`` is derived from title and link when it is not supplied, so items
    loaded from older files without ids still dedupe correctly.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = ""
    title: str
    link: str
    publish_time: Optional[str] = Field(default=None, alias="publishTime")
    summary: str = ""

    @model_validator(mode="after")
    def _fill_identity(self) -> "NewsItem":
        if not self.id:
            self.id = generate_news_id(self.title, self.link)
        return self


class NewsDocument(BaseModel):
    """On-disk layout of the seen-news file."""
    model_config = ConfigDict(populate_by_name=True)

    news: List[NewsItem] = Field(default_factory=list)
    last_update: Optional[str] = Field(default=None, alias="lastUpdate")


class StoreStats(BaseModel):
    """Read-only snapshot of the seen-news store."""
    total_count: int
    last_update: Optional[str] = None


class SendResult(BaseModel):
    """Outcome of a successful notification."""
    message_id: str
    count: int


class SchedulerState(str, Enum):
    """Lifecycle of the scheduler. STOPPED is final."""
    IDLE = "idle"
    CHECKING = "checking"
    STOPPED = "stopped"


class SchedulerStatus(BaseModel):
    """Snapshot of the scheduler for status reporting."""
    state: SchedulerState
    is_running: bool
    batch_queue_length: int
    storage_stats: StoreStats
