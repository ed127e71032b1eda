"""
Notification formatting helpers.

Components:
- now_iso: ISO-8601 UTC timestamp used for fetch times and store updates
- NotificationFormatter: subject, plain-text and HTML bodies for news emails
"""

import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional, Sequence

from jinja2 import Environment, PackageLoader, select_autoescape

from .types import NewsItem

logger = logging.getLogger(__name__)

SEPARATOR = "=" * 50
UNKNOWN_TIME = "Unknown time"


def now_iso() -> str:
    """Return the current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


class NotificationFormatter:
    """Render news items into email subject and bodies."""

    def __init__(
        self,
        source_url: str,
        tz: Optional[tzinfo] = None,
        source_name: str = "gov.cn",
    ) -> None:
        self.source_url = source_url
        self.source_name = source_name
        self.tz = tz
        self._env = Environment(
            loader=PackageLoader("news_monitor", "templates"),
            autoescape=select_autoescape(["html"]),
        )

    def _now(self) -> datetime:
        return datetime.now(self.tz) if self.tz else datetime.now()

    def format_time(self, value: Optional[str]) -> str:
        """Format an ISO timestamp for display, keeping unparseable text as is."""
        if not value:
            return UNKNOWN_TIME
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Keeping non-ISO publish time as is: %s", value)
            return value
        if parsed.tzinfo and self.tz:
            parsed = parsed.astimezone(self.tz)
        return parsed.strftime("%Y-%m-%d %H:%M")

    def generate_subject(self, news_list: Sequence[NewsItem]) -> str:
        return (
            f"[Gov News] {len(news_list)} new items - "
            f"{self._now().strftime('%Y-%m-%d %H:%M')}"
        )

    def generate_text_content(self, news_list: Sequence[NewsItem]) -> str:
        """Generate the plain-text alternative of the notification."""
        lines = [
            "Government news update",
            f"{len(news_list)} new items",
            f"Updated: {self._now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            SEPARATOR,
            "",
        ]
        for index, news in enumerate(news_list, start=1):
            lines.append(f"{index}. {news.title}")
            lines.append(f"   Published: {self.format_time(news.publish_time)}")
            if news.summary:
                lines.append(f"   Summary: {news.summary}")
            lines.append(f"   Link: {news.link}")
            lines.append("")
        lines.append(SEPARATOR)
        lines.append(f"Source: {self.source_url}")
        return "\n".join(lines) + "\n"

    def generate_html_content(self, news_list: Sequence[NewsItem]) -> str:
        """Generate the HTML body; all item fields are escaped by the template."""
        template = self._env.get_template("news_email.html")
        return template.render(
            news_list=[
                {
                    "title": news.title,
                    "link": news.link,
                    "summary": news.summary,
                    "publish_time": self.format_time(news.publish_time),
                }
                for news in news_list
            ],
            count=len(news_list),
            generated_at=self._now().strftime("%Y-%m-%d %H:%M:%S"),
            source_url=self.source_url,
            source_name=self.source_name,
        )
