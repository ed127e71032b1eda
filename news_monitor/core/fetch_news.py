"""
News listing scraper.

This module fetches the news listing page and turns its markup into
NewsItem objects. The page layout is not under our control, so candidate
elements are located by an ordered list of selector strategies: the first
strategy that matches anything wins, and anchors pointing into the news
section are the last resort.
"""

import logging
from typing import Callable, Iterable, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup, Tag

from .exceptions import NetworkError, ParseError
from .hashing import generate_news_id
from .types import NewsItem
from .utils import now_iso

logger = logging.getLogger(__name__)

TARGET_URL = "https://www.gov.cn/yaowen/liebiao/"
REQUEST_TIMEOUT_SECONDS = 10
MIN_TITLE_LENGTH = 5
SUMMARY_MAX_LENGTH = 200
FALLBACK_TEXT_MIN = 10
FALLBACK_TEXT_MAX = 200

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# Structural selectors, most specific first.
LIST_SELECTORS = (
    "ul.list li",
    ".news-list li",
    ".list li",
    "div.news-item",
    "article.news",
)
TIME_SELECTORS = (".time", ".date", "time", "[datetime]")
SUMMARY_SELECTORS = (".summary", ".desc", ".excerpt", "p")

Strategy = tuple[str, Callable[[BeautifulSoup], list[Tag]]]


def _css_strategy(selector: str) -> Strategy:
    return selector, lambda soup: soup.select(selector)


def _news_link_strategy(news_path: str) -> Strategy:
    def match(soup: BeautifulSoup) -> list[Tag]:
        return [
            anchor
            for anchor in soup.select(f'a[href*="{news_path}"]')
            if FALLBACK_TEXT_MIN < len(anchor.get_text().strip()) < FALLBACK_TEXT_MAX
        ]

    return f"news links ({news_path})", match


def build_strategies(news_path: str) -> list[Strategy]:
    """Return the ordered selector strategies, ending with the link fallback."""
    return [_css_strategy(selector) for selector in LIST_SELECTORS] + [
        _news_link_strategy(news_path)
    ]


def deduplicate(news_list: Iterable[NewsItem]) -> list[NewsItem]:
    """Remove duplicates by identity, keeping the first occurrence in order."""
    seen: set[str] = set()
    unique = []
    for news in news_list:
        if news.id in seen:
            continue
        seen.add(news.id)
        unique.append(news)
    return unique


class NewsScraper:
    """Fetch and parse the news listing page.

    The scraper keeps no state between calls: every ``fetch_news`` is a pure
    function of the page it downloads plus the clock (for missing times).
    """

    def __init__(
        self,
        url: str = TARGET_URL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        section_path: Optional[str] = None,
    ) -> None:
        """Initialize the scraper.

        Args:
            url: Listing page URL.
            timeout: HTTP timeout in seconds.
            section_path: Path prefix of news pages (e.g. ``/yaowen``). Defaults
                to the first path segment of ``url``.
        """
        parsed = urlparse(url)
        self.url = url
        self.timeout = timeout
        self.origin = f"{parsed.scheme}://{parsed.netloc}"
        if section_path is None:
            first_segment = parsed.path.strip("/").split("/")[0]
            section_path = f"/{first_segment}" if first_segment else ""
        self.section_path = section_path.rstrip("/")
        self.strategies = build_strategies(self.section_path or "/")

    def fetch_news(self) -> list[NewsItem]:
        """Download the listing page and extract its news items.

        Returns:
            News items in page order, deduplicated by identity.

        Raises:
            NetworkError: On timeout, connection failure or HTTP status >= 500.
            ParseError: If the markup cannot be processed at all.
        """
        logger.info("Fetching news from: %s", self.url)
        try:
            response = requests.get(self.url, headers=DEFAULT_HEADERS, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.error("Request to %s timed out", self.url)
            raise NetworkError("Request timed out, check the network connection") from e
        except requests.exceptions.ConnectionError as e:
            logger.error("Cannot connect to %s: %s", self.url, e)
            raise NetworkError("Cannot connect to the server, check the network connection") from e
        except requests.exceptions.RequestException as e:
            logger.error("Request to %s failed: %s", self.url, e)
            raise NetworkError(f"Request failed: {e}") from e

        if response.status_code >= 500:
            raise NetworkError(f"HTTP {response.status_code}: {response.reason}")
        if response.status_code >= 400:
            # The page sometimes still renders a usable list.
            logger.warning(
                "Received HTTP %s from %s, parsing the body anyway",
                response.status_code,
                self.url,
            )

        content_type = response.headers.get("Content-Type", "")
        if "charset" not in content_type.lower():
            response.encoding = response.apparent_encoding

        news_list = self.parse_news(response.text)
        logger.info("Successfully extracted %d news items", len(news_list))
        return news_list

    def select_items(self, soup: BeautifulSoup) -> list[Tag]:
        """Return the elements matched by the first strategy that matches anything."""
        for name, strategy in self.strategies:
            elements = strategy(soup)
            if elements:
                logger.info("Using selector %s, found %d elements", name, len(elements))
                return elements
            logger.debug("Selector %s matched nothing", name)
        return []

    def parse_news(self, html: str) -> list[NewsItem]:
        """Parse listing HTML into news items.

        Args:
            html: Listing page markup.

        Returns:
            Valid news items, deduplicated by identity.

        Raises:
            ParseError: If the document as a whole cannot be processed.
        """
        try:
            soup = BeautifulSoup(html, "lxml")
            news_list = []
            for element in self.select_items(soup):
                try:
                    news = self._parse_element(element)
                except Exception as e:  # pylint: disable=broad-except
                    logger.warning("Failed to parse a news element: %s", e)
                    continue
                if news is not None:
                    news_list.append(news)
        except Exception as e:
            logger.error("Failed to parse listing HTML: %s", e, exc_info=True)
            raise ParseError(f"Parsing failed: {e}") from e

        return deduplicate(news_list)

    def _parse_element(self, element: Tag) -> Optional[NewsItem]:
        anchor = element if element.name == "a" else element.find("a")
        if anchor is None:
            return None

        title = anchor.get_text().strip() or element.get_text().strip()
        link = self.absolutize(anchor.get("href") or "")

        if not title or not link or len(title) <= MIN_TITLE_LENGTH:
            logger.debug("Skipping element with invalid title or link: %r", title)
            return None

        return NewsItem(
            id=generate_news_id(title, link),
            title=title,
            link=link,
            publish_time=self._extract_time(element) or now_iso(),
            summary=self._extract_summary(element),
        )

    def absolutize(self, href: str) -> str:
        """Turn a relative href into an absolute URL on the listing site."""
        href = href.strip() if isinstance(href, str) else ""
        if not href or href.startswith("http"):
            return href
        if href.startswith("/"):
            return f"{self.origin}{href}"
        return f"{self.origin}{self.section_path}/{href}"

    @staticmethod
    def _extract_time(element: Tag) -> str:
        for selector in TIME_SELECTORS:
            tag = element.select_one(selector)
            if tag is not None:
                return (tag.get("datetime") or tag.get_text()).strip()
        return ""

    @staticmethod
    def _extract_summary(element: Tag) -> str:
        for selector in SUMMARY_SELECTORS:
            tag = element.select_one(selector)
            if tag is not None:
                text = tag.get_text().strip()
                if text:
                    return text[:SUMMARY_MAX_LENGTH]
        return ""
