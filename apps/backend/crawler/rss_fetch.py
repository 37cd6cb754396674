"""
RSS/Atom feed adapter
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import feedparser
from bs4 import BeautifulSoup

from core.errors import SourceParseError
from crawler.base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_TITLE_FIELD = "title"
DEFAULT_LINK_FIELD = "link"
DEFAULT_DESCRIPTION_FIELD = "summary"


def html_to_text(value: Optional[str]) -> Optional[str]:
    """Flatten HTML fragments found in feed descriptions"""
    if not value:
        return None
    if "<" not in value:
        return value
    return BeautifulSoup(value, "lxml").get_text(" ", strip=True)


class RSSAdapter(SourceAdapter):
    """RSS/Atom feed adapter"""

    source_type = "rss"

    def load(self, body: bytes, source: Dict) -> Any:
        feed = feedparser.parse(body)

        # bozo is set for recoverable issues too; only fail when nothing parsed
        if feed.bozo and not feed.entries:
            raise SourceParseError(
                f"Malformed feed at {source.get('base_url')}: {feed.get('bozo_exception')}",
                source_id=source.get("id"),
            )

        logger.info(f"[rss_fetch] Parsed {len(feed.entries)} entries from {source.get('base_url')}")
        return feed

    def items(self, document: Any, source: Dict) -> Iterable[Any]:
        return document.entries

    def extract_item(self, entry: Any, document: Any, source: Dict) -> Optional[Dict]:
        config = source.get("config") or {}
        base_url = source.get("base_url") or ""

        title = entry.get(config.get("titleField") or DEFAULT_TITLE_FIELD)
        if not title:
            return None

        link = self.resolve_link(entry.get(config.get("linkField") or DEFAULT_LINK_FIELD), base_url)

        description_field = config.get("descriptionField") or DEFAULT_DESCRIPTION_FIELD
        description = entry.get(description_field) or entry.get("summary") or entry.get("description")

        published = None
        parsed_date = entry.get("published_parsed") or entry.get("updated_parsed")
        if parsed_date:
            published = datetime(*parsed_date[:6], tzinfo=timezone.utc)

        return {
            "title": title,
            "link": link,
            # The notification is the entry itself unless the feed says otherwise
            "official_notification_url": self.resolve_link(entry.get("link"), base_url) or link,
            "description": html_to_text(description),
            "published": published,
            "feed_title": document.feed.get("title"),
        }
