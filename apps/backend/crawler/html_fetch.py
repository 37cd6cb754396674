"""
HTML list-page adapter: CSS selectors over a fetched listing page
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from core.errors import SourceParseError
from crawler.base import SourceAdapter

logger = logging.getLogger(__name__)

DEFAULT_LIST_SELECTOR = ".job-item"


def _is_usable_href(href: Optional[str]) -> bool:
    if not href:
        return False
    href = href.strip()
    if not href or href.startswith("#"):
        return False
    return not href.lower().startswith(("javascript:", "mailto:", "tel:"))


def _text(elem) -> Optional[str]:
    if elem is None:
        return None
    return elem.get_text(" ", strip=True) or None


class HTMLAdapter(SourceAdapter):
    """HTML job list page adapter"""

    source_type = "html"

    def load(self, body: bytes, source: Dict) -> List[Any]:
        config = source.get("config") or {}
        selector = config.get("listSelector") or DEFAULT_LIST_SELECTOR

        html = body.decode("utf-8", errors="ignore") if isinstance(body, bytes) else body
        soup = BeautifulSoup(html, "lxml")
        try:
            elements = soup.select(selector)
        except SelectorSyntaxError as e:
            raise SourceParseError(f"Invalid listSelector {selector!r}: {e}", source_id=source.get("id")) from e

        if not elements:
            logger.warning(f"[html_fetch] Selector {selector!r} matched nothing at {source.get('base_url')}")
        else:
            logger.info(f"[html_fetch] Found {len(elements)} items at {source.get('base_url')}")
        return elements

    def items(self, document: List[Any], source: Dict) -> Iterable[Any]:
        return document

    def _select_one(self, elem, selector: Optional[str]):
        if not selector:
            return None
        return elem.select_one(selector)

    def _find_link(self, elem, config: Dict, base_url: str) -> str:
        """
        Link precedence: linkSelector match, the item's own href, the
        item's first usable anchor, then the source's base URL.
        """
        link_elem = self._select_one(elem, config.get("linkSelector"))
        if link_elem is not None and _is_usable_href(link_elem.get("href")):
            return self.resolve_link(link_elem.get("href"), base_url)

        if _is_usable_href(elem.get("href")):
            return self.resolve_link(elem.get("href"), base_url)

        for anchor in elem.find_all("a", href=True):
            if _is_usable_href(anchor.get("href")):
                return self.resolve_link(anchor.get("href"), base_url)

        return base_url

    def extract_item(self, elem: Any, document: Any, source: Dict) -> Optional[Dict]:
        config = source.get("config") or {}
        base_url = source.get("base_url") or ""

        # Whole-item text stands in for a missing title sub-element
        title = _text(self._select_one(elem, config.get("titleSelector"))) or _text(elem)
        if not title:
            return None

        link = self._find_link(elem, config, base_url)

        return {
            "title": title,
            "organisation": _text(self._select_one(elem, config.get("orgSelector"))),
            "link": link,
            "official_notification_url": link,
            "description": _text(self._select_one(elem, config.get("descriptionSelector"))),
            "published": _text(self._select_one(elem, config.get("dateSelector"))),
        }
