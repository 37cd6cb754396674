"""
Base adapter interface for job sources.

An adapter turns one JobSource into a ListingStream of raw listings:

    fetch          network; raises SourceFetchError
    load           whole-document parse; raises SourceParseError
    items          the per-posting units found in the loaded document
    extract_item   one unit -> raw listing dict

A malformed item never aborts the source: extraction errors and listings
without a title are dropped and logged at DEBUG.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Iterator, Optional
from urllib.parse import urljoin

import httpx

from core.errors import SourceFetchError
from core.net import HTTPClient

logger = logging.getLogger(__name__)


class ListingStream:
    """Lazy, finite, restartable sequence of raw listings for one source"""

    def __init__(self, factory: Callable[[], Iterable[Dict]], source_id=None):
        self._factory = factory
        self.source_id = source_id

    def __iter__(self) -> Iterator[Dict]:
        return iter(self._factory())

    @classmethod
    def empty(cls, source_id=None) -> "ListingStream":
        return cls(lambda: (), source_id=source_id)


class SourceAdapter(ABC):
    """Produces raw listings for sources of one type"""

    source_type: str = ""

    def __init__(self, http_client: Optional[HTTPClient] = None):
        self.http_client = http_client or HTTPClient()
        self.logger = logging.getLogger(f"{__name__}.{self.source_type}")

    async def fetch_url(self, url: str, source: Dict) -> bytes:
        """GET a URL, mapping transport errors and non-200 responses to SourceFetchError"""
        try:
            status, headers, body, size = await self.http_client.fetch(url)
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Fetch failed for {url}: {e}", source_id=source.get("id")) from e

        if status != 200:
            raise SourceFetchError(f"HTTP {status} for {url}", source_id=source.get("id"))
        return body

    async def fetch(self, source: Dict) -> Any:
        return await self.fetch_url(source["base_url"], source)

    @abstractmethod
    def load(self, body: Any, source: Dict) -> Any:
        """Parse a fetched body into a document"""

    @abstractmethod
    def items(self, document: Any, source: Dict) -> Iterable[Any]:
        """Per-posting units of a loaded document"""

    @abstractmethod
    def extract_item(self, item: Any, document: Any, source: Dict) -> Optional[Dict]:
        """Map one unit to a raw listing dict"""

    def iter_listings(self, document: Any, source: Dict) -> Iterator[Dict]:
        for item in self.items(document, source):
            try:
                raw = self.extract_item(item, document, source)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                self.logger.debug(f"[{self.source_type}] Skipping malformed item in source {source.get('id')}: {e}")
                continue

            title = raw.get("title") if raw else None
            if not isinstance(title, str) or not title.strip():
                self.logger.debug(f"[{self.source_type}] Skipping item without title in source {source.get('id')}")
                continue

            yield raw

    async def listings(self, source: Dict) -> ListingStream:
        """
        Fetch and parse the source once; the returned stream can be iterated
        any number of times over the loaded document.
        """
        body = await self.fetch(source)
        document = self.load(body, source)
        return ListingStream(lambda: self.iter_listings(document, source), source_id=source.get("id"))

    @staticmethod
    def resolve_link(href: Optional[str], base_url: str) -> Optional[str]:
        if not href:
            return None
        href = href.strip()
        if not href:
            return None
        return urljoin(base_url, href)

    def __repr__(self):
        return f"<{self.__class__.__name__}(type={self.source_type})>"
