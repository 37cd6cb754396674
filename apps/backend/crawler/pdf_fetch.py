"""
PDF notification adapter.

PDF parsing is not built in: without an extractor the adapter yields an
empty stream and makes no network calls. An extractor is a callable
(body: bytes, url: str, source: dict) -> iterable of raw listing dicts.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.errors import SourceParseError
from core.net import HTTPClient
from crawler.base import ListingStream, SourceAdapter

logger = logging.getLogger(__name__)

PDFExtractor = Callable[[bytes, str, Dict], Iterable[Dict]]


class PDFAdapter(SourceAdapter):
    """PDF notification adapter (extraction supplied externally)"""

    source_type = "pdf"

    def __init__(self, http_client: Optional[HTTPClient] = None, extractor: Optional[PDFExtractor] = None):
        super().__init__(http_client)
        self.extractor = extractor

    def pdf_urls(self, source: Dict) -> List[str]:
        config = source.get("config") or {}
        # An explicit empty list means the source has no PDFs yet
        urls = config.get("pdfUrls")
        if urls is None:
            urls = [source.get("base_url")]
        return [url for url in urls if url]

    async def fetch(self, source: Dict) -> List[Tuple[str, bytes]]:
        return [(url, await self.fetch_url(url, source)) for url in self.pdf_urls(source)]

    def load(self, body: List[Tuple[str, bytes]], source: Dict) -> List[Tuple[str, Dict]]:
        listings = []
        for url, content in body:
            try:
                extracted = list(self.extractor(content, url, source))
            except (ValueError, TypeError, KeyError) as e:
                raise SourceParseError(f"PDF extraction failed for {url}: {e}", source_id=source.get("id")) from e
            listings.extend((url, raw) for raw in extracted)
        logger.info(f"[pdf_fetch] Extracted {len(listings)} listings from {len(body)} PDFs for source {source.get('id')}")
        return listings

    def items(self, document: List[Tuple[str, Dict]], source: Dict) -> Iterable[Any]:
        return document

    def extract_item(self, item: Tuple[str, Dict], document: Any, source: Dict) -> Optional[Dict]:
        url, raw = item
        listing = dict(raw)
        listing.setdefault("link", url)
        listing.setdefault("official_notification_url", url)
        return listing

    async def listings(self, source: Dict) -> ListingStream:
        if self.extractor is None:
            logger.info(f"[pdf_fetch] No PDF extractor configured; source {source.get('id')} yields no listings")
            return ListingStream.empty(source_id=source.get("id"))
        return await super().listings(source)
