"""
Adapter registry: maps a source type string to its adapter.
"""
import logging
from typing import Dict, List, Optional

from core.net import HTTPClient
from crawler.base import SourceAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Registry of source adapters keyed by source type"""

    def __init__(self):
        self._adapters: Dict[str, SourceAdapter] = {}

    def register(self, adapter: SourceAdapter):
        if adapter.source_type in self._adapters:
            logger.warning(f"Adapter for {adapter.source_type} already registered, replacing")
        self._adapters[adapter.source_type] = adapter
        logger.debug(f"Registered adapter: {adapter!r}")

    def get(self, source_type: str) -> Optional[SourceAdapter]:
        return self._adapters.get((source_type or "").lower())

    def types(self) -> List[str]:
        return sorted(self._adapters)


def build_default_registry(http_client: Optional[HTTPClient] = None, pdf_extractor=None) -> AdapterRegistry:
    """Registry with the built-in RSS, HTML and PDF adapters"""
    from crawler.html_fetch import HTMLAdapter
    from crawler.pdf_fetch import PDFAdapter
    from crawler.rss_fetch import RSSAdapter

    client = http_client or HTTPClient()
    registry = AdapterRegistry()
    registry.register(RSSAdapter(client))
    registry.register(HTMLAdapter(client))
    registry.register(PDFAdapter(client, extractor=pdf_extractor))
    return registry
