"""
HTTP client with retries, backoff, size cap and bounded timeouts for source fetches
"""
import os
import time
import logging
from typing import Optional, Dict, Tuple, Any
import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import INGEST_FETCH_TIMEOUT, INGEST_MAX_RESPONSE_KB

logger = logging.getLogger(__name__)

DEFAULT_UA = "GovJobsBot/1.0 (+contact@govjobs.local)"
DEFAULT_CONTACT = "contact@govjobs.local"
MAX_RETRIES = 2


class HTTPClient:
    """HTTP client with politeness headers, retries and a response size cap"""

    def __init__(
        self,
        user_agent: Optional[str] = None,
        contact_email: Optional[str] = None,
        timeout: Optional[float] = None,
        max_size_kb: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.user_agent = user_agent or os.getenv("GOVJOBS_CRAWLER_UA", DEFAULT_UA)
        self.contact_email = contact_email or os.getenv("GOVJOBS_CONTACT_EMAIL", DEFAULT_CONTACT)
        self.timeout = httpx.Timeout(timeout or INGEST_FETCH_TIMEOUT)
        self.max_size_kb = max_size_kb or INGEST_MAX_RESPONSE_KB
        self.transport = transport

    def _get_headers(self, custom_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Build request headers with UA and From"""
        headers = {
            "User-Agent": self.user_agent,
            "From": self.contact_email,
            "Accept": "application/rss+xml,application/xml,text/html,application/xhtml+xml,application/pdf;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-IN,en;q=0.8,hi;q=0.5",
        }
        if custom_headers:
            headers.update(custom_headers)
        return headers

    @retry(
        stop=stop_after_attempt(MAX_RETRIES + 1),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        reraise=True
    )
    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, Dict[str, str], bytes, int]:
        """
        GET a URL with retries on timeouts and connection errors.

        Returns:
            (status_code, headers, body, content_length_bytes)
            Bodies over the size cap are truncated.
        """
        request_headers = self._get_headers(headers)

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            start_time = time.time()
            try:
                response = await client.get(url, headers=request_headers, params=params)
            except httpx.TimeoutException as e:
                logger.error(f"[net] Timeout fetching {url}: {e}")
                raise
            except httpx.ConnectError as e:
                logger.error(f"[net] Connection error fetching {url}: {e}")
                raise

            elapsed_ms = int((time.time() - start_time) * 1000)

            content_length = len(response.content)
            limit = self.max_size_kb * 1024
            if content_length > limit:
                logger.warning(f"[net] Content too large: {content_length} bytes (limit: {self.max_size_kb}KB) - {url}")
                body = response.content[:limit]
            else:
                body = response.content

            logger.info(f"[net] GET {response.status_code} {url} ({content_length} bytes, {elapsed_ms}ms)")

            return (
                response.status_code,
                dict(response.headers),
                body,
                content_length
            )
