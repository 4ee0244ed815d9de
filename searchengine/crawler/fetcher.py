"""
Web page fetcher with a bounded request pool.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError

from ..utils.monitoring import CrawlMonitor, get_monitor

# Larger bodies are dropped unread
MAX_PAGE_BYTES = 10 * 1024 * 1024

HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml', 'text/plain')

FALLBACK_ENCODINGS = ('utf-8', 'cp1251', 'latin-1')


@dataclass
class FetchResult:
    """Outcome of one GET. `status_code` is 0 when no response was received."""
    url: str
    status_code: int
    content: Optional[str] = None
    error: Optional[str] = None
    fetch_time: float = 0.0
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status_code == 200 and self.content is not None


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Decode with the declared charset, falling back to common encodings."""
    for encoding in ([charset] if charset else []) + list(FALLBACK_ENCODINGS):
        try:
            return body.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return body.decode('utf-8', errors='ignore')


class WebFetcher:
    """
    Fetches web pages for link discovery and indexing. At most
    `max_concurrent_requests` fetches are in flight; failures are reported
    through FetchResult.error instead of being raised.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10, follow_redirects: bool = True,
                 monitor: Optional[CrawlMonitor] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.follow_redirects = follow_redirects
        self.monitor = monitor or get_monitor()
        self.logger = logging.getLogger(__name__)

        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

    async def start(self):
        if self.session is not None:
            return
        self.session = aiohttp.ClientSession(
            timeout=ClientTimeout(total=self.request_timeout),
            headers={'User-Agent': self.user_agent},
            connector=aiohttp.TCPConnector(
                limit=self.max_concurrent_requests * 2,
                limit_per_host=self.max_concurrent_requests,
                ttl_dns_cache=300
            )
        )
        self.logger.info(f"Fetcher started ({self.max_concurrent_requests} concurrent requests)")

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("Fetcher closed")

    async def fetch(self, url: str) -> FetchResult:
        """GET `url`. Never raises for network or URL problems."""
        if self.session is None:
            await self.start()

        started = time.time()
        async with self.semaphore:
            try:
                return await self._get(url, started)
            except asyncio.TimeoutError:
                error_type, message = 'timeout', "Request timeout"
            except ClientError as e:
                error_type, message = 'client', f"Client error: {e}"
            except ValueError as e:
                # aiohttp reports malformed URLs as ValueError subclasses
                error_type, message = 'invalid_url', f"Invalid URL: {e}"

        self.logger.warning(f"Fetch of {url} failed: {message}")
        self.monitor.record_fetch_error(error_type)
        return FetchResult(url=url, status_code=0, error=message, fetch_time=time.time() - started)

    async def _get(self, url: str, started: float) -> FetchResult:
        async with self.session.get(url, allow_redirects=self.follow_redirects) as response:
            content_type = response.headers.get('content-type', '').lower()
            elapsed = time.time() - started

            if content_type and not content_type.startswith(HTML_CONTENT_TYPES):
                self.logger.debug(f"Skipping non-HTML content: {url} ({content_type})")
                self.monitor.record_fetch(response.status, elapsed)
                return FetchResult(url=url, status_code=response.status, error="Non-HTML content type",
                                   content_type=content_type, fetch_time=elapsed)

            content = await self._read_body(response)
            elapsed = time.time() - started
            self.monitor.record_fetch(response.status, elapsed)
            self.logger.debug(f"Fetched {url}: {response.status} ({len(content or '')} chars)")
            return FetchResult(url=url, status_code=response.status, content=content,
                               content_type=content_type, fetch_time=elapsed)

    async def _read_body(self, response: aiohttp.ClientResponse) -> Optional[str]:
        """Read and decode the body; None if it exceeds MAX_PAGE_BYTES."""
        declared = response.headers.get('content-length')
        if declared and declared.isdigit() and int(declared) > MAX_PAGE_BYTES:
            self.logger.warning(f"Body too large ({declared} bytes): {response.url}")
            return None

        body = bytearray()
        async for chunk in response.content.iter_chunked(8192):
            body.extend(chunk)
            if len(body) > MAX_PAGE_BYTES:
                self.logger.warning(f"Body exceeded {MAX_PAGE_BYTES} bytes while reading: {response.url}")
                return None
        return decode_body(bytes(body), response.charset)
