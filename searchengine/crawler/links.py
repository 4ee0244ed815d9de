"""
Link discovery: same-site, HTML-only outbound links of a page.
"""

import asyncio
import logging
from typing import Set
from urllib.parse import urlparse

from .fetcher import WebFetcher
from .parser import ContentParser

# Links to these resources are never crawled
SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.eps', '.ico',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx', '.rtf', '.odt',
    '.zip', '.rar', '.tar', '.gz', '.7z', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
    '.css', '.js', '.woff', '.woff2', '.ttf', '.eot', '.xml', '.json',
)

# Query parameters that only mark tracking links
TRACKING_PARAMS = ('_ga', 'utm_')


def is_file_link(url: str) -> bool:
    """True for links to images, documents, archives or tracking-tagged URLs."""
    parsed = urlparse(url.lower())
    if parsed.path.endswith(SKIP_EXTENSIONS):
        return True
    query_keys = [pair.split('=', 1)[0] for pair in parsed.query.split('&') if pair]
    return any(key.startswith(TRACKING_PARAMS) for key in query_keys)


def belongs_to_site(url: str, site_url: str) -> bool:
    """True when `url` lives under the site's base URL."""
    url = url.lower()
    site_url = site_url.lower().rstrip('/')
    return url == site_url or url.startswith(site_url + '/') or url.startswith(site_url + '?')


class LinkDiscoverer:
    """
    Fetches a page and returns its same-site links. Every call waits a fixed
    delay first to throttle the request rate against the crawled sites.
    """

    def __init__(self, fetcher: WebFetcher, parser: ContentParser, delay: float = 0.15):
        self.fetcher = fetcher
        self.parser = parser
        self.delay = delay
        self.logger = logging.getLogger(__name__)

    async def discover_links(self, url: str, site_url: str) -> Set[str]:
        """
        Return absolute same-site, non-file links found on `url`. Fetch or
        parse failures yield an empty set.
        """
        if self.delay:
            await asyncio.sleep(self.delay)

        result = await self.fetcher.fetch(url)
        if not result.ok:
            self.logger.debug(f"No links from {url}: status={result.status_code} error={result.error}")
            return set()

        parsed = self.parser.parse(url, result.content)
        links = {
            link for link in parsed.links
            if belongs_to_site(link, site_url) and not is_file_link(link)
        }
        self.logger.debug(f"Discovered {len(links)} links on {url}")
        return links
