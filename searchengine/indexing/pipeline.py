"""
Indexing pipeline: fetch a page, store it and maintain its lemma index.
"""

import asyncio
import logging
from typing import List, Optional, Tuple

from .normalizer import TextNormalizer
from ..crawler.fetcher import WebFetcher
from ..crawler.links import belongs_to_site
from ..storage.database import DatabaseManager
from ..storage.models import Page, Site
from ..utils.config import SiteConfig
from ..utils.monitoring import CrawlMonitor, get_monitor


class FetchFailedError(Exception):
    """A stored page could not be re-fetched; its old state is kept."""
    pass


class PageIndexer:
    """
    Indexes single URLs belonging to the configured sites.

    A URL whose page is already stored with index entries is re-indexed
    (update path); anything else takes the fresh-index path.
    """

    def __init__(self, database: DatabaseManager, fetcher: WebFetcher,
                 normalizer: TextNormalizer, sites: List[SiteConfig],
                 monitor: Optional[CrawlMonitor] = None):
        self.database = database
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.sites = sites
        self.monitor = monitor or get_monitor()
        self.logger = logging.getLogger(__name__)

    def resolve_site(self, url: str) -> Optional[SiteConfig]:
        """Configured site whose base URL is the longest prefix of `url`."""
        matches = [site for site in self.sites if belongs_to_site(url, site.url)]
        if not matches:
            return None
        return max(matches, key=lambda site: len(site.url))

    @staticmethod
    def relative_path(url: str, site_url: str) -> str:
        path = url[len(site_url.rstrip('/')):]
        if not path.startswith('/'):
            path = '/' + path
        return path

    async def index_page(self, url: str) -> Optional[Page]:
        """
        Index or re-index `url`. Returns the stored page, or None when the URL
        is out of scope or did not answer 200.
        """
        site, path = await self._locate(url)
        if site is None:
            self.logger.debug(f"Out of scope, not indexed: {url}")
            return None

        page = await self.database.store.get_page(site.id, path)
        if page is not None and await self.database.store.get_indexes_by_page(page.id):
            return await self.update_page(page, site)
        return await self.index_new_page(url, site, path, existing=page)

    async def index_new_page(self, url: str, site: Site, path: str,
                             existing: Optional[Page] = None) -> Optional[Page]:
        """Fetch, persist and lemmatize a page that has no index entries yet."""
        result = await self.fetcher.fetch(url)
        if result.status_code != 200 or result.content is None:
            self.logger.debug(f"Not indexed: {url} (status={result.status_code}, error={result.error})")
            return None

        lemma_counts = await asyncio.to_thread(self.normalizer.normalize, result.content)
        if existing is not None:
            page = await self.database.store.replace_page(existing, result.status_code,
                                                          result.content, lemma_counts)
        else:
            page = await self.database.store.store_page(site, path, result.status_code,
                                                        result.content, lemma_counts)

        self.monitor.record_page_indexed()
        self.logger.debug(f"Indexed {url}: {len(lemma_counts)} lemmas")
        return page

    async def update_page(self, page: Page, site: Site) -> Optional[Page]:
        """
        Re-index a stored page. The page is fetched before its old index state
        is touched; a transport failure leaves the old state in place and
        raises FetchFailedError.
        """
        url = site.url + page.path
        result = await self.fetcher.fetch(url)

        if result.status_code == 0:
            self.logger.warning(f"Re-index of {url} skipped, fetch failed: {result.error}")
            raise FetchFailedError(f"Could not fetch {url}: {result.error}")

        if result.status_code != 200 or result.content is None:
            await self.database.store.remove_page(page)
            self.logger.info(f"Removed {url} from the index (status={result.status_code})")
            return None

        lemma_counts = await asyncio.to_thread(self.normalizer.normalize, result.content)
        updated = await self.database.store.replace_page(page, result.status_code,
                                                         result.content, lemma_counts)
        self.monitor.record_page_indexed()
        self.logger.debug(f"Re-indexed {url}: {len(lemma_counts)} lemmas")
        return updated

    async def _locate(self, url: str) -> Tuple[Optional[Site], str]:
        site_config = self.resolve_site(url)
        if site_config is None:
            return None, ""

        site = await self.database.store.get_site_by_url(site_config.url)
        if site is None:
            # Single-page indexing before any crawl run created the site row
            site = await self.database.store.create_site(site_config.url, site_config.name)
            await self.database.mark_site_indexed(site)
        return site, self.relative_path(url, site_config.url)
