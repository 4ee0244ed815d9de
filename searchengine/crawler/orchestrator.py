"""
Crawl orchestrator: owns the running/stop state and drives one site walker
per configured site.
"""

import asyncio
import logging
from typing import Optional

from .links import LinkDiscoverer
from .tree import CrawlNode
from .visited import VisitedSet, create_visited_set
from .walker import SiteWalker
from ..indexing.pipeline import PageIndexer
from ..storage.database import DatabaseManager
from ..storage.models import Page, Site
from ..utils.config import Config
from ..utils.monitoring import CrawlMonitor, get_monitor

STOPPED_BY_USER = "Indexing stopped by user"
INTERRUPTED = "Process was interrupted during indexing"


class SiteNotFoundError(Exception):
    """The URL does not belong to any configured site."""
    pass


class CancellationToken:
    """Cooperative stop request, observed by the orchestrator only."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    def reset(self):
        self._event.clear()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


class CrawlOrchestrator:
    """
    Crawl control surface. `start_crawl` returns immediately; the run
    proceeds as a background task until every site is processed or a stop
    is requested.
    """

    def __init__(self, config: Config, database: DatabaseManager, indexer: PageIndexer,
                 discoverer: LinkDiscoverer, monitor: Optional[CrawlMonitor] = None):
        self.config = config
        self.database = database
        self.indexer = indexer
        self.discoverer = discoverer
        self.monitor = monitor or get_monitor()
        self.logger = logging.getLogger(__name__)

        self.is_running = False
        self.token = CancellationToken()
        self._run_task: Optional[asyncio.Task] = None
        self._visited: Optional[VisitedSet] = None

    def is_crawl_running(self) -> bool:
        return self.is_running

    def start_crawl(self) -> bool:
        """Start a crawl run in the background. Returns False if one is already running."""
        if self.is_running:
            self.logger.warning("Crawl is already running")
            return False

        self.is_running = True
        # A fresh token binds to the loop this run executes on
        self.token = CancellationToken()
        self._run_task = asyncio.create_task(self._run())
        return True

    def stop_crawl(self) -> bool:
        """Request a stop. Returns False if no crawl is running."""
        if not self.is_running:
            return False
        self.logger.info("Stop requested")
        self.token.cancel()
        return True

    async def wait(self):
        """Wait for the current run, if any, to finish."""
        if self._run_task is not None:
            await self._run_task

    def resolve_site_for_url(self, url: str) -> Optional[str]:
        site = self.indexer.resolve_site(url)
        return site.url if site else None

    async def index_single_page(self, url: str) -> Optional[Page]:
        """(Re)index one URL outside a crawl run. A failed re-fetch raises FetchFailedError."""
        if self.resolve_site_for_url(url) is None:
            raise SiteNotFoundError(
                f"{url} is outside the sites listed in the configuration file")
        return await self.indexer.index_page(url)

    async def reconcile_interrupted_sites(self) -> int:
        """Sites left INDEXING by a previous process become FAILED."""
        count = await self.database.fail_interrupted_sites(INTERRUPTED)
        if count:
            self.logger.warning(f"Marked {count} interrupted site(s) as FAILED")
        return count

    async def _run(self):
        self.monitor.run_started()
        self._visited = create_visited_set(self.config.redis)
        try:
            sites = await self.database.reset_sites(self.config.sites)
            self.logger.info(f"Crawl started for {len(sites)} site(s)")

            if self.config.crawler.parallel_sites:
                await asyncio.gather(*(self._crawl_site(site) for site in sites))
            else:
                for site in sites:
                    if self.token.cancelled:
                        break
                    await self._crawl_site(site)

            if self.token.cancelled:
                await self._finish_stopped()
            self.logger.info(f"Crawl run finished, {await self._visited.size()} URLs visited")

        except Exception as e:
            self.logger.error(f"Crawl run aborted: {e}", exc_info=True)
        finally:
            await self._visited.close()
            self._visited = None
            self.is_running = False
            self.monitor.run_finished()

    async def _crawl_site(self, site: Site):
        """Walk one site; abandon the walk if a stop is requested meanwhile."""
        walker = SiteWalker(site.url, self.discoverer, self.indexer, self._visited, self.monitor)
        walk = asyncio.create_task(walker.walk(CrawlNode(url=site.url)))
        stop = asyncio.create_task(self.token.wait())

        done, pending = await asyncio.wait({walk, stop}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                self.logger.warning(f"Abandoned walk of {site.url} raised while cancelling: {e}")

        if self.token.cancelled:
            if walk.done() and not walk.cancelled() and walk.exception() is not None:
                self.logger.warning(f"Walk of {site.url} failed before the stop: {walk.exception()}")
            self.logger.info(f"Walk of {site.url} abandoned after {walker.pages_seen} pages")
            return

        error = walk.exception()
        if error is not None:
            self.logger.error(f"Indexing of {site.url} failed: {error}", exc_info=error)
            await self.database.mark_site_failed(site, str(error) or type(error).__name__)
        else:
            await self.database.mark_site_indexed(site)
            self.logger.info(f"Site indexed: {site.url} ({walker.pages_seen} pages)")

    async def _finish_stopped(self):
        count = await self.database.fail_unfinished_sites(STOPPED_BY_USER)
        self.token.reset()
        self.logger.info(f"Crawl stopped by user, {count} site(s) marked FAILED")
