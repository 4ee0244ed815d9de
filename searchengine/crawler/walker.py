"""
Recursive site walker.

Each node is expanded (its unseen links become children), every child is
indexed in discovery order, and then one sub-walk per child is spawned. A
node is done only when all of its sub-walks have joined, so a site's walk
completes exactly when every reachable page has been processed.
"""

import asyncio
import logging
from typing import Optional

from .links import LinkDiscoverer
from .tree import CrawlNode, NodeState
from .visited import VisitedSet
from ..utils.logger import get_crawler_logger
from ..utils.monitoring import CrawlMonitor, get_monitor


class SiteWalker:
    """Walks one site's crawl tree, indexing each newly discovered page."""

    def __init__(self, site_url: str, discoverer: LinkDiscoverer, indexer, visited: VisitedSet,
                 monitor: Optional[CrawlMonitor] = None):
        self.site_url = site_url
        self.discoverer = discoverer
        self.indexer = indexer
        self.visited = visited
        self.monitor = monitor or get_monitor()
        self.logger = get_crawler_logger(__name__, site=site_url)
        self.pages_seen = 0

    async def walk(self, root: CrawlNode):
        """Index the root page, then walk everything reachable from it."""
        claimed = await self.visited.add_if_absent(root.url)
        # Pages link back to the site root as "<site>/"
        await self.visited.add_if_absent(root.url.rstrip('/') + '/')
        if claimed:
            await self._index_child(root)
        await self._walk(root)
        self.logger.info(f"Walk finished, {root.size()} pages in crawl tree")

    async def _walk(self, node: CrawlNode):
        node.state = NodeState.EXPANDING
        await self.visited.add_if_absent(node.url)

        links = await self.discoverer.discover_links(node.url, self.site_url)
        for link in sorted(links):
            if await self.visited.add_if_absent(link):
                node.add_child(link)

        sub_walks = []
        try:
            for child in node.children:
                await self._index_child(child)
                sub_walks.append(asyncio.create_task(self._walk(child)))
            node.state = NodeState.FORKED
            results = await asyncio.gather(*sub_walks, return_exceptions=True)
        except asyncio.CancelledError:
            # Sub-walks spawned so far belong to this node and go down with it
            await self._abandon(sub_walks)
            raise

        for result in results:
            if isinstance(result, BaseException):
                raise result
        node.state = NodeState.JOINED

    @staticmethod
    async def _abandon(tasks):
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _index_child(self, node: CrawlNode):
        self.pages_seen += 1
        try:
            await self.indexer.index_page(node.url)
        except Exception as e:
            # One bad page must not stop its siblings
            self.monitor.record_indexing_error()
            self.logger.log_url_event(logging.WARNING, node.url, f"Indexing failed ({e})")
