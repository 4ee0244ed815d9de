import asyncio

import pytest

from searchengine.crawler.links import LinkDiscoverer
from searchengine.crawler.tree import CrawlNode, NodeState
from searchengine.crawler.visited import VisitedSet
from searchengine.crawler.walker import SiteWalker
from conftest import SITE, html_page


class RecordingIndexer:
    def __init__(self, failing=()):
        self.indexed = []
        self.failing = set(failing)

    async def index_page(self, url):
        self.indexed.append(url)
        if url in self.failing:
            raise RuntimeError(f"cannot index {url}")


class ExplodingDiscoverer(LinkDiscoverer):
    def __init__(self, fetcher, parser, explode_on):
        super().__init__(fetcher, parser, delay=0)
        self.explode_on = explode_on

    async def discover_links(self, url, site_url):
        if url == self.explode_on:
            raise RuntimeError("parser exploded")
        return await super().discover_links(url, site_url)


@pytest.fixture
def site_graph(fetcher):
    fetcher.pages.update({
        SITE: (200, html_page("Home", "root", links=("/a", "/b"))),
        SITE + "/a": (200, html_page("A", "page a", links=("/b", "/c", "/"))),
        SITE + "/b": (200, html_page("B", "page b", links=("/a",))),
        SITE + "/c": (200, html_page("C", "page c")),
    })
    return fetcher


def test_walk_indexes_every_page_once(site_graph, discoverer, monitor):
    indexer = RecordingIndexer()
    walker = SiteWalker(SITE, discoverer, indexer, VisitedSet(), monitor)
    root = CrawlNode(url=SITE)

    asyncio.run(walker.walk(root))

    assert indexer.indexed[0] == SITE
    assert sorted(indexer.indexed) == [SITE, SITE + "/a", SITE + "/b", SITE + "/c"]
    assert root.size() == 4
    assert root.state == NodeState.JOINED
    assert [child.url for child in root.children] == [SITE + "/a", SITE + "/b"]


def test_children_are_indexed_before_their_sub_walks(site_graph, discoverer, monitor):
    indexer = RecordingIndexer()
    walker = SiteWalker(SITE, discoverer, indexer, VisitedSet(), monitor)

    asyncio.run(walker.walk(CrawlNode(url=SITE)))

    assert indexer.indexed.index(SITE + "/b") < indexer.indexed.index(SITE + "/c")


def test_page_failure_does_not_stop_siblings(site_graph, discoverer, monitor):
    indexer = RecordingIndexer(failing={SITE + "/a"})
    walker = SiteWalker(SITE, discoverer, indexer, VisitedSet(), monitor)

    asyncio.run(walker.walk(CrawlNode(url=SITE)))

    assert SITE + "/b" in indexer.indexed
    assert SITE + "/c" in indexer.indexed
    assert monitor.counts['indexing_errors'] == 1


def test_already_visited_urls_are_skipped(site_graph, discoverer, monitor):
    visited = VisitedSet()
    asyncio.run(visited.add_if_absent(SITE + "/b"))
    indexer = RecordingIndexer()
    walker = SiteWalker(SITE, discoverer, indexer, visited, monitor)

    asyncio.run(walker.walk(CrawlNode(url=SITE)))

    assert SITE + "/b" not in indexer.indexed


def test_sub_walk_failure_propagates(site_graph, fetcher, parser, monitor):
    discoverer = ExplodingDiscoverer(fetcher, parser, explode_on=SITE + "/c")
    walker = SiteWalker(SITE, discoverer, RecordingIndexer(), VisitedSet(), monitor)

    with pytest.raises(RuntimeError, match="parser exploded"):
        asyncio.run(walker.walk(CrawlNode(url=SITE)))


class BlockingIndexer(RecordingIndexer):
    """Hangs while indexing one URL."""

    def __init__(self, block_on):
        super().__init__()
        self.block_on = block_on
        self.blocked = asyncio.Event()

    async def index_page(self, url):
        await super().index_page(url)
        if url == self.block_on:
            self.blocked.set()
            await asyncio.Event().wait()


def test_cancelled_walk_takes_its_sub_walks_down(fetcher, discoverer, monitor):
    fetcher.pages.update({
        SITE: (200, html_page("Home", "root", links=("/a", "/b"))),
        SITE + "/a": (200, html_page("A", "page a", links=("/a1",))),
        SITE + "/a1": (200, html_page("A1", "page a1", links=("/a2",))),
        SITE + "/a2": (200, html_page("A2", "page a2")),
    })
    indexer = BlockingIndexer(block_on=SITE + "/b")
    walker = SiteWalker(SITE, discoverer, indexer, VisitedSet(), monitor)

    async def go():
        walk = asyncio.create_task(walker.walk(CrawlNode(url=SITE)))
        await indexer.blocked.wait()
        walk.cancel()
        with pytest.raises(asyncio.CancelledError):
            await walk
        assert asyncio.all_tasks() == {asyncio.current_task()}
        indexed = list(indexer.indexed)
        await asyncio.sleep(0.1)
        return indexed

    indexed = asyncio.run(go())

    assert indexer.indexed == indexed
