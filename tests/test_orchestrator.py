import asyncio

import pytest

from searchengine.crawler.links import LinkDiscoverer
from searchengine.crawler.orchestrator import (
    CrawlOrchestrator, SiteNotFoundError, INTERRUPTED, STOPPED_BY_USER,
)
from searchengine.indexing.pipeline import PageIndexer
from searchengine.storage.models import SiteStatus
from conftest import SITE, OTHER_SITE, FakeFetcher, html_page


class BlockingFetcher(FakeFetcher):
    """Hangs on one URL until cancelled, signalling when it got there."""

    def __init__(self, pages, block_on):
        super().__init__(pages)
        self.block_on = block_on
        self.blocked = asyncio.Event()

    async def fetch(self, url):
        if url == self.block_on:
            self.blocked.set()
            await asyncio.Event().wait()
        return await super().fetch(url)


class FailingDiscoverer(LinkDiscoverer):
    async def discover_links(self, url, site_url):
        if site_url == SITE:
            raise RuntimeError("site exploded")
        return await super().discover_links(url, site_url)


def two_page_site(fetcher):
    fetcher.pages.update({
        SITE: (200, html_page("A", "test alpha", links=("/b",))),
        SITE + "/b": (200, html_page("B", "test beta", links=("/",))),
        OTHER_SITE: (200, html_page("Other", "other home")),
    })


@pytest.fixture
def orchestrator(config, database, indexer, discoverer, monitor):
    return CrawlOrchestrator(config, database, indexer, discoverer, monitor)


def crawl(orchestrator):
    async def go():
        assert orchestrator.start_crawl()
        await orchestrator.wait()
    asyncio.run(go())


def test_crawl_two_linked_pages(orchestrator, fetcher, store):
    two_page_site(fetcher)

    crawl(orchestrator)

    site = asyncio.run(store.get_site_by_url(SITE))
    assert site.status == SiteStatus.INDEXED
    assert asyncio.run(store.count_pages(site.id)) == 2

    [lemma] = asyncio.run(store.get_lemmas('test', site.id))
    assert lemma.frequency == 2
    entries = asyncio.run(store.get_indexes_by_lemma(lemma.id))
    assert [e.weight for e in entries] == [1.0, 1.0]
    assert not orchestrator.is_crawl_running()


def test_every_configured_site_is_processed(orchestrator, fetcher, store):
    two_page_site(fetcher)

    crawl(orchestrator)

    statuses = {s.url: s.status for s in asyncio.run(store.list_sites())}
    assert statuses == {SITE: SiteStatus.INDEXED, OTHER_SITE: SiteStatus.INDEXED}


def test_start_is_rejected_while_running(orchestrator, fetcher):
    two_page_site(fetcher)

    async def go():
        assert orchestrator.start_crawl()
        assert orchestrator.is_crawl_running()
        assert not orchestrator.start_crawl()
        await orchestrator.wait()

    asyncio.run(go())
    assert not orchestrator.is_crawl_running()


def test_stop_without_run_is_rejected(orchestrator):
    assert not orchestrator.stop_crawl()


def test_stop_marks_unfinished_sites_failed(config, database, parser, normalizer, monitor, store):
    fetcher = BlockingFetcher({OTHER_SITE: (200, html_page("Other", "other home"))}, block_on=SITE)
    indexer = PageIndexer(database, fetcher, normalizer, config.sites, monitor)
    discoverer = LinkDiscoverer(fetcher, parser, delay=0)
    orchestrator = CrawlOrchestrator(config, database, indexer, discoverer, monitor)

    async def go():
        orchestrator.start_crawl()
        await fetcher.blocked.wait()
        assert orchestrator.stop_crawl()
        await orchestrator.wait()

    asyncio.run(go())

    sites = {s.url: s for s in asyncio.run(store.list_sites())}
    for url in (SITE, OTHER_SITE):
        assert sites[url].status == SiteStatus.FAILED
        assert sites[url].last_error == STOPPED_BY_USER
    assert OTHER_SITE not in fetcher.calls
    assert not orchestrator.is_crawl_running()
    assert not orchestrator.token.cancelled


def test_site_failure_does_not_affect_other_sites(config, database, fetcher, parser, indexer,
                                                  monitor, store):
    two_page_site(fetcher)
    discoverer = FailingDiscoverer(fetcher, parser, delay=0)
    orchestrator = CrawlOrchestrator(config, database, indexer, discoverer, monitor)

    crawl(orchestrator)

    sites = {s.url: s for s in asyncio.run(store.list_sites())}
    assert sites[SITE].status == SiteStatus.FAILED
    assert sites[SITE].last_error == "site exploded"
    assert sites[OTHER_SITE].status == SiteStatus.INDEXED


def test_parallel_sites(config, database, indexer, discoverer, fetcher, monitor, store):
    two_page_site(fetcher)
    config.crawler.parallel_sites = True
    orchestrator = CrawlOrchestrator(config, database, indexer, discoverer, monitor)

    crawl(orchestrator)

    assert {s.status for s in asyncio.run(store.list_sites())} == {SiteStatus.INDEXED}
    assert asyncio.run(store.count_pages()) == 3


def test_visited_set_does_not_leak_between_runs(orchestrator, fetcher, store):
    two_page_site(fetcher)

    crawl(orchestrator)
    crawl(orchestrator)

    assert fetcher.calls.count(SITE + "/b") >= 4
    assert asyncio.run(store.count_pages()) == 3


def test_index_single_page_rejects_foreign_url(orchestrator):
    with pytest.raises(SiteNotFoundError):
        asyncio.run(orchestrator.index_single_page("http://elsewhere.local/page"))


def test_index_single_page(orchestrator, fetcher, store):
    fetcher.pages[SITE + "/solo"] = (200, html_page("Solo", "lonely page"))

    page = asyncio.run(orchestrator.index_single_page(SITE + "/solo"))

    assert page.path == "/solo"
    assert orchestrator.resolve_site_for_url(SITE + "/solo") == SITE


def test_reconcile_interrupted_sites(orchestrator, database, store):
    asyncio.run(store.create_site(SITE, "Test"))

    assert asyncio.run(orchestrator.reconcile_interrupted_sites()) == 1

    site = asyncio.run(store.get_site_by_url(SITE))
    assert site.status == SiteStatus.FAILED
    assert site.last_error == INTERRUPTED


def test_stopped_run_leaves_nothing_running(config, database, parser, normalizer, monitor, store):
    fetcher = BlockingFetcher({
        SITE: (200, html_page("Home", "root", links=("/a", "/b"))),
        SITE + "/a": (200, html_page("A", "page a", links=("/a1",))),
        SITE + "/a1": (200, html_page("A1", "page a1", links=("/a2",))),
        SITE + "/a2": (200, html_page("A2", "page a2")),
    }, block_on=SITE + "/b")
    indexer = PageIndexer(database, fetcher, normalizer, config.sites, monitor)
    discoverer = LinkDiscoverer(fetcher, parser, delay=0)
    orchestrator = CrawlOrchestrator(config, database, indexer, discoverer, monitor)

    async def go():
        orchestrator.start_crawl()
        await fetcher.blocked.wait()
        orchestrator.stop_crawl()
        await orchestrator.wait()

        calls, pages = list(fetcher.calls), await store.count_pages()
        await asyncio.sleep(0.2)
        assert fetcher.calls == calls
        assert await store.count_pages() == pages
        assert asyncio.all_tasks() == {asyncio.current_task()}

    asyncio.run(go())
