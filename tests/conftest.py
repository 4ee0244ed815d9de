import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from searchengine.crawler.fetcher import FetchResult
from searchengine.crawler.links import LinkDiscoverer
from searchengine.crawler.parser import ContentParser
from searchengine.indexing.morphology import MorphologyAnalyzer
from searchengine.indexing.normalizer import TextNormalizer
from searchengine.indexing.pipeline import PageIndexer
from searchengine.storage.database import DatabaseManager
from searchengine.utils.config import DatabaseConfig, SiteConfig, build_config
from searchengine.utils.monitoring import CrawlMonitor

SITE = "http://test.local"
OTHER_SITE = "http://other.local"


class FakeMorphology(MorphologyAnalyzer):
    """Lower-cases, drops a plural 's' and knows a handful of function words."""

    FUNCTION_WORD_TAGS = frozenset({'CC', 'IN'})
    FUNCTION_WORDS = {'and': 'CC', 'or': 'CC', 'in': 'IN', 'on': 'IN', 'of': 'IN'}

    def normal_forms(self, word: str) -> List[str]:
        word = word.lower()
        if len(word) > 3 and word.endswith('s'):
            return [word[:-1]]
        return [word]

    def part_of_speech(self, word: str) -> str:
        return self.FUNCTION_WORDS.get(word.lower(), 'NN')


class FakeFetcher:
    """Serves canned pages; unknown URLs answer 404. Status 0 means a transport failure."""

    def __init__(self, pages: Optional[Dict[str, Tuple[int, str]]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    async def start(self):
        pass

    async def close(self):
        pass

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        status, content = self.pages.get(url, (404, "<html><body>Not found</body></html>"))
        if status == 0:
            return FetchResult(url=url, status_code=0, error="Client error: connection refused")
        return FetchResult(url=url, status_code=status, content=content, content_type='text/html')


def html_page(title: str, *paragraphs: str, links: Tuple[str, ...] = ()) -> str:
    body = ''.join(f"<p>{text}</p>" for text in paragraphs)
    anchors = ''.join(f'<a href="{href}">link</a>' for href in links)
    return f"<html><head><title>{title}</title></head><body>{body}{anchors}</body></html>"


@pytest.fixture
def monitor():
    return CrawlMonitor()


@pytest.fixture
def database():
    manager = DatabaseManager(DatabaseConfig(path=':memory:'))
    asyncio.run(manager.initialize())
    yield manager
    asyncio.run(manager.close())


@pytest.fixture
def store(database):
    return database.store


@pytest.fixture
def parser():
    return ContentParser()


@pytest.fixture
def normalizer(parser):
    return TextNormalizer(FakeMorphology(), parser)


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def sites():
    return [SiteConfig(url=SITE, name="Test"), SiteConfig(url=OTHER_SITE, name="Other")]


@pytest.fixture
def indexer(database, fetcher, normalizer, sites, monitor):
    return PageIndexer(database, fetcher, normalizer, sites, monitor)


@pytest.fixture
def discoverer(fetcher, parser):
    return LinkDiscoverer(fetcher, parser, delay=0)


@pytest.fixture
def config():
    return build_config({
        'sites': [{'url': SITE, 'name': 'Test'}, {'url': OTHER_SITE, 'name': 'Other'}],
        'crawler': {'link_delay': 0},
        'database': {'path': ':memory:'},
    })
