import asyncio

import pytest

from searchengine.crawler.links import belongs_to_site, is_file_link
from conftest import SITE, html_page


@pytest.mark.parametrize("url", [
    "http://test.local/image.JPG",
    "http://test.local/docs/manual.pdf",
    "http://test.local/archive.zip",
    "http://test.local/page?_ga=2.1234",
    "http://test.local/page?x=1&utm_source=mail",
])
def test_file_and_tracking_links_are_skipped(url):
    assert is_file_link(url)


@pytest.mark.parametrize("url", [
    "http://test.local/about",
    "http://test.local/catalog/item?id=3",
    "http://test.local/archive.html",
])
def test_page_links_are_kept(url):
    assert not is_file_link(url)


def test_belongs_to_site():
    assert belongs_to_site("http://test.local/a", SITE)
    assert belongs_to_site("HTTP://TEST.LOCAL/a", SITE)
    assert belongs_to_site("http://test.local", SITE + "/")
    assert belongs_to_site("http://test.local?page=2", SITE)
    assert not belongs_to_site("http://test.local.evil.com/a", SITE)
    assert not belongs_to_site("http://other.local/a", SITE)


def test_discover_links_filters_to_site_pages(discoverer, fetcher):
    fetcher.pages[SITE] = (200, html_page(
        "Home", "hello",
        links=("/about", "/logo.png", "http://other.local/x", "/about#team", "/news?utm_campaign=y"),
    ))

    links = asyncio.run(discoverer.discover_links(SITE, SITE))

    assert links == {"http://test.local/about"}
    assert fetcher.calls == [SITE]


def test_discover_links_on_fetch_failure_is_empty(discoverer, fetcher):
    fetcher.pages[SITE + "/down"] = (0, "")

    assert asyncio.run(discoverer.discover_links(SITE + "/down", SITE)) == set()
    assert asyncio.run(discoverer.discover_links(SITE + "/missing", SITE)) == set()
