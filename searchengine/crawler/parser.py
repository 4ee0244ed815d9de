"""
HTML parser for extracting titles, visible text and links.
"""

import re
import logging
from typing import List
from urllib.parse import urljoin, urlparse, urlunparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment, NavigableString

# Elements whose content never counts as visible page text
NON_TEXT_TAGS = ['head', 'meta', 'script', 'noscript', 'img', 'style', 'form', 'title', 'template', 'svg']

_WHITESPACE = re.compile(r'\s+')


@dataclass
class ParsedPage:
    """Container for parsed web page content."""
    url: str
    title: str = ""
    text: str = ""
    links: List[str] = field(default_factory=list)


def make_soup(html_content: str) -> BeautifulSoup:
    return BeautifulSoup(html_content or "", 'lxml')


def strip_non_text(soup: BeautifulSoup) -> BeautifulSoup:
    """Remove markup that carries no visible text, in place."""
    for element in soup(NON_TEXT_TAGS):
        element.extract()
    for element in soup.find_all(attrs={'hidden': True}):
        element.extract()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    return soup


def clean_text(text: str) -> str:
    """Collapse runs of whitespace."""
    if not text:
        return ""
    return _WHITESPACE.sub(' ', text).strip()


class ContentParser:
    """
    Parses HTML content to extract the title, visible text and outbound links.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def parse(self, url: str, html_content: str) -> ParsedPage:
        """
        Parse HTML content.

        Args:
            url: The URL of the page, used to resolve relative links
            html_content: Raw HTML content

        Returns:
            ParsedPage; empty apart from the URL if the markup cannot be parsed
        """
        try:
            soup = make_soup(html_content)
            parsed = ParsedPage(url=url, title=self.extract_title(soup))
            parsed.links = self._extract_links(soup, url)
            parsed.text = clean_text(strip_non_text(soup).get_text(separator=' '))

            self.logger.debug(f"Parsed {url}: {len(parsed.text)} chars, {len(parsed.links)} links")
            return parsed

        except (ValueError, TypeError, AttributeError) as e:
            self.logger.warning(f"Error parsing content from {url}: {e}")
            return ParsedPage(url=url)

    def extract_title(self, soup: BeautifulSoup) -> str:
        title_tag = soup.find('title')
        return clean_text(title_tag.get_text()) if title_tag else ""

    def title_of(self, html_content: str) -> str:
        return self.extract_title(make_soup(html_content))

    def visible_text(self, html_content: str) -> str:
        """Text a reader would see, without script/style/form/title and similar content."""
        return clean_text(strip_non_text(make_soup(html_content)).get_text(separator=' '))

    def own_texts(self, html_content: str) -> List[str]:
        """
        Own text of every element in the body, in document order. Text held by
        child elements belongs to the child, not the parent.
        """
        soup = strip_non_text(make_soup(html_content))
        root = soup.body or soup
        texts = []
        for element in [root] + root.find_all(True):
            own = ' '.join(
                str(child) for child in element.children
                if isinstance(child, NavigableString) and not isinstance(child, Comment)
            )
            own = clean_text(own)
            if own:
                texts.append(own)
        return texts

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract absolute, fragment-free links from anchors in the body."""
        links = []
        seen = set()
        root = soup.body or soup

        for link in root.find_all('a', href=True):
            href = link['href'].strip()
            if not href or href.startswith(('#', 'mailto:', 'tel:', 'javascript:')):
                continue

            normalized_url = normalize_url(urljoin(base_url, href))
            if normalized_url not in seen:
                seen.add(normalized_url)
                links.append(normalized_url)

        return links


def normalize_url(url: str) -> str:
    """Lower-case the host and drop the fragment."""
    try:
        parsed = urlparse(url)
        return urlunparse((
            parsed.scheme,
            parsed.netloc.lower(),
            parsed.path,
            parsed.params,
            parsed.query,
            ''
        ))
    except ValueError:
        return url
