"""
Search and ranking over the lemma index.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Set

from .snippets import SnippetBuilder
from ..crawler.parser import ContentParser
from ..indexing.normalizer import TextNormalizer
from ..storage.database import DatabaseManager
from ..storage.models import Page
from ..utils.config import SearchConfig
from ..utils.monitoring import CrawlMonitor, get_monitor

EMPTY_QUERY = "Empty search query"
NO_MATCHES = "No matches found"

_QUERY_WORD = re.compile(r"[^\W\d_]+")


@dataclass
class SearchResult:
    site: str
    site_name: str
    uri: str
    title: str
    snippet: str
    relevance: float


@dataclass
class SearchResults:
    """`count` is the number of matching pages before pagination."""
    count: int = 0
    results: List[SearchResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error:
            return {'result': False, 'error': self.error}
        return {'result': True, 'count': self.count,
                'data': [asdict(result) for result in self.results]}


@dataclass
class QueryLemma:
    lemma: str
    frequency: int
    lemma_ids: List[int]


@dataclass
class _Match:
    page: Page
    snippet: str
    relevance: float = 0.0


class SearchEngine:
    """
    Ranked keyword search. Query lemmas found on at least the configured
    share of the corpus are ignored; every remaining lemma must be indexed
    on a page for it to match, and the page text must contain the query's
    words in the forms used on that page.
    """

    def __init__(self, database: DatabaseManager, normalizer: TextNormalizer,
                 config: Optional[SearchConfig] = None, parser: Optional[ContentParser] = None,
                 monitor: Optional[CrawlMonitor] = None):
        self.database = database
        self.normalizer = normalizer
        self.config = config or SearchConfig()
        self.parser = parser or normalizer.parser
        self.snippets = SnippetBuilder(self.parser, self.config.snippet_window)
        self.monitor = monitor or get_monitor()
        self.logger = logging.getLogger(__name__)

    async def search(self, query: str, site: Optional[str] = None, offset: int = 0,
                     limit: Optional[int] = None) -> SearchResults:
        if not query or not query.strip():
            self.monitor.record_search('empty_query')
            return SearchResults(error=EMPTY_QUERY)

        if limit is None:
            limit = self.config.default_limit

        site_id = None
        if site:
            site_row = await self.database.store.get_site_by_url(site.strip().rstrip('/'))
            if site_row is None:
                self.logger.info(f"Search restricted to unknown site {site}")
                return self._no_matches()
            site_id = site_row.id

        lemmas = await self.query_lemmas(query, site_id)
        if not lemmas:
            return self._no_matches()

        candidates = await self.database.store.list_page_ids(site_id)
        page_ids = await self.intersect_pages(lemmas, candidates)
        if not page_ids:
            return self._no_matches()

        pages = sorted(await self.database.store.get_pages_by_ids(page_ids), key=lambda p: p.id)
        query_words = _QUERY_WORD.findall(query.casefold())
        matches = await asyncio.to_thread(self._confirm_matches, pages, query_words, len(lemmas) > 1)
        if not matches:
            return self._no_matches()

        relevance = await self.database.store.relevance_for_pages(m.page.id for m in matches)
        for match in matches:
            match.relevance = relevance.get(match.page.id, 0.0)
        matches.sort(key=lambda m: m.relevance, reverse=True)

        offset = max(offset, 0)
        limit = max(limit, 0)
        window = matches[offset:offset + limit]

        sites = {s.id: s for s in await self.database.store.list_sites()}
        results = [
            SearchResult(
                site=sites[m.page.site_id].url,
                site_name=sites[m.page.site_id].name,
                uri=m.page.path,
                title=self.parser.title_of(m.page.content),
                snippet=m.snippet,
                relevance=m.relevance,
            )
            for m in window
        ]
        self.monitor.record_search('found')
        self.logger.debug(f"Query {query!r}: {len(matches)} matches, returning {len(results)}")
        return SearchResults(count=len(matches), results=results)

    async def query_lemmas(self, query: str, site_id: Optional[int] = None) -> List[QueryLemma]:
        """Query lemmas rare enough to discriminate, rarest first."""
        corpus_size = await self.database.store.count_pages(site_id)
        threshold = corpus_size * self.config.frequency_threshold

        lemmas = []
        for form in self.normalizer.normalize(query, markup=False):
            rows = await self.database.store.get_lemmas(form, site_id)
            frequency = sum(row.frequency for row in rows)
            if frequency >= threshold:
                self.logger.debug(f"Dropping too common lemma {form!r} ({frequency}/{corpus_size})")
                continue
            lemmas.append(QueryLemma(form, frequency, [row.id for row in rows]))

        lemmas.sort(key=lambda lemma: lemma.frequency)
        return lemmas

    async def intersect_pages(self, lemmas: List[QueryLemma], candidates: Set[int]) -> Set[int]:
        """Candidate pages carrying an index entry for every lemma."""
        page_ids = candidates
        for lemma in lemmas:
            if not lemma.lemma_ids:
                return set()
            page_ids = await self.database.store.get_page_ids_for_lemmas(lemma.lemma_ids, page_ids)
            if not page_ids:
                break
        return page_ids

    def cognate_phrase(self, words: List[str], query_words: List[str]) -> str:
        """The query rewritten with the word forms found in a page."""
        return ' '.join(self.normalizer.cognate_form_in(words, word) for word in query_words).casefold()

    def _confirm_matches(self, pages: List[Page], query_words: List[str],
                         collapse_duplicates: bool) -> List[_Match]:
        matches = []
        seen_snippets: Set[str] = set()
        for page in pages:
            text = self.parser.visible_text(page.content)
            phrase = self.cognate_phrase(self.normalizer.words(text, markup=False), query_words)
            if phrase not in text.casefold():
                continue

            snippet = self.snippets.build(page.content, phrase)
            if collapse_duplicates and snippet:
                if snippet in seen_snippets:
                    continue
                seen_snippets.add(snippet)
            matches.append(_Match(page=page, snippet=snippet))
        return matches

    def _no_matches(self) -> SearchResults:
        self.monitor.record_search('no_matches')
        return SearchResults(error=NO_MATCHES)
