"""
Query evaluation, ranking and snippets.
"""

from .engine import SearchEngine, SearchResult, SearchResults, EMPTY_QUERY, NO_MATCHES
from .snippets import SnippetBuilder

__all__ = ['SearchEngine', 'SearchResult', 'SearchResults', 'EMPTY_QUERY', 'NO_MATCHES', 'SnippetBuilder']
