"""
Web crawler core components.
"""

from .fetcher import WebFetcher, FetchResult
from .parser import ContentParser, ParsedPage
from .links import LinkDiscoverer
from .tree import CrawlNode, NodeState
from .visited import VisitedSet, RedisVisitedSet, create_visited_set
from .walker import SiteWalker

__all__ = [
    'WebFetcher', 'FetchResult',
    'ContentParser', 'ParsedPage',
    'LinkDiscoverer', 'CrawlNode', 'NodeState',
    'VisitedSet', 'RedisVisitedSet', 'create_visited_set',
    'SiteWalker'
]
