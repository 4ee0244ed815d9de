"""
Entities persisted by the store.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class SiteStatus(Enum):
    """Crawl status of a site."""
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


@dataclass
class Site:
    id: int
    url: str
    name: str
    status: SiteStatus
    status_time: datetime
    last_error: Optional[str] = None


@dataclass
class Page:
    """A fetched page; `path` is the URL suffix relative to the site's base."""
    id: int
    site_id: int
    path: str
    code: int
    content: str


@dataclass
class Lemma:
    """A normalized word form; `frequency` counts pages of the site containing it."""
    id: int
    site_id: int
    lemma: str
    frequency: int


@dataclass
class IndexEntry:
    """Weighted Page<->Lemma edge; `weight` is the lemma's occurrence count on the page."""
    id: int
    page_id: int
    lemma_id: int
    weight: float
