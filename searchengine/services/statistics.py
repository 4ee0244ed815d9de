"""
Read-only statistics over the index and the crawl state.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from ..crawler.orchestrator import CrawlOrchestrator
from ..storage.database import DatabaseManager


@dataclass
class TotalStatistics:
    sites: int = 0
    pages: int = 0
    lemmas: int = 0
    indexing: bool = False


@dataclass
class SiteStatistics:
    url: str
    name: str
    status: str
    status_time: int
    error: Optional[str]
    pages: int
    lemmas: int


@dataclass
class Statistics:
    total: TotalStatistics = field(default_factory=TotalStatistics)
    detailed: List[SiteStatistics] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'result': True, 'statistics': asdict(self)}


class StatisticsService:
    """Per-site status and counts plus corpus totals."""

    def __init__(self, database: DatabaseManager, orchestrator: Optional[CrawlOrchestrator] = None):
        self.database = database
        self.orchestrator = orchestrator
        self.logger = logging.getLogger(__name__)

    async def get_statistics(self) -> Statistics:
        store = self.database.store
        sites = await store.list_sites()

        total = TotalStatistics(
            sites=len(sites),
            pages=await store.count_pages(),
            lemmas=await store.count_lemmas(),
            indexing=self.orchestrator.is_crawl_running() if self.orchestrator else False,
        )

        detailed = []
        for site in sites:
            detailed.append(SiteStatistics(
                url=site.url,
                name=site.name,
                status=site.status.value,
                status_time=int(site.status_time.timestamp() * 1000),
                error=site.last_error,
                pages=await store.count_pages(site.id),
                lemmas=await store.count_lemmas(site.id),
            ))

        self.logger.debug(f"Statistics: {total.sites} sites, {total.pages} pages, {total.lemmas} lemmas")
        return Statistics(total=total, detailed=detailed)
