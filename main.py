#!/usr/bin/env python3
"""
Main entry point for the site search engine.
"""

import asyncio
import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from searchengine import __version__
from searchengine.crawler.fetcher import WebFetcher
from searchengine.crawler.links import LinkDiscoverer
from searchengine.crawler.orchestrator import CrawlOrchestrator, SiteNotFoundError
from searchengine.crawler.parser import ContentParser
from searchengine.indexing.morphology import MorphologyLoadError, NltkMorphology
from searchengine.indexing.normalizer import TextNormalizer
from searchengine.indexing.pipeline import FetchFailedError, PageIndexer
from searchengine.search.engine import SearchEngine
from searchengine.services.statistics import StatisticsService
from searchengine.storage.database import DatabaseManager, StorageError
from searchengine.utils.config import Config, load_config
from searchengine.utils.logger import setup_logging, log_system_info
from searchengine.utils.monitoring import CrawlMonitor, initialize_monitoring


class SearchEngineApp:
    """Wires the crawler, the index and the search engine together."""

    def __init__(self, config: Config):
        self.config = config
        self.logger = logging.getLogger(__name__)

        self.database: Optional[DatabaseManager] = None
        self.fetcher: Optional[WebFetcher] = None
        self.orchestrator: Optional[CrawlOrchestrator] = None
        self.search_engine: Optional[SearchEngine] = None
        self.statistics: Optional[StatisticsService] = None
        self.monitor: Optional[CrawlMonitor] = None

    async def initialize(self):
        """Build every component. Raises MorphologyLoadError or StorageError."""
        monitor = initialize_monitoring(self.config.monitoring.metrics_enabled,
                                        self.config.monitoring.prometheus_port)
        self.monitor = monitor

        self.database = DatabaseManager(self.config.database)
        await self.database.initialize()

        crawler = self.config.crawler
        self.fetcher = WebFetcher(
            user_agent=crawler.user_agent,
            request_timeout=crawler.request_timeout,
            max_concurrent_requests=crawler.max_concurrent_requests,
            follow_redirects=crawler.follow_redirects,
            monitor=monitor,
        )
        await self.fetcher.start()

        parser = ContentParser()
        normalizer = TextNormalizer(NltkMorphology(), parser)
        indexer = PageIndexer(self.database, self.fetcher, normalizer, self.config.sites, monitor)
        discoverer = LinkDiscoverer(self.fetcher, parser, crawler.link_delay)

        self.orchestrator = CrawlOrchestrator(self.config, self.database, indexer, discoverer, monitor)
        self.search_engine = SearchEngine(self.database, normalizer, self.config.search, parser, monitor)
        self.statistics = StatisticsService(self.database, self.orchestrator)

    def setup_signal_handlers(self):
        """Ctrl-C and SIGTERM request a cooperative stop of the running crawl."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}, stopping crawl...")
            self.orchestrator.stop_crawl()

        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, signal_handler, signum)

    async def crawl(self) -> int:
        await self.orchestrator.reconcile_interrupted_sites()
        self.setup_signal_handlers()

        self.logger.info("=== CRAWL STARTING ===")
        for site in self.config.sites:
            self.logger.info(f"Site: {site.url} ({site.name})")

        self.orchestrator.start_crawl()
        await self.orchestrator.wait()

        stats = await self.statistics.get_statistics()
        print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
        self.logger.info(f"Crawl metrics: {self.monitor.get_summary()}")
        self.logger.info("=== CRAWL FINISHED ===")
        return 0

    async def index_page(self, url: str) -> int:
        try:
            page = await self.orchestrator.index_single_page(url)
        except (SiteNotFoundError, FetchFailedError) as e:
            print(json.dumps({'result': False, 'error': str(e)}, ensure_ascii=False))
            return 1
        print(json.dumps({'result': True, 'indexed': page is not None}))
        return 0

    async def search(self, query: str, site: Optional[str], offset: int, limit: Optional[int]) -> int:
        results = await self.search_engine.search(query, site, offset, limit)
        print(json.dumps(results.to_dict(), indent=2, ensure_ascii=False))
        return 0 if results.ok else 1

    async def stats(self) -> int:
        stats = await self.statistics.get_statistics()
        print(json.dumps(stats.to_dict(), indent=2, ensure_ascii=False))
        return 0

    async def close(self):
        if self.fetcher:
            await self.fetcher.close()
        if self.database:
            await self.database.close()


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    setup_logging(config.logging)
    log_system_info()

    app = SearchEngineApp(config)
    try:
        await app.initialize()

        if args.command == 'crawl':
            return await app.crawl()
        if args.command == 'index-page':
            return await app.index_page(args.url)
        if args.command == 'search':
            return await app.search(args.query, args.site, args.offset, args.limit)
        return await app.stats()

    except MorphologyLoadError as e:
        logging.getLogger(__name__).critical(f"Cannot start without morphology data: {e}")
        return 1
    except StorageError as e:
        logging.getLogger(__name__).error(f"Storage error: {e}", exc_info=True)
        return 1
    finally:
        await app.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Site Search Engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py crawl                             # Crawl every configured site
  python main.py index-page https://example.com/a  # (Re)index one page
  python main.py search "query words" --limit 10   # Search the whole index
  python main.py stats                             # Show index statistics
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Site Search Engine {__version__}'
    )

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('crawl', help='Re-crawl and re-index every configured site')

    index_page = commands.add_parser('index-page', help='Index or re-index a single page')
    index_page.add_argument('url', help='Absolute URL inside one of the configured sites')

    search = commands.add_parser('search', help='Run a ranked keyword query')
    search.add_argument('query', help='Free-text query')
    search.add_argument('--site', help='Restrict the search to one configured site URL')
    search.add_argument('--offset', type=int, default=0, help='Results to skip (default: 0)')
    search.add_argument('--limit', type=int, help='Maximum results to return')

    commands.add_parser('stats', help='Show per-site and total statistics')
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    if not Path(args.config).exists():
        print(f"Error: Configuration file '{args.config}' not found.")
        print("Please create a config.yaml file or specify a different path with --config")
        return 1

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1
    except ValueError as e:
        print(f"Invalid configuration: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
