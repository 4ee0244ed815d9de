"""
Monitoring and metrics collection for crawling, indexing and search.
"""

import time
import logging
from typing import Dict, Optional, Any

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, start_http_server


class MetricsCollector:
    """Owns the Prometheus registry and metric objects."""

    def __init__(self, prometheus_port: int = 8000):
        self.logger = logging.getLogger(__name__)
        self.prometheus_port = prometheus_port
        self.registry = CollectorRegistry()

        self.pages_fetched = Counter(
            'searchengine_pages_fetched_total',
            'Pages fetched, by HTTP status code',
            ['status_code'],
            registry=self.registry
        )
        self.fetch_errors = Counter(
            'searchengine_fetch_errors_total',
            'Transient fetch failures, by type',
            ['error_type'],
            registry=self.registry
        )
        self.fetch_seconds = Histogram(
            'searchengine_fetch_seconds',
            'Time spent fetching a page',
            registry=self.registry
        )
        self.pages_indexed = Counter(
            'searchengine_pages_indexed_total',
            'Pages written to the index',
            registry=self.registry
        )
        self.indexing_errors = Counter(
            'searchengine_indexing_errors_total',
            'Pages whose indexing raised',
            registry=self.registry
        )
        self.searches = Counter(
            'searchengine_searches_total',
            'Search requests, by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.active_runs = Gauge(
            'searchengine_active_crawl_runs',
            'Crawl runs in progress',
            registry=self.registry
        )

    def start_server(self):
        """Expose the registry over HTTP."""
        try:
            start_http_server(self.prometheus_port, registry=self.registry)
            self.logger.info(f"Prometheus metrics server started on port {self.prometheus_port}")
        except OSError as e:
            self.logger.error(f"Failed to start Prometheus server: {e}")


class CrawlMonitor:
    """High-level monitoring interface used by the crawler and search engine."""

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics or MetricsCollector()
        self.start_time = time.time()
        self.counts: Dict[str, int] = {
            'pages_fetched': 0,
            'fetch_errors': 0,
            'pages_indexed': 0,
            'indexing_errors': 0,
            'searches': 0,
        }

    def record_fetch(self, status_code: int, fetch_time: float):
        self.metrics.pages_fetched.labels(status_code=str(status_code)).inc()
        self.metrics.fetch_seconds.observe(fetch_time)
        self.counts['pages_fetched'] += 1

    def record_fetch_error(self, error_type: str):
        self.metrics.fetch_errors.labels(error_type=error_type).inc()
        self.counts['fetch_errors'] += 1

    def record_page_indexed(self):
        self.metrics.pages_indexed.inc()
        self.counts['pages_indexed'] += 1

    def record_indexing_error(self):
        self.metrics.indexing_errors.inc()
        self.counts['indexing_errors'] += 1

    def record_search(self, outcome: str):
        self.metrics.searches.labels(outcome=outcome).inc()
        self.counts['searches'] += 1

    def run_started(self):
        self.metrics.active_runs.inc()

    def run_finished(self):
        self.metrics.active_runs.dec()

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all counters."""
        runtime = time.time() - self.start_time
        return {
            'runtime_seconds': runtime,
            'counts': dict(self.counts),
            'pages_per_minute': self.counts['pages_indexed'] / (runtime / 60) if runtime > 0 else 0,
        }


_global_monitor: Optional[CrawlMonitor] = None


def initialize_monitoring(enable_server: bool = False, prometheus_port: int = 8000) -> CrawlMonitor:
    """Initialize global monitoring."""
    global _global_monitor

    metrics = MetricsCollector(prometheus_port)
    if enable_server:
        metrics.start_server()
    _global_monitor = CrawlMonitor(metrics)
    return _global_monitor


def get_monitor() -> CrawlMonitor:
    """Get the global monitor, creating a server-less one on first use."""
    global _global_monitor
    if _global_monitor is None:
        _global_monitor = CrawlMonitor()
    return _global_monitor
