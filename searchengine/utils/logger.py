"""
Logging utilities for the search engine.
"""

import logging
import logging.handlers
import json
import os
import platform
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional
from datetime import datetime, timezone

import psutil

from .config import LoggingConfig


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Context attached by CrawlerLogAdapter
        for key in ('site', 'url', 'event_type'):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags records with the site being crawled."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        kwargs.setdefault('extra', {}).update(self.extra)
        site = self.extra.get('site')
        if site:
            msg = f"[{site}] {msg}"
        return msg, kwargs

    def log_url_event(self, level: int, url: str, message: str, **kwargs):
        """Log a per-URL event."""
        extra = kwargs.pop('extra', {})
        extra['url'] = url
        extra['event_type'] = 'url_event'
        self.log(level, f"{message}: {url}", extra=extra, **kwargs)


class NoiseFilter(logging.Filter):
    """Drops access logs and connection-pool chatter from HTTP libraries."""

    def __init__(self, suppress_modules: Optional[Iterable[str]] = None):
        super().__init__()
        self.suppress_modules = tuple(suppress_modules or ('aiohttp.access', 'urllib3.connectionpool'))

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(self.suppress_modules):
            return False
        return not (record.levelno == logging.DEBUG and 'connection pool' in record.getMessage().lower())


# Libraries whose INFO/DEBUG output drowns the crawl log
QUIET_LOGGERS = ('aiohttp', 'urllib3', 'nltk', 'redis', 'asyncio')


def _rotating_handler(path: Path, level: int, max_bytes: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backups, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, enable_noise_filtering: bool = True) -> logging.Logger:
    """
    Configure the root logger: console at INFO, a rotating file at DEBUG and
    `errors.log` next to it at ERROR.

    Args:
        config: Logging configuration section
        enable_noise_filtering: Drop third-party access and pool logs

    Returns:
        The root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    handlers = [
        console_handler,
        _rotating_handler(log_file, logging.DEBUG, 50 * 1024 * 1024, 5, formatter),
        _rotating_handler(log_file.parent / 'errors.log', logging.ERROR, 10 * 1024 * 1024, 3, formatter),
    ]
    if enable_noise_filtering:
        for handler in handlers[:2]:
            handler.addFilter(NoiseFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging to {log_file} at level {config.level}")
    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """Logger whose records carry crawl context, e.g. site=..."""
    return CrawlerLogAdapter(logging.getLogger(name), extra_context)


def log_system_info():
    """Log host resources once at startup."""
    logger = logging.getLogger(__name__)
    memory = psutil.virtual_memory()

    logger.info(f"Platform: {platform.platform()}, Python {platform.python_version()}")
    logger.info(f"CPU cores: {psutil.cpu_count()}, memory: {memory.total / 1024**3:.1f} GB "
                f"({memory.percent}% used)")
    logger.debug(f"NLTK_DATA: {os.environ.get('NLTK_DATA', 'Not set')}")
