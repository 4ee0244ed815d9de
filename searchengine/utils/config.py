"""
Configuration management for the search engine.
"""

import yaml
import logging
from pathlib import Path
from typing import Dict, List, Any, Optional
from dataclasses import dataclass, field


@dataclass
class SiteConfig:
    """A crawl root: base URL plus display name."""
    url: str
    name: str

    def __post_init__(self):
        self.url = self.url.strip().rstrip('/')


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    user_agent: str = "SearchEngineBot/1.0"
    request_timeout: int = 30
    max_concurrent_requests: int = 10
    link_delay: float = 0.15
    follow_redirects: bool = True
    parallel_sites: bool = False


@dataclass
class DatabaseConfig:
    """Configuration for the relational store."""
    type: str = "sqlite"
    path: str = "data/searchengine.db"


@dataclass
class RedisConfig:
    """Configuration for Redis (optional home of the visited-URL set)."""
    enabled: bool = False
    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    visited_key_prefix: str = "searchengine:visited"


@dataclass
class SearchConfig:
    """Configuration for ranking and snippets."""
    frequency_threshold: float = 0.9
    snippet_window: int = 30
    default_limit: int = 20


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = "logs/searchengine.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    sites: List[SiteConfig]
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


def build_config(config_data: Dict[str, Any]) -> Config:
    """Build a Config from an already parsed mapping."""
    sites = [SiteConfig(**site) for site in config_data.get('sites') or []]
    return Config(
        sites=sites,
        crawler=CrawlerConfig(**config_data.get('crawler', {})),
        database=DatabaseConfig(**config_data.get('database', {})),
        redis=RedisConfig(**config_data.get('redis', {})),
        search=SearchConfig(**config_data.get('search', {})),
        logging=LoggingConfig(**config_data.get('logging', {})),
        monitoring=MonitoringConfig(**config_data.get('monitoring', {})),
    )


def validate_config(config: Config):
    """Validate configuration values, raising ValueError on the first problem."""
    if not config.sites:
        raise ValueError("At least one site must be configured")

    seen = set()
    for site in config.sites:
        if not site.url.startswith(('http://', 'https://')):
            raise ValueError(f"Site URL must be http(s): {site.url}")
        if site.url in seen:
            raise ValueError(f"Duplicate site URL: {site.url}")
        seen.add(site.url)

    if config.crawler.link_delay < 0:
        raise ValueError("link_delay must be non-negative")

    if config.crawler.max_concurrent_requests < 1:
        raise ValueError("max_concurrent_requests must be at least 1")

    if config.crawler.request_timeout < 1:
        raise ValueError("request_timeout must be at least 1")

    if config.database.type != 'sqlite':
        raise ValueError("Database type must be 'sqlite'")

    if not 0 < config.search.frequency_threshold <= 1:
        raise ValueError("frequency_threshold must be in (0, 1]")

    if config.search.snippet_window < 0:
        raise ValueError("snippet_window must be non-negative")

    if config.search.default_limit < 1:
        raise ValueError("default_limit must be at least 1")

    logging.getLogger(__name__).info("Configuration validation passed")


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as file:
            config_data = yaml.safe_load(file) or {}

        config = build_config(config_data)
        validate_config(config)
        self._config = config
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


# Global config manager instance
config_manager = ConfigManager()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config_manager.config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    global config_manager
    config_manager = ConfigManager(config_path)
    return config_manager.load_config()
