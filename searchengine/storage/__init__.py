"""
Storage layer for the search engine.
"""

from .database import DatabaseManager, StorageBackend, SQLiteStorageBackend, StorageError
from .models import IndexEntry, Lemma, Page, Site, SiteStatus

__all__ = [
    'DatabaseManager', 'StorageBackend', 'SQLiteStorageBackend', 'StorageError',
    'IndexEntry', 'Lemma', 'Page', 'Site', 'SiteStatus'
]
