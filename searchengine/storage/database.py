"""
Relational store for sites, pages, lemmas and index entries.

All lemma frequency bookkeeping goes through `_add_occurrence` and
`_remove_occurrence`. Composite operations (store/remove/replace a page) run
in a single transaction and contain no await points, so concurrent crawl
tasks on the event loop never interleave inside them.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Set

from .models import IndexEntry, Lemma, Page, Site, SiteStatus
from ..utils.config import DatabaseConfig, SiteConfig

# Keeps IN (...) lists under SQLite's host parameter limit
_CHUNK_SIZE = 500


class StorageError(Exception):
    """Custom exception for store operations."""
    pass


class StorageBackend:
    """Abstract base class for storage backends."""

    async def initialize(self):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    async def reset(self):
        """Delete every index entry, lemma, page and site."""
        raise NotImplementedError

    async def create_site(self, url: str, name: str) -> Site:
        raise NotImplementedError

    async def update_site(self, site: Site):
        raise NotImplementedError

    async def list_sites(self) -> List[Site]:
        raise NotImplementedError

    async def get_site_by_url(self, url: str) -> Optional[Site]:
        raise NotImplementedError

    async def fail_sites(self, message: str, statuses: Iterable[SiteStatus]) -> int:
        raise NotImplementedError

    async def get_page(self, site_id: int, path: str) -> Optional[Page]:
        raise NotImplementedError

    async def get_pages_by_ids(self, page_ids: Iterable[int]) -> List[Page]:
        raise NotImplementedError

    async def list_page_ids(self, site_id: Optional[int] = None) -> Set[int]:
        raise NotImplementedError

    async def count_pages(self, site_id: Optional[int] = None) -> int:
        raise NotImplementedError

    async def store_page(self, site: Site, path: str, code: int, content: str,
                         lemma_counts: Mapping[str, int]) -> Page:
        raise NotImplementedError

    async def remove_page(self, page: Page):
        raise NotImplementedError

    async def replace_page(self, page: Page, code: int, content: str,
                           lemma_counts: Mapping[str, int]) -> Page:
        raise NotImplementedError

    async def add_occurrence(self, site_id: int, page_id: int, lemma: str, count: int) -> IndexEntry:
        raise NotImplementedError

    async def remove_occurrence(self, entry: IndexEntry):
        raise NotImplementedError

    async def get_lemmas(self, lemma: str, site_id: Optional[int] = None) -> List[Lemma]:
        raise NotImplementedError

    async def count_lemmas(self, site_id: Optional[int] = None) -> int:
        raise NotImplementedError

    async def get_indexes_by_page(self, page_id: int) -> List[IndexEntry]:
        raise NotImplementedError

    async def get_indexes_by_lemma(self, lemma_id: int) -> List[IndexEntry]:
        raise NotImplementedError

    async def get_page_ids_for_lemmas(self, lemma_ids: Iterable[int],
                                      candidate_page_ids: Optional[Set[int]] = None) -> Set[int]:
        raise NotImplementedError

    async def relevance_for_pages(self, page_ids: Iterable[int]) -> Dict[int, float]:
        raise NotImplementedError

    async def get_stats(self) -> Dict[str, int]:
        raise NotImplementedError


def _chunks(values: List[int]) -> Iterator[List[int]]:
    for start in range(0, len(values), _CHUNK_SIZE):
        yield values[start:start + _CHUNK_SIZE]


def _site_from_row(row: sqlite3.Row) -> Site:
    return Site(
        id=row['id'],
        url=row['url'],
        name=row['name'],
        status=SiteStatus(row['status']),
        status_time=datetime.fromisoformat(row['status_time']),
        last_error=row['last_error'],
    )


def _page_from_row(row: sqlite3.Row) -> Page:
    return Page(id=row['id'], site_id=row['site_id'], path=row['path'],
                code=row['code'], content=row['content'])


def _lemma_from_row(row: sqlite3.Row) -> Lemma:
    return Lemma(id=row['id'], site_id=row['site_id'], lemma=row['lemma'],
                 frequency=row['frequency'])


def _index_from_row(row: sqlite3.Row) -> IndexEntry:
    return IndexEntry(id=row['id'], page_id=row['page_id'], lemma_id=row['lemma_id'],
                      weight=row['weight'])


class SQLiteStorageBackend(StorageBackend):
    """SQLite storage backend. `path` may be ':memory:'."""

    def __init__(self, path: str):
        self.path = path
        self.conn: Optional[sqlite3.Connection] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Open the connection and create the schema."""
        try:
            if self.path != ':memory:':
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(self.path, check_same_thread=False, timeout=10.0)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON;")
            if self.path != ':memory:':
                self.conn.execute("PRAGMA journal_mode=WAL;")
            self._create_schema()
            self.logger.info(f"SQLite storage initialized at {self.path}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to initialize SQLite storage: {e}")

    def _create_schema(self):
        with self._transaction() as db:
            db.execute(
                """
            CREATE TABLE IF NOT EXISTS site (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                url TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                status TEXT NOT NULL,
                status_time TIMESTAMP NOT NULL,
                last_error TEXT
            );
            """
            )
            db.execute(
                """
            CREATE TABLE IF NOT EXISTS page (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                site_id INTEGER NOT NULL,
                path TEXT NOT NULL,
                code INTEGER NOT NULL,
                content TEXT NOT NULL,
                UNIQUE(site_id, path),
                FOREIGN KEY (site_id) REFERENCES site(id) ON DELETE CASCADE
            );
            """
            )
            db.execute(
                """
            CREATE TABLE IF NOT EXISTS lemma (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                site_id INTEGER NOT NULL,
                lemma TEXT NOT NULL,
                frequency INTEGER NOT NULL,
                UNIQUE(site_id, lemma),
                FOREIGN KEY (site_id) REFERENCES site(id) ON DELETE CASCADE
            );
            """
            )
            db.execute(
                """
            CREATE TABLE IF NOT EXISTS search_index (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                page_id INTEGER NOT NULL,
                lemma_id INTEGER NOT NULL,
                weight REAL NOT NULL,
                UNIQUE(page_id, lemma_id),
                FOREIGN KEY (page_id) REFERENCES page(id) ON DELETE CASCADE,
                FOREIGN KEY (lemma_id) REFERENCES lemma(id) ON DELETE CASCADE
            );
            """
            )
            db.execute("CREATE INDEX IF NOT EXISTS idx_page_site ON page (site_id);")
            db.execute("CREATE INDEX IF NOT EXISTS idx_lemma_lemma ON lemma (lemma);")
            db.execute("CREATE INDEX IF NOT EXISTS idx_index_lemma ON search_index (lemma_id);")
            db.execute("CREATE INDEX IF NOT EXISTS idx_index_page ON search_index (page_id);")

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Commit on success, roll back and wrap the error otherwise."""
        if self.conn is None:
            raise StorageError("Database not initialized")
        cursor = self.conn.cursor()
        try:
            yield cursor
            self.conn.commit()
        except sqlite3.Error as e:
            self.conn.rollback()
            raise StorageError(str(e)) from e
        except BaseException:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    async def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None
            self.logger.info("SQLite connection closed")

    async def reset(self):
        with self._transaction() as db:
            db.execute("DELETE FROM search_index")
            db.execute("DELETE FROM lemma")
            db.execute("DELETE FROM page")
            db.execute("DELETE FROM site")
        self.logger.info("All indexed data deleted")

    # Sites

    async def create_site(self, url: str, name: str) -> Site:
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO site (url, name, status, status_time, last_error)
                VALUES (?, ?, ?, ?, NULL)
                RETURNING *
                """,
                (url, name, SiteStatus.INDEXING.value, datetime.now().isoformat()),
            )
            return _site_from_row(db.fetchone())

    async def update_site(self, site: Site):
        with self._transaction() as db:
            db.execute(
                "UPDATE site SET status = ?, status_time = ?, last_error = ? WHERE id = ?",
                (site.status.value, site.status_time.isoformat(), site.last_error, site.id),
            )

    async def list_sites(self) -> List[Site]:
        with self._transaction() as db:
            db.execute("SELECT * FROM site ORDER BY id")
            return [_site_from_row(row) for row in db.fetchall()]

    async def get_site_by_url(self, url: str) -> Optional[Site]:
        with self._transaction() as db:
            db.execute("SELECT * FROM site WHERE url = ?", (url,))
            row = db.fetchone()
            return _site_from_row(row) if row else None

    async def fail_sites(self, message: str, statuses: Iterable[SiteStatus]) -> int:
        """Mark every site in one of `statuses` as FAILED with `message`."""
        values = [status.value for status in statuses]
        placeholders = ",".join("?" * len(values))
        with self._transaction() as db:
            db.execute(
                f"UPDATE site SET status = ?, status_time = ?, last_error = ? "
                f"WHERE status IN ({placeholders})",
                (SiteStatus.FAILED.value, datetime.now().isoformat(), message, *values),
            )
            return db.rowcount

    # Pages

    async def get_page(self, site_id: int, path: str) -> Optional[Page]:
        with self._transaction() as db:
            db.execute("SELECT * FROM page WHERE site_id = ? AND path = ?", (site_id, path))
            row = db.fetchone()
            return _page_from_row(row) if row else None

    async def get_pages_by_ids(self, page_ids: Iterable[int]) -> List[Page]:
        pages = []
        with self._transaction() as db:
            for chunk in _chunks(list(page_ids)):
                placeholders = ",".join("?" * len(chunk))
                db.execute(f"SELECT * FROM page WHERE id IN ({placeholders})", chunk)
                pages.extend(_page_from_row(row) for row in db.fetchall())
        return pages

    async def list_page_ids(self, site_id: Optional[int] = None) -> Set[int]:
        with self._transaction() as db:
            if site_id is None:
                db.execute("SELECT id FROM page")
            else:
                db.execute("SELECT id FROM page WHERE site_id = ?", (site_id,))
            return {row['id'] for row in db.fetchall()}

    async def count_pages(self, site_id: Optional[int] = None) -> int:
        with self._transaction() as db:
            if site_id is None:
                db.execute("SELECT COUNT(*) FROM page")
            else:
                db.execute("SELECT COUNT(*) FROM page WHERE site_id = ?", (site_id,))
            return db.fetchone()[0]

    async def store_page(self, site: Site, path: str, code: int, content: str,
                         lemma_counts: Mapping[str, int]) -> Page:
        with self._transaction() as db:
            return self._store_page(db, site, path, code, content, lemma_counts)

    async def remove_page(self, page: Page):
        with self._transaction() as db:
            self._remove_page(db, page)

    async def replace_page(self, page: Page, code: int, content: str,
                           lemma_counts: Mapping[str, int]) -> Page:
        with self._transaction() as db:
            self._remove_page(db, page)
            db.execute("SELECT * FROM site WHERE id = ?", (page.site_id,))
            site = _site_from_row(db.fetchone())
            return self._store_page(db, site, page.path, code, content, lemma_counts)

    def _store_page(self, db: sqlite3.Cursor, site: Site, path: str, code: int,
                    content: str, lemma_counts: Mapping[str, int]) -> Page:
        db.execute(
            "INSERT INTO page (site_id, path, code, content) VALUES (?, ?, ?, ?) RETURNING *",
            (site.id, path, code, content),
        )
        page = _page_from_row(db.fetchone())
        for lemma, count in lemma_counts.items():
            self._add_occurrence(db, site.id, page.id, lemma, count)

        site.status_time = datetime.now()
        db.execute("UPDATE site SET status_time = ? WHERE id = ?",
                   (site.status_time.isoformat(), site.id))
        return page

    def _remove_page(self, db: sqlite3.Cursor, page: Page):
        db.execute("SELECT * FROM search_index WHERE page_id = ?", (page.id,))
        for entry in [_index_from_row(row) for row in db.fetchall()]:
            self._remove_occurrence(db, entry)
        db.execute("DELETE FROM page WHERE id = ?", (page.id,))

    # Index maintenance

    async def add_occurrence(self, site_id: int, page_id: int, lemma: str, count: int) -> IndexEntry:
        with self._transaction() as db:
            return self._add_occurrence(db, site_id, page_id, lemma, count)

    async def remove_occurrence(self, entry: IndexEntry):
        with self._transaction() as db:
            self._remove_occurrence(db, entry)

    def _add_occurrence(self, db: sqlite3.Cursor, site_id: int, page_id: int,
                        lemma: str, count: int) -> IndexEntry:
        """Count one more page containing `lemma` and link it with weight `count`."""
        db.execute(
            """
            INSERT INTO lemma (site_id, lemma, frequency) VALUES (?, ?, 1)
            ON CONFLICT(site_id, lemma) DO UPDATE SET frequency = frequency + 1
            RETURNING id
            """,
            (site_id, lemma),
        )
        lemma_id = db.fetchone()[0]
        db.execute(
            "INSERT INTO search_index (page_id, lemma_id, weight) VALUES (?, ?, ?) RETURNING *",
            (page_id, lemma_id, float(count)),
        )
        return _index_from_row(db.fetchone())

    def _remove_occurrence(self, db: sqlite3.Cursor, entry: IndexEntry):
        """Unlink a page from a lemma; the lemma goes away with its last page."""
        db.execute("DELETE FROM search_index WHERE id = ?", (entry.id,))
        db.execute(
            "UPDATE lemma SET frequency = frequency - 1 WHERE id = ? AND frequency > 0",
            (entry.lemma_id,),
        )
        db.execute("DELETE FROM lemma WHERE id = ? AND frequency <= 0", (entry.lemma_id,))

    # Lemmas and index lookups

    async def get_lemmas(self, lemma: str, site_id: Optional[int] = None) -> List[Lemma]:
        with self._transaction() as db:
            if site_id is None:
                db.execute("SELECT * FROM lemma WHERE lemma = ? ORDER BY id", (lemma,))
            else:
                db.execute("SELECT * FROM lemma WHERE lemma = ? AND site_id = ?", (lemma, site_id))
            return [_lemma_from_row(row) for row in db.fetchall()]

    async def count_lemmas(self, site_id: Optional[int] = None) -> int:
        with self._transaction() as db:
            if site_id is None:
                db.execute("SELECT COUNT(*) FROM lemma")
            else:
                db.execute("SELECT COUNT(*) FROM lemma WHERE site_id = ?", (site_id,))
            return db.fetchone()[0]

    async def get_indexes_by_page(self, page_id: int) -> List[IndexEntry]:
        with self._transaction() as db:
            db.execute("SELECT * FROM search_index WHERE page_id = ? ORDER BY id", (page_id,))
            return [_index_from_row(row) for row in db.fetchall()]

    async def get_indexes_by_lemma(self, lemma_id: int) -> List[IndexEntry]:
        with self._transaction() as db:
            db.execute("SELECT * FROM search_index WHERE lemma_id = ? ORDER BY id", (lemma_id,))
            return [_index_from_row(row) for row in db.fetchall()]

    async def get_page_ids_for_lemmas(self, lemma_ids: Iterable[int],
                                      candidate_page_ids: Optional[Set[int]] = None) -> Set[int]:
        """Pages carrying an index entry for any of `lemma_ids`, limited to the candidates."""
        page_ids: Set[int] = set()
        with self._transaction() as db:
            for chunk in _chunks(list(lemma_ids)):
                placeholders = ",".join("?" * len(chunk))
                db.execute(
                    f"SELECT DISTINCT page_id FROM search_index WHERE lemma_id IN ({placeholders})",
                    chunk,
                )
                page_ids.update(row['page_id'] for row in db.fetchall())
        if candidate_page_ids is not None:
            page_ids &= candidate_page_ids
        return page_ids

    async def relevance_for_pages(self, page_ids: Iterable[int]) -> Dict[int, float]:
        """Sum of index weights per page."""
        relevance: Dict[int, float] = {}
        with self._transaction() as db:
            for chunk in _chunks(list(page_ids)):
                placeholders = ",".join("?" * len(chunk))
                db.execute(
                    f"SELECT page_id, SUM(weight) AS total FROM search_index "
                    f"WHERE page_id IN ({placeholders}) GROUP BY page_id",
                    chunk,
                )
                relevance.update((row['page_id'], row['total']) for row in db.fetchall())
        return relevance

    async def get_stats(self) -> Dict[str, int]:
        with self._transaction() as db:
            stats = {}
            for table in ('site', 'page', 'lemma', 'search_index'):
                db.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = db.fetchone()[0]
            return stats


class DatabaseManager:
    """Main database manager that selects and fronts the storage backend."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.backend: Optional[StorageBackend] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Initialize the appropriate storage backend."""
        backend_type = self.config.type.lower()

        if backend_type == 'sqlite':
            self.backend = SQLiteStorageBackend(self.config.path)
        else:
            raise StorageError(f"Unknown database type: {backend_type}")

        await self.backend.initialize()
        self.logger.info(f"Database manager initialized with {backend_type} backend")

    @property
    def store(self) -> StorageBackend:
        if not self.backend:
            raise StorageError("Database not initialized")
        return self.backend

    async def reset_sites(self, sites: List[SiteConfig]) -> List[Site]:
        """Drop all indexed data and insert a fresh INDEXING row per configured site."""
        await self.store.reset()
        return [await self.store.create_site(site.url, site.name) for site in sites]

    async def fail_interrupted_sites(self, message: str) -> int:
        """Sites left INDEXING by a dead process become FAILED."""
        return await self.store.fail_sites(message, [SiteStatus.INDEXING])

    async def fail_unfinished_sites(self, message: str) -> int:
        """Every site not yet INDEXED becomes FAILED."""
        return await self.store.fail_sites(message, [SiteStatus.INDEXING, SiteStatus.FAILED])

    async def mark_site_indexed(self, site: Site):
        site.status = SiteStatus.INDEXED
        site.status_time = datetime.now()
        await self.store.update_site(site)

    async def mark_site_failed(self, site: Site, reason: str):
        site.status = SiteStatus.FAILED
        site.last_error = reason
        site.status_time = datetime.now()
        await self.store.update_site(site)

    async def get_stats(self) -> Dict[str, int]:
        return await self.store.get_stats()

    async def close(self):
        """Close database connections."""
        if self.backend:
            await self.backend.close()
            self.logger.info("Database connections closed")
