import asyncio

import pytest

from searchengine.storage.database import DatabaseManager, SQLiteStorageBackend, StorageError
from searchengine.storage.models import SiteStatus
from searchengine.utils.config import DatabaseConfig, SiteConfig
from conftest import SITE, OTHER_SITE


def run(coro):
    return asyncio.run(coro)


def assert_frequencies_consistent(store, site_id):
    """Every lemma's frequency equals the number of index entries referencing it."""
    async def check():
        for page_id in await store.list_page_ids(site_id):
            for entry in await store.get_indexes_by_page(page_id):
                assert entry.weight > 0
        with store._transaction() as db:
            db.execute("SELECT id, frequency FROM lemma WHERE site_id = ?", (site_id,))
            rows = db.fetchall()
        for row in rows:
            entries = await store.get_indexes_by_lemma(row['id'])
            assert row['frequency'] == len(entries) > 0
    run(check())


@pytest.fixture
def site(store):
    return run(store.create_site(SITE, "Test"))


def test_create_site_starts_indexing(store, site):
    assert site.status == SiteStatus.INDEXING
    assert site.last_error is None
    assert run(store.get_site_by_url(SITE)).id == site.id


def test_store_page_creates_lemmas_and_weights(store, site):
    page = run(store.store_page(site, "/a", 200, "<p>test test word</p>", {'test': 2, 'word': 1}))

    [lemma] = run(store.get_lemmas('test', site.id))
    assert lemma.frequency == 1
    weights = {e.lemma_id: e.weight for e in run(store.get_indexes_by_page(page.id))}
    assert weights[lemma.id] == 2.0
    assert len(weights) == 2


def test_frequency_counts_pages_not_occurrences(store, site):
    run(store.store_page(site, "/a", 200, "a", {'test': 5}))
    run(store.store_page(site, "/b", 200, "b", {'test': 1, 'other': 1}))

    [lemma] = run(store.get_lemmas('test', site.id))
    assert lemma.frequency == 2
    assert_frequencies_consistent(store, site.id)


def test_lemmas_are_per_site(store, site):
    other = run(store.create_site(OTHER_SITE, "Other"))
    run(store.store_page(site, "/a", 200, "a", {'test': 1}))
    run(store.store_page(other, "/a", 200, "a", {'test': 1}))

    assert len(run(store.get_lemmas('test'))) == 2
    assert run(store.get_lemmas('test', other.id))[0].frequency == 1


def test_remove_page_decrements_and_deletes_lemmas(store, site):
    first = run(store.store_page(site, "/a", 200, "a", {'shared': 1, 'only': 3}))
    run(store.store_page(site, "/b", 200, "b", {'shared': 2}))

    run(store.remove_page(first))

    assert run(store.get_page(site.id, "/a")) is None
    assert run(store.get_lemmas('only', site.id)) == []
    assert run(store.get_lemmas('shared', site.id))[0].frequency == 1
    assert run(store.get_indexes_by_page(first.id)) == []
    assert_frequencies_consistent(store, site.id)


def test_remove_occurrence_never_goes_negative(store, site):
    page = run(store.store_page(site, "/a", 200, "a", {'word': 1}))
    [entry] = run(store.get_indexes_by_page(page.id))

    run(store.remove_occurrence(entry))
    run(store.remove_occurrence(entry))

    assert run(store.get_lemmas('word', site.id)) == []


def test_replace_page_swaps_index_state(store, site):
    page = run(store.store_page(site, "/a", 200, "old", {'old': 1, 'kept': 1}))

    new_page = run(store.replace_page(page, 200, "new", {'new': 2, 'kept': 1}))

    assert new_page.path == "/a"
    assert new_page.content == "new"
    assert run(store.count_pages(site.id)) == 1
    assert run(store.get_lemmas('old', site.id)) == []
    assert run(store.get_lemmas('kept', site.id))[0].frequency == 1
    assert_frequencies_consistent(store, site.id)


def test_duplicate_path_is_rejected_atomically(store, site):
    run(store.store_page(site, "/a", 200, "a", {'word': 1}))

    with pytest.raises(StorageError):
        run(store.store_page(site, "/a", 200, "a again", {'word': 1, 'extra': 1}))

    assert run(store.get_lemmas('word', site.id))[0].frequency == 1
    assert run(store.get_lemmas('extra', site.id)) == []


def test_page_lookups(store, site):
    a = run(store.store_page(site, "/a", 200, "a", {'x': 1, 'y': 2}))
    b = run(store.store_page(site, "/b", 200, "b", {'y': 1}))

    assert run(store.list_page_ids(site.id)) == {a.id, b.id}
    assert {p.path for p in run(store.get_pages_by_ids([a.id, b.id]))} == {"/a", "/b"}

    y_ids = [lemma.id for lemma in run(store.get_lemmas('y', site.id))]
    assert run(store.get_page_ids_for_lemmas(y_ids)) == {a.id, b.id}
    assert run(store.get_page_ids_for_lemmas(y_ids, {b.id})) == {b.id}

    assert run(store.relevance_for_pages([a.id, b.id])) == {a.id: 3.0, b.id: 1.0}


def test_reset_deletes_everything(store, site):
    run(store.store_page(site, "/a", 200, "a", {'x': 1}))

    run(store.reset())

    assert run(store.get_stats()) == {'site': 0, 'page': 0, 'lemma': 0, 'search_index': 0}


def test_fail_sites_only_touches_given_statuses(database, store, site):
    other = run(store.create_site(OTHER_SITE, "Other"))
    run(database.mark_site_indexed(other))

    assert run(database.fail_interrupted_sites("interrupted")) == 1

    sites = {s.url: s for s in run(store.list_sites())}
    assert sites[SITE].status == SiteStatus.FAILED
    assert sites[SITE].last_error == "interrupted"
    assert sites[OTHER_SITE].status == SiteStatus.INDEXED


def test_reset_sites_recreates_configured_sites(database, store, site):
    run(store.store_page(site, "/a", 200, "a", {'x': 1}))

    sites = run(database.reset_sites([SiteConfig(OTHER_SITE, "Other")]))

    assert [s.url for s in sites] == [OTHER_SITE]
    assert run(store.count_pages()) == 0
    assert all(s.status == SiteStatus.INDEXING for s in run(store.list_sites()))


def test_uninitialized_store_raises():
    with pytest.raises(StorageError):
        DatabaseManager(DatabaseConfig(path=':memory:')).store
    with pytest.raises(StorageError):
        run(SQLiteStorageBackend(':memory:').list_sites())


def test_unknown_backend_type_raises():
    with pytest.raises(StorageError):
        run(DatabaseManager(DatabaseConfig(type='cassandra')).initialize())
