import pytest

from movie_trends.aggregator import SearchAggregator
from movie_trends.database import Query
from movie_trends.deduplicator import DuplicateReconciler, choose_canonical, merged_count
from movie_trends.errors import (
    DocumentNotFound,
    NotFound,
    ReconciliationPartialFailure,
    TransientRemoteError,
)
from movie_trends.models import TrendAggregate

COLLECTION = "trending_searches"


@pytest.fixture
def reconciler(store, executor, clock):
    return DuplicateReconciler(store, executor, collection=COLLECTION, clock=clock)


async def seed(store, movie_id, count, terms, **extra):
    return await store.create_document(
        COLLECTION,
        {"movie_id": movie_id, "count": count, "search_terms": terms, "title": f"Movie {movie_id}", **extra},
    )


async def rows_for(store, movie_id):
    return await store.list_documents(COLLECTION, [Query.equal("movie_id", movie_id)])


@pytest.mark.asyncio
async def test_merges_fragmented_aggregates(store, reconciler):
    await seed(store, 42, 3, ["batman"])
    await seed(store, 42, 1, ["dark knight"])
    newest = await seed(store, 42, 2, ["batman", "joker"])
    await seed(store, 7, 5, ["heat"])

    result = await reconciler.reconcile()

    assert result.duplicate_groups_found == 1
    assert result.records_removed == 2

    rows = await rows_for(store, 42)
    assert len(rows) == 1
    survivor = rows[0]
    assert survivor["id"] == newest["id"]
    assert survivor["count"] == 6
    assert set(survivor["search_terms"]) == {"batman", "dark knight", "joker"}
    assert survivor["last_search_term"] == "joker"

    untouched = await rows_for(store, 7)
    assert untouched[0]["count"] == 5
    assert untouched[0]["updated_at"] == untouched[0]["created_at"]


@pytest.mark.asyncio
async def test_second_run_is_a_no_op(store, reconciler):
    await seed(store, 42, 3, ["batman"])
    await seed(store, 42, 1, ["dark knight"])

    await reconciler.reconcile()
    before = await rows_for(store, 42)

    again = await reconciler.reconcile()

    assert again.duplicate_groups_found == 0
    assert again.records_removed == 0
    assert await rows_for(store, 42) == before


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "first, second, expected_terms",
    [
        ("batman", "dark knight", ["batman", "dark knight"]),
        ("batman", "batman", ["batman"]),
    ],
)
async def test_fragmented_record_search_reconciles_to_one(store, executor, clock, reconciler, make_movie,
                                                          monkeypatch, first, second, expected_terms):
    aggregator = SearchAggregator(store, executor, collection=COLLECTION, clock=clock)

    # force both searches down the "not found" branch, as two racing writers would be
    async def never_found(movie_id):
        raise NotFound(f"No aggregate for movie {movie_id}")

    monkeypatch.setattr(aggregator, "_find_aggregate", never_found)
    await aggregator.record_search(first, make_movie())
    await aggregator.record_search(second, make_movie())
    assert len(await rows_for(store, 42)) == 2

    await reconciler.reconcile()

    rows = await rows_for(store, 42)
    assert len(rows) == 1
    assert rows[0]["count"] == 2
    assert rows[0]["search_terms"] == expected_terms


def test_canonical_is_latest_update_then_lowest_id():
    older = TrendAggregate(id="b", movie_id=1, created_at="2024-01-01T00:00:00+00:00")
    newer = TrendAggregate(id="c", movie_id=1, created_at="2024-01-01T00:00:00+00:00",
                           updated_at="2024-01-02T00:00:00+00:00")
    assert choose_canonical([older, newer]).id == "c"

    tie_a = TrendAggregate(id="z", movie_id=1, created_at="2024-01-01T00:00:00+00:00")
    tie_b = TrendAggregate(id="a", movie_id=1, created_at="2024-01-01T00:00:00+00:00")
    assert choose_canonical([tie_a, tie_b]).id == "a"


def test_merged_count_skips_already_absorbed_members():
    canonical = TrendAggregate(id="x", movie_id=1, count=6, merged_ids=["y", "z"])
    leftover = TrendAggregate(id="y", movie_id=1, count=1)
    fresh = TrendAggregate(id="w", movie_id=1, count=2)
    assert merged_count([canonical, leftover, fresh]) == 8


@pytest.mark.asyncio
async def test_rerun_after_interrupted_deletes_does_not_double_count(store, reconciler, monkeypatch):
    await seed(store, 42, 3, ["batman"])
    await seed(store, 42, 1, ["dark knight"])
    await seed(store, 42, 2, ["joker"])

    async def broken_delete(collection, document_id):
        raise TransientRemoteError("connection reset")

    original_delete = store.delete_document
    monkeypatch.setattr(store, "delete_document", broken_delete)

    with pytest.raises(ReconciliationPartialFailure) as info:
        await reconciler.reconcile()
    assert info.value.duplicate_groups_found == 0
    assert info.value.records_removed == 0
    assert len(await rows_for(store, 42)) == 3

    monkeypatch.setattr(store, "delete_document", original_delete)
    result = await reconciler.reconcile()

    assert result.records_removed == 2
    rows = await rows_for(store, 42)
    assert len(rows) == 1
    assert rows[0]["count"] == 6


@pytest.mark.asyncio
async def test_partial_failure_keeps_completed_groups(store, reconciler, monkeypatch):
    await seed(store, 1, 1, ["a"])
    await seed(store, 1, 1, ["b"])
    await seed(store, 2, 1, ["c"])
    second = await seed(store, 2, 1, ["d"])

    original_update = store.update_document

    async def update_fails_for_movie_two(collection, document_id, patch):
        if document_id == second["id"]:
            raise TransientRemoteError("timeout")
        return await original_update(collection, document_id, patch)

    monkeypatch.setattr(store, "update_document", update_fails_for_movie_two)

    with pytest.raises(ReconciliationPartialFailure) as info:
        await reconciler.reconcile()

    assert info.value.duplicate_groups_found == 1
    assert info.value.records_removed == 1
    assert len(await rows_for(store, 1)) == 1
    assert len(await rows_for(store, 2)) == 2


@pytest.mark.asyncio
async def test_duplicate_removed_by_someone_else_is_skipped(store, reconciler, monkeypatch):
    await seed(store, 42, 3, ["batman"])
    await seed(store, 42, 1, ["dark knight"])

    async def already_gone(collection, document_id):
        raise DocumentNotFound(collection, document_id)

    monkeypatch.setattr(store, "delete_document", already_gone)

    result = await reconciler.reconcile()
    assert result.duplicate_groups_found == 1
    assert result.records_removed == 0


@pytest.mark.asyncio
async def test_load_failure_reports_no_progress(store, reconciler, monkeypatch):
    async def down(*args, **kwargs):
        raise TransientRemoteError("offline")

    monkeypatch.setattr(store, "list_documents", down)

    with pytest.raises(ReconciliationPartialFailure) as info:
        await reconciler.reconcile()
    assert info.value.duplicate_groups_found == 0
    assert reconciler.last_result is None


@pytest.mark.asyncio
async def test_records_last_result(store, reconciler):
    await seed(store, 42, 1, ["a"])
    result = await reconciler.reconcile()
    assert reconciler.last_result == result
    assert reconciler.last_run_at is not None
