import httpx
import pytest
import pytest_asyncio

from movie_trends.aggregator import TrendReader
from movie_trends.catalog import TMDBCatalog
from movie_trends.deduplicator import DuplicateReconciler
from movie_trends.errors import TransientRemoteError
from movie_trends.health import create_app

COLLECTION = "trending_searches"


@pytest_asyncio.fixture
async def client(store, executor, clock):
    catalog = TMDBCatalog(
        "token",
        base_url="https://tmdb.test/3",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))),
    )
    app = create_app(
        store,
        catalog,
        TrendReader(store, executor, collection=COLLECTION),
        DuplicateReconciler(store, executor, collection=COLLECTION, clock=clock),
        trending_limit=2,
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://ops") as http:
        yield http


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.json()["status"] == "running"


@pytest.mark.asyncio
async def test_healthz_reports_both_collaborators(client):
    body = (await client.get("/healthz")).json()
    assert body["status"] == "healthy"
    assert body["database"] == "connected"
    assert body["catalog"] == "connected"
    assert body["last_reconcile"] is None


@pytest.mark.asyncio
async def test_ready(client):
    assert (await client.get("/ready")).json() == {"ready": True}


@pytest.mark.asyncio
async def test_trending_and_reconcile(client, store):
    for movie_id, count in [(42, 3), (42, 1), (7, 2), (8, 1)]:
        await store.create_document(COLLECTION, {"movie_id": movie_id, "count": count})

    trending = (await client.get("/trending")).json()
    assert [m["movie_id"] for m in trending] == [42, 7]

    response = await client.post("/reconcile")
    assert response.status_code == 200
    assert response.json() == {"duplicate_groups_found": 1, "records_removed": 1}

    stats = (await client.get("/stats")).json()
    assert stats["database"]["documents_by_collection"] == {COLLECTION: 3}
    assert stats["last_reconcile"]["records_removed"] == 1

    trending = (await client.get("/trending", params={"limit": 5})).json()
    assert [(m["movie_id"], m["count"]) for m in trending] == [(42, 4), (7, 2), (8, 1)]


@pytest.mark.asyncio
async def test_reconcile_failure_returns_partial_counts(client, store, monkeypatch):
    async def down(*args, **kwargs):
        raise TransientRemoteError("offline")

    monkeypatch.setattr(store, "list_documents", down)

    response = await client.post("/reconcile")
    assert response.status_code == 502
    assert response.json()["records_removed"] == 0

    response = await client.get("/trending")
    assert response.status_code == 502
