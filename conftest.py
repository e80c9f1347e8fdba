from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from movie_trends.backoff import BackoffExecutor
from movie_trends.database import DocumentStore
from movie_trends.models import MovieSummary


class StepClock:
    """Clock that advances one second per reading."""

    def __init__(self, start=datetime(2024, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def executor(sleep):
    return BackoffExecutor(base_delay=0.5, sleep=sleep)


@pytest_asyncio.fixture
async def store(tmp_path, clock):
    store = DocumentStore(str(tmp_path / "trends.db"), clock=clock)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def make_movie():
    def _make(movie_id=42, title="The Dark Knight", **kwargs):
        return MovieSummary(id=movie_id, title=title, **kwargs)

    return _make
