"""Search-trend aggregation: recording search events and reading the top list."""

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Set

from .backoff import BackoffExecutor
from .database import DocumentStore, Query, utcnow
from .errors import DocumentNotFound, NotFound, TransientRemoteError
from .models import POSTER_PLACEHOLDER, TMDB_IMAGE_BASE, MovieSummary, TrendAggregate

logger = logging.getLogger(__name__)


def merge_terms(*term_lists: Iterable[str]) -> List[str]:
    """Union of term lists, keeping first-seen order."""
    merged: List[str] = []
    for terms in term_lists:
        for term in terms:
            if term not in merged:
                merged.append(term)
    return merged


def dedupe_by_movie(aggregates: Iterable[TrendAggregate]) -> List[TrendAggregate]:
    """Keep the first aggregate seen for each movie_id."""
    seen: Set[int] = set()
    unique = []
    for aggregate in aggregates:
        if aggregate.movie_id in seen:
            continue
        seen.add(aggregate.movie_id)
        unique.append(aggregate)
    return unique


class SearchAggregator:
    """
    Records "user searched for X and found movie Y" events.

    The lookup and the write are separate store calls, so two concurrent
    calls for the same movie may create duplicate aggregates or lose an
    increment. The DuplicateReconciler repairs both.
    """

    def __init__(
        self,
        store: DocumentStore,
        executor: BackoffExecutor,
        collection: str = "trending_searches",
        max_retries: int = 3,
        clock: Optional[Callable[[], datetime]] = None,
        image_base: str = TMDB_IMAGE_BASE,
        placeholder: str = POSTER_PLACEHOLDER,
    ):
        self.store = store
        self.executor = executor
        self.collection = collection
        self.max_retries = max_retries
        self._clock = clock or utcnow
        self._image_base = image_base
        self._placeholder = placeholder
        self._background: Set[asyncio.Task] = set()

    def _metadata(self, movie: MovieSummary) -> dict:
        return {
            "title": movie.title,
            "poster_url": movie.poster_url(self._image_base, self._placeholder),
            "release_date": movie.release_date or None,
            "vote_average": movie.vote_average or None,
        }

    async def _find_aggregate(self, movie_id: int) -> TrendAggregate:
        documents = await self.store.list_documents(
            self.collection, [Query.equal("movie_id", movie_id), Query.limit(1)]
        )
        if not documents:
            raise NotFound(f"No aggregate for movie {movie_id}")
        return TrendAggregate.model_validate(documents[0])

    async def _record_once(self, query: str, movie: MovieSummary) -> TrendAggregate:
        now = self._clock().isoformat()

        try:
            existing = await self._find_aggregate(movie.id)
        except NotFound:
            aggregate = TrendAggregate(
                movie_id=movie.id,
                search_terms=[query],
                last_search_term=query,
                count=1,
                last_searched_at=now,
                **self._metadata(movie),
            )
            document = await self.store.create_document(self.collection, aggregate.to_document())
            logger.info(f"New search aggregate for movie {movie.id} ({movie.title})")
            return TrendAggregate.model_validate(document)

        patch = {
            "count": existing.count + 1,
            "search_terms": merge_terms(existing.search_terms, [query]),
            "last_search_term": query,
            "last_searched_at": now,
            **self._metadata(movie),
        }
        try:
            document = await self.store.update_document(self.collection, existing.id, patch)
        except DocumentNotFound as e:
            # Removed by a reconciliation between our read and write
            raise TransientRemoteError(f"Aggregate {existing.id} vanished during update") from e

        logger.info(f"Search count for movie {movie.id} is now {patch['count']}")
        return TrendAggregate.model_validate(document)

    async def record_search(self, query: str, movie: MovieSummary) -> Optional[TrendAggregate]:
        """
        Fold one search event into the movie's aggregate.

        Args:
            query: The search text the user entered
            movie: The movie the search led to

        Returns:
            The written aggregate, or None for a blank query

        Raises:
            RetryExhausted: the store kept failing
        """
        query = query.strip()
        if not query:
            logger.debug(f"Ignoring blank search for movie {movie.id}")
            return None

        return await self.executor.execute(
            lambda: self._record_once(query, movie),
            self.max_retries,
            "UpdateSearchCount",
        )

    async def _record_quietly(self, query: str, movie: MovieSummary) -> None:
        try:
            await self.record_search(query, movie)
        except Exception as e:
            logger.error(f"Failed to track search '{query}' for movie {movie.id}: {e}")

    def record_search_in_background(self, query: str, movie: MovieSummary) -> asyncio.Task:
        """Schedule record_search without blocking the caller; failures are logged."""
        task = asyncio.get_running_loop().create_task(self._record_quietly(query, movie))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def track_search(self, query: str, movies: Sequence[MovieSummary]) -> Optional[asyncio.Task]:
        """Record the top result of a finished, non-empty search."""
        if not query.strip() or not movies:
            return None
        return self.record_search_in_background(query, movies[0])

    async def drain(self) -> None:
        """Wait for background recordings still in flight."""
        if self._background:
            await asyncio.gather(*list(self._background))


class TrendReader:
    """Ranked, duplicate-free view of the aggregate collection."""

    def __init__(
        self,
        store: DocumentStore,
        executor: BackoffExecutor,
        collection: str = "trending_searches",
        overfetch_factor: int = 2,
        max_retries: int = 3,
    ):
        self.store = store
        self.executor = executor
        self.collection = collection
        self.overfetch_factor = max(1, overfetch_factor)
        self.max_retries = max_retries

    async def _load(self, limit: int) -> List[TrendAggregate]:
        documents = await self.store.list_documents(
            self.collection,
            [
                Query.order_desc("count"),
                Query.order_desc("last_searched_at"),
                Query.limit(limit * self.overfetch_factor),
            ],
        )
        return [TrendAggregate.model_validate(doc) for doc in documents]

    async def top_trending(self, limit: int = 5) -> List[TrendAggregate]:
        """Top ``limit`` movies by search count, most recently searched first on ties."""
        if limit <= 0:
            return []

        aggregates = await self.executor.execute(
            lambda: self._load(limit), self.max_retries, "GetTrendingMovies"
        )
        unique = dedupe_by_movie(aggregates)
        if len(unique) < len(aggregates):
            logger.info(f"Filtered {len(aggregates) - len(unique)} duplicate trending rows")
        return unique[:limit]
