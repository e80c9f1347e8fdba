"""The user's saved-movie list."""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .database import DocumentStore, Query, utcnow
from .errors import AlreadySaved
from .models import POSTER_PLACEHOLDER, TMDB_IMAGE_BASE, MovieSummary, SavedMovie

logger = logging.getLogger(__name__)


class SavedMovies:
    def __init__(
        self,
        store: DocumentStore,
        collection: str = "saved_movies",
        clock: Optional[Callable[[], datetime]] = None,
        image_base: str = TMDB_IMAGE_BASE,
        placeholder: str = POSTER_PLACEHOLDER,
    ):
        self.store = store
        self.collection = collection
        self._clock = clock or utcnow
        self._image_base = image_base
        self._placeholder = placeholder

    async def _find(self, movie_id: int) -> List[dict]:
        return await self.store.list_documents(self.collection, [Query.equal("movie_id", movie_id)])

    async def is_saved(self, movie_id: int) -> bool:
        return bool(await self._find(movie_id))

    async def save(self, movie: MovieSummary, genre: Optional[str] = None) -> SavedMovie:
        """Add a movie to the saved list; raises AlreadySaved if it is there."""
        if await self._find(movie.id):
            raise AlreadySaved(movie.id)

        saved = SavedMovie(
            movie_id=movie.id,
            title=movie.title,
            poster_url=movie.poster_url(self._image_base, self._placeholder),
            release_date=movie.release_date or None,
            vote_average=movie.vote_average or None,
            genre=genre,
            saved_at=self._clock(),
            watched=False,
        )
        document = await self.store.create_document(
            self.collection, saved.model_dump(mode="json", exclude={"id", "created_at", "updated_at"})
        )
        logger.info(f"Saved movie {movie.id} ({movie.title})")
        return SavedMovie.model_validate(document)

    async def unsave(self, movie_id: int) -> bool:
        """Remove a movie from the saved list. Returns False if it was not saved."""
        documents = await self._find(movie_id)
        for document in documents:
            await self.store.delete_document(self.collection, document["id"])
        if documents:
            logger.info(f"Removed movie {movie_id} from saved list")
        return bool(documents)

    async def list_saved(self, limit: int = 100) -> List[SavedMovie]:
        """Saved movies, newest first."""
        documents = await self.store.list_documents(
            self.collection, [Query.order_desc("created_at"), Query.limit(limit)]
        )
        return [SavedMovie.model_validate(doc) for doc in documents]

    async def set_watched(self, saved_id: str, watched: bool) -> SavedMovie:
        document = await self.store.update_document(self.collection, saved_id, {"watched": watched})
        return SavedMovie.model_validate(document)
