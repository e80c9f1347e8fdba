"""TMDB movie catalog client."""

import httpx
import logging
from typing import List, Optional

from .errors import TransientRemoteError
from .models import MovieSummary

logger = logging.getLogger(__name__)

TMDB_BASE_URL = "https://api.themoviedb.org/3"


class TMDBCatalog:
    """Async TMDB client using bearer (read access token) authentication.

    Every HTTP status error, timeout or transport failure is raised as
    TransientRemoteError so callers can retry them uniformly.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = TMDB_BASE_URL,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TMDBCatalog":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(url, params=params)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"TMDB error {status} for {path}: {e.response.text[:200]}")
            raise TransientRemoteError(_describe_status(status), status_code=status) from e

        except httpx.TimeoutException as e:
            logger.warning(f"TMDB timeout for {path}")
            raise TransientRemoteError("Request timeout - please check your network connection") from e

        except httpx.HTTPError as e:
            logger.warning(f"TMDB transport error for {path}: {e}")
            raise TransientRemoteError(f"TMDB request failed: {e}") from e

    async def search(self, query: str) -> List[MovieSummary]:
        """Search movies by title."""
        data = await self._get("/search/movie", {"query": query})
        movies = [MovieSummary.model_validate(item) for item in data.get("results", [])]
        logger.info(f"TMDB search '{query}': {len(movies)} movies")
        return movies

    async def discover_popular(self) -> List[MovieSummary]:
        """Most popular movies, used when there is no query."""
        data = await self._get("/discover/movie", {"sort_by": "popularity.desc"})
        return [MovieSummary.model_validate(item) for item in data.get("results", [])]

    async def fetch_movies(self, query: str = "") -> List[MovieSummary]:
        """Search when a query is given, otherwise discover popular movies."""
        query = query.strip()
        if query:
            return await self.search(query)
        return await self.discover_popular()

    async def movie_details(self, movie_id: int) -> dict:
        """Full TMDB details payload for one movie."""
        return await self._get(f"/movie/{movie_id}")

    async def check_connection(self) -> bool:
        """Return True when the configuration endpoint answers."""
        try:
            await self._get("/configuration")
            return True
        except TransientRemoteError as e:
            logger.error(f"TMDB connectivity check failed: {e}")
            return False


def _describe_status(status: int) -> str:
    if status == 401:
        return "Invalid or expired Bearer token. Please check your TMDB Read Access Token."
    if status == 404:
        return "Movie not found or invalid endpoint."
    if status == 429:
        return "Too many requests. Please wait and try again."
    if status >= 500:
        return "TMDB server error. Please try again later."
    return f"TMDB API error: {status}"
