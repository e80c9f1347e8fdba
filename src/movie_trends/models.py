"""Pydantic data models for movies, trend aggregates and fetch state."""

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from typing import Any, Generic, List, Optional, TypeVar
from datetime import datetime

TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/w500"
POSTER_PLACEHOLDER = "https://placehold.co/500x750/1a1a1a/ffffff.png"

# Store-managed keys that are never part of a document body
META_FIELDS = ("id", "created_at", "updated_at")

T = TypeVar("T")


class MovieSummary(BaseModel):
    """A movie as returned by the catalog search and discover endpoints."""

    id: int = Field(..., description="TMDB movie id")
    title: str = Field(default="", description="Movie title")
    poster_path: Optional[str] = Field(default=None, description="TMDB poster path")
    release_date: Optional[str] = Field(default=None, description="Release date (YYYY-MM-DD)")
    vote_average: Optional[float] = Field(default=None, description="Average vote")
    overview: Optional[str] = Field(default=None, description="Plot overview")

    def poster_url(self, image_base: str = TMDB_IMAGE_BASE, placeholder: str = POSTER_PLACEHOLDER) -> str:
        if self.poster_path:
            return f"{image_base}{self.poster_path}"
        return placeholder


class TrendAggregate(BaseModel):
    """Rollup of every recorded search that led to one movie."""

    id: Optional[str] = None
    movie_id: int
    search_terms: List[str] = Field(default_factory=list, description="Distinct queries, insertion order")
    last_search_term: str = ""
    count: int = Field(default=0, ge=0)
    title: str = ""
    poster_url: str = ""
    release_date: Optional[str] = None
    vote_average: Optional[float] = None
    last_searched_at: Optional[datetime] = None
    merged_ids: List[str] = Field(default_factory=list, description="Duplicates already folded in")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_term(cls, data: Any) -> Any:
        # Older documents stored a single search_term string
        if isinstance(data, dict) and not data.get("search_terms") and data.get("search_term"):
            data = dict(data)
            data["search_terms"] = [data["search_term"]]
            data.setdefault("last_search_term", data["search_term"])
        if isinstance(data, dict) and data.get("count") is None:
            data = dict(data)
            data["count"] = 0
        return data

    @field_serializer("last_searched_at", "created_at", "updated_at", when_used="json")
    def _serialize_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        # isoformat, matching the timestamps the store writes
        return value.isoformat() if value is not None else None

    def to_document(self) -> dict:
        """Document body without store-managed fields."""
        return self.model_dump(mode="json", exclude=set(META_FIELDS))

    @property
    def recency(self) -> Optional[datetime]:
        return self.updated_at or self.created_at


class SavedMovie(BaseModel):
    """A movie on the user's saved list."""

    id: Optional[str] = None
    movie_id: int
    title: str = ""
    poster_url: str = ""
    release_date: Optional[str] = None
    vote_average: Optional[float] = None
    genre: Optional[str] = None
    saved_at: Optional[datetime] = None
    watched: bool = False
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("saved_at", "created_at", "updated_at", when_used="json")
    def _serialize_timestamp(self, value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value is not None else None


class ReconcileResult(BaseModel):
    """Totals of one reconciliation pass."""

    duplicate_groups_found: int = 0
    records_removed: int = 0


class FetchState(BaseModel, Generic[T]):
    """State owned by a single fetch controller."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    data: Optional[T] = None
    loading: bool = False
    error: Optional[BaseException] = None
    is_stale: bool = False
    request_id: int = 0
