"""Configuration settings using Pydantic."""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # TMDB catalog
    tmdb_api_key: str = Field(default="", description="TMDB read access token (Bearer)")
    tmdb_base_url: str = Field(default="https://api.themoviedb.org/3", description="TMDB API base URL")
    tmdb_image_base_url: str = Field(
        default="https://image.tmdb.org/t/p/w500", description="Base URL for poster images"
    )
    poster_placeholder_url: str = Field(
        default="https://placehold.co/500x750/1a1a1a/ffffff.png",
        description="Poster used when a movie has none",
    )
    request_timeout: float = Field(default=15.0, description="Catalog request timeout in seconds")

    # Document store
    database_path: str = Field(default="./data/movie_trends.db", description="SQLite database path")
    trending_collection: str = Field(default="trending_searches", description="Aggregate collection")
    saved_collection: str = Field(default="saved_movies", description="Saved movies collection")

    # Retries
    retry_base_delay: float = Field(default=1.0, description="First backoff delay in seconds")
    max_retries: int = Field(default=3, description="Retries for store operations")
    fetch_retries: int = Field(default=2, description="Retries for screen fetches")
    fetch_retry_delay: float = Field(default=1.5, description="First backoff delay for screen fetches")

    # Trending
    trending_limit: int = Field(default=5, description="Number of trending movies to show")
    trending_overfetch_factor: int = Field(default=2, description="Rows fetched per shown movie")

    # Reconciliation
    reconcile_scan_limit: int = Field(default=1000, description="Maximum aggregates scanned per pass")
    reconcile_interval: int = Field(default=3600, description="Seconds between reconciliation passes")

    # Health check
    health_port: int = Field(default=8080, description="Health check server port")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Defaults for the entry point; components take their values explicitly
settings = Settings()
