"""Application settings and configuration.

This module defines all configuration options for the notes ingestion service.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Notes Ingest", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite:///./notes.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Boundary maintenance
    boundary_diff_tolerance_percent: float = Field(
        default=0.01,
        alias="BOUNDARY_DIFF_TOLERANCE_PERCENT",
    )
    boundary_min_area_ratio: float = Field(default=0.5, alias="BOUNDARY_MIN_AREA_RATIO")
    known_water_point_radius_degrees: float = Field(
        default=0.001,
        alias="KNOWN_WATER_POINT_RADIUS_DEGREES",
    )
    known_water_min_area_km2: float = Field(
        default=1000.0,
        alias="KNOWN_WATER_MIN_AREA_KM2",
    )
    reassignment_batch_size: int = Field(default=1000, alias="REASSIGNMENT_BATCH_SIZE")

    # Bulk (Planet) load
    bulk_partitions: int = Field(default=4, alias="BULK_PARTITIONS")
    bulk_workers: int = Field(default=4, alias="BULK_WORKERS")
    bulk_chunk_size: int = Field(default=5000, alias="BULK_CHUNK_SIZE")

    # Incremental (API) feed
    feed_base_url: str | None = Field(default=None, alias="FEED_BASE_URL")
    feed_directory: str | None = Field(default=None, alias="FEED_DIRECTORY")
    feed_timeout_seconds: float = Field(default=30.0, alias="FEED_TIMEOUT_SECONDS")

    # Integrity policy for incremental cycles
    integrity_grace_minutes: int = Field(default=30, alias="INTEGRITY_GRACE_MINUTES")
    integrity_min_sample: int = Field(default=10, alias="INTEGRITY_MIN_SAMPLE")
    integrity_max_gap_ratio: float = Field(default=0.05, alias="INTEGRITY_MAX_GAP_RATIO")

    # Process lock tags
    lock_tag_planet: str = Field(default="planet", alias="LOCK_TAG_PLANET")
    lock_tag_api: str = Field(default="api", alias="LOCK_TAG_API")

    # CORS configuration for the read-only API
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_methods: list[str] = Field(default=["GET", "OPTIONS"], alias="CORS_ALLOW_METHODS")
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous operations like
        Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url


settings = Settings()
