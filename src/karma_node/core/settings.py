"""Application settings and configuration.

This module defines all configuration options for a Karma node. Settings are
loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_REPLICATION_BATCH = 100


class Settings(BaseSettings):
    """Node settings loaded from environment variables.

    Settings can be overridden via environment variables or a `.env` file.
    """

    # Node identity
    node_id: str = Field(default="node-local", alias="NODE_ID")
    node_name: str = Field(default="Karma Node", alias="NODE_NAME")
    debug: bool = Field(default=False, alias="DEBUG")

    # Game-server log tail
    log_file_path: str = Field(default="./logs/SquadGame.log", alias="LOG_FILE_PATH")
    log_poll_interval_ms: int = Field(default=1000, alias="LOG_POLL_INTERVAL_MS")
    log_watcher_enabled: bool = Field(default=True, alias="LOG_WATCHER_ENABLED")

    # Database configuration
    database_url: str = Field(default="sqlite:///./karma.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Bearer key required by every non-health route
    api_key: str = Field(default="change-me-change-me-change-me-change-me", alias="API_KEY")

    # Proof of presence
    min_overlap_minutes: int = Field(default=5, alias="MIN_OVERLAP_MINUTES")
    trust_window_hours: int = Field(default=24, alias="TRUST_WINDOW_HOURS")
    orphan_join_backdate_minutes: int = Field(default=5, alias="ORPHAN_JOIN_BACKDATE_MINUTES")
    future_timestamp_tolerance_minutes: int = Field(
        default=5,
        alias="FUTURE_TIMESTAMP_TOLERANCE_MINUTES",
    )

    # Reputation read model
    reputation_recent_votes: int = Field(default=10, alias="REPUTATION_RECENT_VOTES")
    reputation_top_categories: int = Field(default=5, alias="REPUTATION_TOP_CATEGORIES")

    # Replication between trusted nodes
    # Comma-separated lists; see `trusted_nodes` and `peer_urls`
    trusted_node_ids: str = Field(default="", alias="TRUSTED_NODE_IDS")
    replication_peers: str = Field(default="", alias="REPLICATION_PEERS")
    replication_shared_secret: str | None = Field(
        default=None,
        alias="REPLICATION_SHARED_SECRET",
    )
    # Bearer key presented to peers; falls back to our own API key
    replication_api_key: str | None = Field(default=None, alias="REPLICATION_API_KEY")
    replication_audience: str = Field(default="karma-replication", alias="REPLICATION_JWT_AUD")
    replication_token_ttl_seconds: int = Field(
        default=300,
        alias="REPLICATION_TOKEN_TTL_SECONDS",
    )
    replication_http_timeout_seconds: float = Field(
        default=5.0,
        alias="REPLICATION_HTTP_TIMEOUT_SECONDS",
    )
    replication_pull_interval_seconds: float = Field(
        default=60.0,
        alias="REPLICATION_PULL_INTERVAL_SECONDS",
    )
    replication_batch_size: int = Field(
        default=MAX_REPLICATION_BATCH,
        alias="REPLICATION_BATCH_SIZE",
        le=MAX_REPLICATION_BATCH,
        ge=1,
    )
    replication_dedup_window_minutes: int = Field(
        default=60,
        alias="REPLICATION_DEDUP_WINDOW_MINUTES",
    )

    # Optional Redis backing for the TTL store
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    # CORS configuration for operator tooling and the web front end
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for Alembic."""
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def trusted_nodes(self) -> list[str]:
        """Node ids seeded as active trusted nodes at startup."""
        return [item.strip() for item in self.trusted_node_ids.split(",") if item.strip()]

    @property
    def peer_urls(self) -> dict[str, str]:
        """Parse `REPLICATION_PEERS` entries of the form ``node_id=https://host``.

        Entries without an explicit node id are keyed by their URL.
        """
        peers: dict[str, str] = {}
        for raw in self.replication_peers.split(","):
            entry = raw.strip()
            if not entry:
                continue
            if "=" in entry:
                node_id, url = entry.split("=", 1)
                peers[node_id.strip()] = url.strip().rstrip("/")
            else:
                peers[entry.rstrip("/")] = entry.rstrip("/")
        return peers


settings = Settings()
