"""Environment-driven configuration with Pydantic v2."""

from typing import Dict, List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3001, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default=["http://localhost:5172"], env="CORS_ORIGINS")

    # Authentication
    auth_mode: Literal["single", "multi"] = Field(default="multi", env="AUTH_MODE")
    jwt_secret_key: str = Field(env="JWT_SECRET_KEY", min_length=32)
    jwt_expire_minutes: int = Field(default=10080, env="JWT_EXPIRE_MINUTES", ge=60)  # 7 days
    jwt_cookie_name: str = Field(default="pandora_token", env="JWT_COOKIE_NAME")
    jwt_cookie_secure: bool = Field(default=False, env="JWT_COOKIE_SECURE")
    jwt_cookie_samesite: Literal["lax", "strict", "none"] = Field(default="lax", env="JWT_COOKIE_SAMESITE")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/pandora.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Cache Configuration (seconds, per namespace)
    cache_ttl: int = Field(default=3600, env="CACHE_TTL", ge=1)
    cache_ttl_trending: int = Field(default=21600, env="CACHE_TTL_TRENDING", ge=1)  # 6 hours
    cache_ttl_popular: int = Field(default=21600, env="CACHE_TTL_POPULAR", ge=1)
    cache_ttl_search: int = Field(default=3600, env="CACHE_TTL_SEARCH", ge=1)  # 1 hour
    cache_ttl_details: int = Field(default=86400, env="CACHE_TTL_DETAILS", ge=1)  # 24 hours
    cache_ttl_availability: int = Field(default=86400, env="CACHE_TTL_AVAILABILITY", ge=1)
    cache_ttl_indexer: int = Field(default=900, env="CACHE_TTL_INDEXER", ge=1)  # 15 minutes
    cache_ttl_containers: int = Field(default=300, env="CACHE_TTL_CONTAINERS", ge=1)
    cache_ttl_libraries: int = Field(default=600, env="CACHE_TTL_LIBRARIES", ge=1)
    cache_persistent: bool = Field(default=True, env="CACHE_PERSISTENT")
    cache_max_entries: int = Field(default=5000, env="CACHE_MAX_ENTRIES", ge=100)
    cache_sweep_interval: int = Field(default=600, env="CACHE_SWEEP_INTERVAL", ge=10)

    # TMDB (metadata catalog)
    tmdb_api_key: Optional[str] = Field(default=None, env="TMDB_API_KEY")
    tmdb_url: str = Field(default="https://api.themoviedb.org/3", env="TMDB_URL")
    tmdb_timeout: float = Field(default=10.0, env="TMDB_TIMEOUT", ge=1, le=120)

    # Watchmode (streaming availability)
    watchmode_api_key: Optional[str] = Field(default=None, env="WATCHMODE_API_KEY")
    watchmode_url: str = Field(default="https://api.watchmode.com/v1", env="WATCHMODE_URL")
    watchmode_timeout: float = Field(default=10.0, env="WATCHMODE_TIMEOUT", ge=1, le=120)

    # Jackett (torrent indexer)
    jackett_url: Optional[str] = Field(default=None, env="JACKETT_URL")
    jackett_api_key: Optional[str] = Field(default=None, env="JACKETT_API_KEY")
    jackett_timeout: float = Field(default=30.0, env="JACKETT_TIMEOUT", ge=1, le=120)

    # qBittorrent (torrent client, session auth)
    qbittorrent_url: Optional[str] = Field(default=None, env="QBITTORRENT_URL")
    qbittorrent_username: str = Field(default="admin", env="QBITTORRENT_USERNAME")
    qbittorrent_password: str = Field(default="adminadmin", env="QBITTORRENT_PASSWORD")
    qbittorrent_timeout: float = Field(default=15.0, env="QBITTORRENT_TIMEOUT", ge=1, le=120)
    qbittorrent_session_ttl: int = Field(default=3600, env="QBITTORRENT_SESSION_TTL", ge=60)

    # Portainer (container orchestrator)
    portainer_url: Optional[str] = Field(default=None, env="PORTAINER_URL")
    portainer_api_key: Optional[str] = Field(default=None, env="PORTAINER_API_KEY")
    portainer_endpoint_id: int = Field(default=1, env="PORTAINER_ENDPOINT_ID", ge=1)
    portainer_timeout: float = Field(default=15.0, env="PORTAINER_TIMEOUT", ge=1, le=120)

    # Jellyfin (media library)
    jellyfin_url: Optional[str] = Field(default=None, env="JELLYFIN_URL")
    jellyfin_api_key: Optional[str] = Field(default=None, env="JELLYFIN_API_KEY")
    jellyfin_timeout: float = Field(default=15.0, env="JELLYFIN_TIMEOUT", ge=1, le=120)

    # Cloud Commander (file browser)
    cloudcommander_url: Optional[str] = Field(default=None, env="CLOUDCOMMANDER_URL")
    cloudcommander_username: Optional[str] = Field(default=None, env="CLOUDCOMMANDER_USERNAME")
    cloudcommander_password: Optional[str] = Field(default=None, env="CLOUDCOMMANDER_PASSWORD")
    cloudcommander_timeout: float = Field(default=20.0, env="CLOUDCOMMANDER_TIMEOUT", ge=1, le=120)

    # Download paths
    download_path: str = Field(default="/downloads", env="DOWNLOAD_PATH")
    movies_path: str = Field(default="/media/movies", env="MOVIES_PATH")
    tv_path: str = Field(default="/media/tv", env="TV_PATH")

    # Broadcast
    ws_queue_size: int = Field(default=256, env="WS_QUEUE_SIZE", ge=8, le=10000)
    ws_send_timeout: float = Field(default=5.0, env="WS_SEND_TIMEOUT", ge=0.1, le=60)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def cache_namespace_ttls(self) -> Dict[str, int]:
        """Default TTL per cache namespace."""
        return {
            "trending": self.cache_ttl_trending,
            "popular": self.cache_ttl_popular,
            "search": self.cache_ttl_search,
            "details": self.cache_ttl_details,
            "availability": self.cache_ttl_availability,
            "indexer": self.cache_ttl_indexer,
            "containers": self.cache_ttl_containers,
            "libraries": self.cache_ttl_libraries,
        }

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.debug

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
