from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"

ENRICHMENT_MODE_QUEUE = "queue"
ENRICHMENT_MODE_DIRECT = "direct"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Location enrichment mode: "queue" (Redis worker) or "direct" (in-process)
    LOCATION_ENRICHMENT_MODE: str = ENRICHMENT_MODE_DIRECT

    # Redis settings (contact document store)
    REDIS_URL: str = "redis://localhost:6379/0"
    # Broker for queue mode; queue mode falls back to direct when unset
    LOCATION_QUEUE_REDIS_URL: str | None = None
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_SOCKET_TIMEOUT: float = 10.0
    # Cross-process lock around read-modify-write of one contact document
    CONTACT_LOCK_TIMEOUT_SECONDS: float = 10.0
    CONTACT_LOCK_WAIT_SECONDS: float = 5.0

    # Paid geocoding fallback; tier is skipped when unset
    GOOGLE_MAPS_API_KEY: str | None = None

    # =================================================================
    # GEOLOCATION SETTINGS
    # =================================================================
    GEO_PROVIDER_TIMEOUT_SECONDS: float = 5.0
    GEO_CACHE_MAX_SIZE: int = 10_000
    GEO_CACHE_TTL_SECONDS: int = 86_400  # 24 hours

    # =================================================================
    # QUEUE / WORKER SETTINGS
    # =================================================================
    LOCATION_QUEUE_MAX_ATTEMPTS: int = 3
    LOCATION_QUEUE_BACKOFF_BASE_SECONDS: float = 2.0
    LOCATION_JOB_TIMEOUT_SECONDS: float = 30.0
    LOCATION_WORKER_CONCURRENCY: int = 4
    LOCATION_WORKER_POLL_SECONDS: int = 5
    # In-flight jobs of a worker whose heartbeat lapses are recovered by others
    LOCATION_WORKER_HEARTBEAT_TTL_SECONDS: int = 30

    # In-process fallback pool size
    DIRECT_MAX_CONCURRENCY: int = 10

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def enrichment_mode(self) -> str:
        """Normalized enrichment mode, defaulting unknown values to direct."""
        mode = (self.LOCATION_ENRICHMENT_MODE or "").strip().lower()
        if mode == ENRICHMENT_MODE_QUEUE:
            return ENRICHMENT_MODE_QUEUE
        return ENRICHMENT_MODE_DIRECT

    def queue_redis_url(self) -> str | None:
        url = (self.LOCATION_QUEUE_REDIS_URL or "").strip()
        return url or None

    def google_geocoding_enabled(self) -> bool:
        return bool(self.GOOGLE_MAPS_API_KEY and self.GOOGLE_MAPS_API_KEY.strip())

    def get_redis_pool_config(self) -> dict:
        """
        Get Redis pool configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "max_connections": self.REDIS_MAX_CONNECTIONS,
            "socket_connect_timeout": self.REDIS_SOCKET_TIMEOUT,
            "socket_timeout": self.REDIS_SOCKET_TIMEOUT,
        }

        if self.environment == "development":
            # Smaller pool for local development
            config["max_connections"] = min(self.REDIS_MAX_CONNECTIONS, 8)

        return config


settings = Settings()
