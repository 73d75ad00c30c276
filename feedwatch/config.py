from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App
    app_name: str = "FeedWatch"
    app_env: str = "development"
    cors_origins: str = "http://localhost:5173"

    # Persistence (empty redis_url -> in-process memory store)
    redis_url: str = ""
    state_key: str = "feedwatch:retention_state"
    change_channel: str = "feedwatch:retention_state:changed"

    # Polling
    poll_interval_seconds: float = 10.0
    max_retained: int = 20

    # Scroll collector
    scroll_min_target: int = 20
    scroll_max_attempts: int = 10
    scroll_delay_seconds: float = 2.0
    feed_ready_timeout_ms: int = 10000

    # Browser
    browser_headless: bool = True
    browser_user_data_dir: str = ""
    browser_proxy_url: str = ""

    # Sentry (optional, only set in staging/production)
    sentry_dsn: str = ""

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def log_level(self) -> str:
        return "INFO" if self.is_production else "DEBUG"

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",")]


settings = Settings()

# ---------------------------------------------------------------------------
# Application constants (not env-configurable; change in code)
# ---------------------------------------------------------------------------

# Retention window
MAX_RETAINED = 20

# Poll/reload timer (seconds)
DEFAULT_POLL_INTERVAL = 10.0

# Scroll collector defaults
DEFAULT_SCROLL_MIN_TARGET = 20
DEFAULT_SCROLL_MAX_ATTEMPTS = 10
DEFAULT_SCROLL_DELAY = 2.0  # seconds between scroll steps

# Feed markup
FEED_ITEM_SELECTOR = 'article[data-testid="tweet"]'

# Observer event queue size per subscriber
OBSERVER_QUEUE_SIZE = 100
