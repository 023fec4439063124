"""Configuration settings for the review pipeline."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

# Monthly review allowance per plan; a negative limit means unlimited.
DEFAULT_PLAN_LIMITS: dict[str, int] = {
    "free": 50,
    "pro": 500,
    "team": -1,
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "reviewhook"
    db_user: str = "reviewhook"
    db_password: str = "reviewhook"
    db_url: str | None = None  # full async URL, overrides the parts above

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    store_backend: Literal["redis", "memory"] = "redis"
    queue_backend: Literal["redis", "inline"] = "redis"
    redis_queue_max_depth: int = 1000
    worker_concurrency: int = 4

    # Webhook ingestion
    github_webhook_secret: str = ""
    dedup_ttl_seconds: int = 86400  # 24 hours

    # GitHub API
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None  # service token used when the owner has none
    github_timeout: float = 10.0
    github_max_pages: int = 3
    fetch_max_attempts: int = 3
    fetch_backoff_base: float = 0.5
    max_files: int = 100
    max_diff_chars: int = 60000
    max_description_chars: int = 2000
    post_pr_comments: bool = False

    # AI reviewer
    ai_api_url: str = "https://api.openai.com/v1"
    ai_api_key: str = ""
    ai_model: str = "gpt-4"
    ai_max_tokens: int = 2000
    ai_temperature: float = 0.3
    ai_timeout: float = 30.0
    ai_max_attempts: int = 3
    ai_backoff_base: float = 1.0

    # Quota
    plan_limits: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_PLAN_LIMITS))

    # Persistence
    persist_max_attempts: int = 2

    # Logging
    log_level: str = "INFO"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.db_url:
            return self.db_url
        return (
            f"postgresql+asyncpg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    def limit_for_plan(self, plan: str | None) -> int:
        return self.plan_limits.get(plan or "free", self.plan_limits.get("free", 0))

    class Config:
        env_prefix = "REVIEWHOOK_"
        env_file = ".env"


# Global settings instance
settings = Settings()
