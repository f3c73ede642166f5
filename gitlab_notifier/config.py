"""Configuration for gitlab-notifier."""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./gitlab_notifier.db"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Public address of this service; used for hook URLs, OAuth redirect and previews
    public_url: str = ""
    secret_key: str = "change-me"

    # Telegram
    bot_token: str = ""
    bot_username: str = ""
    telegram_api_url: str = "https://api.telegram.org"

    # GitLab.com OAuth application; self-hosted instances register their own
    gitlab_base_url: str = "https://gitlab.com"
    oauth_app_id: str = ""
    oauth_app_secret: str = ""

    correlation_ttl_days: int = 30
    nick_map_ttl_days: int = 365
    user_cache_ttl_days: int = 30

    # Jobs
    job_pool_size: int = 1
    job_max_attempts: int = 10
    job_retry_unit_seconds: float = 1.0
    nick_map_job_delay_seconds: float = 5.0

    # Push and build webhooks arrive nearly simultaneously
    build_correlation_delay_seconds: float = 1.0
    build_correlation_attempts: int = 3

    model_config = {"env_prefix": "GITLAB_"}

    @field_validator("public_url", "gitlab_base_url", "telegram_api_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


settings = Settings()
