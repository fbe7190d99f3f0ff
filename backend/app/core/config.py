from typing import Annotated, Any, Literal
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import computed_field, AnyUrl, BeforeValidator


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",")]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    APP_NAME: str = "Email Copilot"
    API_PREFIX: str = "/api"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str

    # OpenAI
    OPENAI_API_KEY: str
    OPENAI_MODEL: str = "gpt-4-turbo-preview"
    OPENAI_CLASSIFY_MODEL: str = "gpt-3.5-turbo"
    OPENAI_TIMEOUT_SECONDS: float = 60.0

    # Mail providers
    PROVIDER_TIMEOUT_SECONDS: float = 15.0
    SYNC_PAGE_SIZE: int = 100

    # Job queue
    QUEUE_BACKEND: Literal["redis", "memory"] = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    QUEUE_KEY_PREFIX: str = "email-copilot"
    SYNC_QUEUE_CONCURRENCY: int = 5
    AI_QUEUE_CONCURRENCY: int = 3
    JOB_TIMEOUT_SECONDS: float = 300.0
    JOB_MAX_ATTEMPTS: int = 3
    JOB_RETRY_BACKOFF_SECONDS: float = 5.0
    # Must stay above JOB_TIMEOUT_SECONDS or live jobs get claimed twice
    JOB_CLAIM_IDLE_SECONDS: float = 900.0
    JOB_STATUS_TTL_SECONDS: int = 7 * 24 * 3600

    # Scheduler
    ENABLE_SCHEDULER: bool = False
    SCHEDULED_SYNC_INTERVAL_MINUTES: int = 15
    STALE_SYNC_RUN_MINUTES: int = 60

    FRONTEND_HOST: str = "http://localhost:5173"
    BACKEND_CORS_ORIGINS: Annotated[list[AnyUrl] | str, BeforeValidator(parse_cors)] = [
        "http://localhost:8000"
    ]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def ALL_CORS_ORIGINS(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS] + [
            self.FRONTEND_HOST
        ]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
