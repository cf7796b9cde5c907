from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://bidbridge:bidbridge_dev@db:5432/bidbridge"
    DATABASE_ECHO: bool = False

    # Redis (Celery broker + result backend)
    REDIS_URL: str = "redis://redis:6379/0"

    # Identity (tokens are minted by the external identity provider)
    SECRET_KEY: str = "dev-secret-key-not-for-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ALLOWED_ORIGINS: str = "*"

    # Transactions
    TRANSACTION_TIMEOUT_SECONDS: float = 10.0
    LOCK_TIMEOUT_MS: int = 3000

    # Notifications
    NOTIFICATION_RETENTION_DAYS: int = 90
    NOTIFY_REJECTED_PROVIDERS: bool = True
    MESSAGE_PREVIEW_LENGTH: int = 50

    # App
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
