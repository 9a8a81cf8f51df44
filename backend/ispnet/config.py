from pydantic_settings import BaseSettings
import secrets


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "ISPNet Provisioning"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    SECRET_KEY: str = secrets.token_urlsafe(64)
    PREVIOUS_SECRET_KEYS: str = ""  # comma-separated, still accepted for decrypting router passwords
    ALLOWED_ORIGINS: str = "*"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://ispnet:ispnet@db:5432/ispnet"
    DATABASE_ECHO: bool = False

    # Redis (scheduler locks only)
    REDIS_URL: str = "redis://redis:6379/0"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_GENERATE: str = "10/minute"

    # Subnet policy
    SUBNET_MIN_PREFIX: int = 8
    SUBNET_MAX_PREFIX: int = 30
    OVERLAP_RESULT_LIMIT: int = 5

    # Address pool generation
    IP_GENERATION_MIN_PREFIX: int = 16
    IP_GENERATION_MAX_PREFIX: int = 30
    IP_GENERATION_MAX_HOSTS: int = 10000
    IP_GENERATION_BATCH_SIZE: int = 500
    AUTO_GENERATE_ON_CREATE: bool = True

    # Provisioning
    ENFORCE_SINGLE_ACTIVE_SERVICE: bool = True  # one active/pending service per customer

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    RECONCILE_INTERVAL_MINUTES: int = 15
    SYNC_STALE_MINUTES: int = 60

    # HTTPS
    HTTPS_ONLY: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
