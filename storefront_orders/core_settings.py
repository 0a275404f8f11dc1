from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "storefront"
    POSTGRES_USER: str = "storefront"
    POSTGRES_PASSWORD: str = "storefront"
    # Full SQLAlchemy URL; overrides the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None
    RUN_MIGRATIONS: bool = True
    # Re-reads allowed when a concurrent write wins the version check
    CONFLICT_RETRIES: int = 2

    CATALOG_SERVICE_URL: str = "http://products:8000"
    USERS_SERVICE_URL: str = "http://users:8000"
    CATALOG_TIMEOUT: float = 5.0

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    SMTP_ENABLED: bool = True
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: str = '"Void Vendor" <noreply@voidvendor.com>'
    SMTP_TIMEOUT: float = 10.0
    FRONTEND_URL: str = "https://www.voidvendor.com"

    HOME_COUNTRY: str = "United States"
    NOTES_MAX_LENGTH: int = 500
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 200

    REDIS_URL: Optional[str] = None

    SERVICE_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

@lru_cache
def get_settings() -> Settings:
    return Settings()
