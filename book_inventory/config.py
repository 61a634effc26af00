import os

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv(".env")

INSECURE_MARKERS = ("postgres:postgres@", "changeme", "change-me", "replace-me", "root@")


def _default_db_url() -> str:
    env_url = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url

    user = os.getenv("POSTGRES_USER", "postgres")
    password = os.getenv("POSTGRES_PASSWORD", "postgres")
    db_name = os.getenv("POSTGRES_DB", "bookinventory")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{db_name}"


class Settings(BaseSettings):
    app_name: str = "Book Inventory API"
    version: str = "1.0.0"
    database_url: str = Field(default_factory=_default_db_url)
    sql_echo: bool = False
    log_level: str = "INFO"
    cors_origins: str = ""
    otel_enabled: bool = False
    otel_service_name: str = "book-inventory"
    strict_security: bool = False

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


def get_settings() -> Settings:
    settings = Settings()
    if settings.strict_security:
        if settings.database_url and any(marker in settings.database_url for marker in INSECURE_MARKERS):
            raise RuntimeError("Insecure database credentials detected")
    return settings
