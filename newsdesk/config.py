from typing import Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service configuration, loaded from environment variables and a .env file."""

    # MySQL
    MYSQL_HOST: str = "localhost"
    MYSQL_PORT: int = 3306
    MYSQL_DB: str = "newsdesk"
    MYSQL_USER: str = "root"
    MYSQL_PASSWORD: str = "password"
    # Full SQLAlchemy URL, takes precedence over the MySQL fields
    DATABASE_URL: Optional[str] = None
    DB_CONNECT_TIMEOUT: int = 10
    DB_READ_TIMEOUT: int = 30

    # Uploads
    UPLOAD_ROOT: str = "uploads"
    PUBLIC_URL_PREFIX: str = "/uploads"
    MAX_FILE_SIZE_BYTES: int = 5 * 1024 * 1024
    MAX_FILES_PER_REQUEST: int = 10
    VARIANT_WORKERS: int = 4

    # Auth
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    # TinyPNG
    TINIFY_API_KEY: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def database_uri(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        password = quote_plus(self.MYSQL_PASSWORD)
        return (
            f"mysql+pymysql://{self.MYSQL_USER}:{password}@{self.MYSQL_HOST}:{self.MYSQL_PORT}/"
            f"{self.MYSQL_DB}?charset=utf8mb4"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
