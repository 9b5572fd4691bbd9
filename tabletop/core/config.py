from pathlib import Path
from urllib.parse import quote_plus
from pydantic_settings import BaseSettings
import os

SQLITE_FALLBACK_URL = "sqlite:///./tabletop.db"


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, "").strip() or default


def _database_password() -> str:
    password = _env("DB_PASSWORD")
    secret_file = _env("DB_PASSWORD_FILE")
    if not password and secret_file and Path(secret_file).is_file():
        password = Path(secret_file).read_text(encoding="utf-8").strip()
    return password


def database_url_from_env() -> str:
    """``DATABASE_URL`` if set, PostgreSQL when ``DB_HOST`` names a server,
    otherwise a SQLite file in the working directory."""
    explicit = _env("DATABASE_URL")
    if explicit:
        return explicit
    host = _env("DB_HOST")
    if not host:
        return SQLITE_FALLBACK_URL
    user = quote_plus(_env("DB_USER", "tabletop"))
    password = quote_plus(_database_password())
    port = _env("DB_PORT", "5432")
    name = _env("DB_NAME", "tabletop")
    return f"postgresql+psycopg://{user}:{password}@{host}:{port}/{name}"


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-here"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7
    BCRYPT_ROUNDS: int = 12
    DATABASE_URL: str = database_url_from_env()

    # Redis Configuration (mirror of session change events, user lifecycle events)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_EVENTS_ENABLED: bool = False

    # Realtime gateway
    REALTIME_PATH: str = "/realtime"
    REALTIME_SEND_QUEUE_SIZE: int = 256

    # Redacted "ghost" chat messages
    REDACTION_MASK_CHAR: str = "■"
    REDACTION_MIN_LENGTH: int = 6
    REDACTION_MAX_LENGTH: int = 18

    DEFAULT_CHAT_TAB_NAME: str = "General"

    # Comma-separated browser origins, appended to the local defaults
    ALLOWED_ORIGINS: str = ""

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
