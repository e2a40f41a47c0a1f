"""
Settings for the task manager, loaded from environment variables and an optional .env file.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()

ENV_PREFIX = "TASKS"


def _env(suffix: str, default: str) -> str:
    value = os.getenv(f"{ENV_PREFIX}_{suffix}")
    return default if value is None or value.strip() == "" else value.strip()


def _env_bool(suffix: str, default: bool) -> bool:
    raw = os.getenv(f"{ENV_PREFIX}_{suffix}")
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(suffix: str, default: list[str]) -> list[str]:
    raw = os.getenv(f"{ENV_PREFIX}_{suffix}")
    if raw is None or raw.strip() == "":
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration.

    Attributes:
        database_url: SQLAlchemy URL of the task store.
        cors_origins: Origins allowed to call the API from a browser.
        log_level: Console log level name.
        log_file: Optional path of a log file that receives DEBUG and up.
        host: Interface uvicorn binds to.
        port: Port uvicorn listens on.
        sql_echo: Echo SQL statements (debugging).
    """

    database_url: str = "sqlite:///./tasks.db"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"
    log_file: str | None = None
    host: str = "0.0.0.0"
    port: int = 8080
    sql_echo: bool = False


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    port_raw = _env("PORT", "8080")
    try:
        port = int(port_raw)
    except ValueError:
        port = 8080

    return Settings(
        database_url=_env("DATABASE_URL", Settings.database_url),
        cors_origins=_env_list("CORS_ORIGINS", ["http://localhost:3000"]),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
        log_file=_env("LOG_FILE", "") or None,
        host=_env("HOST", "0.0.0.0"),
        port=port,
        sql_echo=_env_bool("SQL_ECHO", False),
    )


settings = load_settings()
