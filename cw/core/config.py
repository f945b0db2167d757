"""Application configuration."""

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


def home_dir() -> Path:
    """Home directory of the current user."""
    return Path.home()


def data_dir() -> Path:
    """Per-user data directory (``$XDG_DATA_HOME/cw``)."""
    base = os.getenv("XDG_DATA_HOME")
    root = Path(base) if base else home_dir() / ".local" / "share"
    return root / "cw"


def cache_dir() -> Path:
    """Per-user cache directory (``$XDG_CACHE_HOME/cw``)."""
    base = os.getenv("XDG_CACHE_HOME")
    root = Path(base) if base else home_dir() / ".local" / "cache"
    return root / "cw"


def get_db_path() -> Path:
    """Path of the query history database, creating its directory."""
    directory = data_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / "db.sqlite3"


def get_log_path() -> Path:
    """Path of the diagnostic log file, creating its directory."""
    directory = cache_dir()
    directory.mkdir(parents=True, exist_ok=True)
    return directory / "cw.log"


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("CW_ENV", "production")
    log_level: str = os.getenv("LOG_LEVEL", "WARNING")

    # Database
    # Empty means the default sqlite file under the data directory
    database_url: str = os.getenv("CW_DATABASE_URL", "")

    # Tail
    default_start_seconds: int = int(os.getenv("CW_DEFAULT_START", "30"))
    tail_min_interval: float = float(os.getenv("CW_TAIL_MIN_INTERVAL", "1"))
    tail_max_interval: float = float(os.getenv("CW_TAIL_MAX_INTERVAL", "10"))
    tail_queue_size: int = int(os.getenv("CW_TAIL_QUEUE_SIZE", "1000"))

    # Remote retries (in seconds)
    retry_base_delay: float = float(os.getenv("CW_RETRY_BASE_DELAY", "0.5"))
    retry_max_delay: float = float(os.getenv("CW_RETRY_MAX_DELAY", "20"))
    retry_max_attempts: int = int(os.getenv("CW_RETRY_MAX_ATTEMPTS", "5"))

    # Query polling (in seconds)
    query_poll_interval: float = float(os.getenv("CW_QUERY_POLL_INTERVAL", "1"))
    query_poll_max_interval: float = float(
        os.getenv("CW_QUERY_POLL_MAX_INTERVAL", "8")
    )

    def get_database_url(self) -> str:
        """Database URL, falling back to the sqlite file in the data dir."""
        if self.database_url:
            return self.database_url
        return f"sqlite:///{get_db_path()}"


settings = Settings()
