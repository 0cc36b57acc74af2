import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        cors_origins: list[str],
        static_dir: Path,
        log_level: str,
        host: str,
        port: int,
    ) -> None:
        self.database_url = database_url
        self.cors_origins = cors_origins
        self.static_dir = static_dir
        self.log_level = log_level
        self.host = host
        self.port = port


def _data_dir() -> Path:
    return Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()


def _split_origins(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    default_db = _data_dir() / "budget_tracker.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    cors_origins = _split_origins(os.getenv("BUDGET_CORS_ORIGINS", "*"))
    static_dir = Path(os.getenv("BUDGET_STATIC_DIR", "./public")).resolve()
    log_level = os.getenv("BUDGET_LOG_LEVEL", "INFO").upper()
    host = os.getenv("BUDGET_HOST", "0.0.0.0")
    port = int(os.getenv("BUDGET_PORT", "3000"))
    return Settings(
        database_url=database_url,
        cors_origins=cors_origins,
        static_dir=static_dir,
        log_level=log_level,
        host=host,
        port=port,
    )
