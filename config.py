import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        restore_interval_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.restore_interval_minutes = restore_interval_minutes


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("POCKETS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "pockets.db"
    database_url = os.getenv("POCKETS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("POCKETS_TIMEZONE", "Europe/Berlin")
    restore_interval_minutes = int(
        os.getenv("POCKETS_RESTORE_INTERVAL_MINUTES", "60")
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        restore_interval_minutes=restore_interval_minutes,
    )
