import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        default_currency: str,
        default_user_id: int,
        snapshot_hour: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.default_currency = default_currency
        self.default_user_id = default_user_id
        self.snapshot_hour = snapshot_hour


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    csrf_secret = os.getenv(
        "LEDGER_CSRF_SECRET",
        "5d0c4b1f9e3a7c2d8b6f4e1a0c9d7b3e2f8a6c4d1e9b7f5a3c0d2e4f6a8b1c3d",
    )
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "USD").upper()
    default_user_id = int(os.getenv("LEDGER_DEFAULT_USER_ID", "1"))
    snapshot_hour = int(os.getenv("LEDGER_SNAPSHOT_HOUR", "2"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        default_currency=default_currency,
        default_user_id=default_user_id,
        snapshot_hour=snapshot_hour,
    )
