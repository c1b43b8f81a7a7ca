import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        session_secret: str,
        session_max_age_hours: int,
        due_soon_days: int,
        payment_lookahead: int,
        scheduler_enabled: bool,
        currency: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.due_soon_days = due_soon_days
        self.payment_lookahead = payment_lookahead
        self.scheduler_enabled = scheduler_enabled
        self.currency = currency


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "fintrack.db"
    database_url = os.getenv("FINTRACK_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINTRACK_TIMEZONE", "Asia/Kolkata")
    session_secret = os.getenv(
        "FINTRACK_SESSION_SECRET",
        "5f0c1d7b6a3e48a2b9c4d1e0f7a6b5c4d3e2f1a0b9c8d7e6f5a4b3c2d1e0f9a8",
    )
    session_max_age_hours = int(os.getenv("FINTRACK_SESSION_MAX_AGE_HOURS", "720"))
    due_soon_days = int(os.getenv("FINTRACK_DUE_SOON_DAYS", "7"))
    payment_lookahead = int(os.getenv("FINTRACK_PAYMENT_LOOKAHEAD", "6"))
    scheduler_enabled = _env_flag("FINTRACK_SCHEDULER_ENABLED")
    currency = os.getenv("FINTRACK_CURRENCY", "INR").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        due_soon_days=due_soon_days,
        payment_lookahead=payment_lookahead,
        scheduler_enabled=scheduler_enabled,
        currency=currency,
    )


def local_today() -> date:
    settings = get_settings()
    return datetime.now(ZoneInfo(settings.timezone)).date()
