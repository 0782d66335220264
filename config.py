import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        pattern_lookback_months: int,
        pattern_min_occurrences: int,
        generation_hour: int,
        generation_minute: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.pattern_lookback_months = pattern_lookback_months
        self.pattern_min_occurrences = pattern_min_occurrences
        self.generation_hour = generation_hour
        self.generation_minute = generation_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    return Settings(
        database_url=os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("BUDGET_TIMEZONE", "Asia/Jerusalem"),
        pattern_lookback_months=int(os.getenv("BUDGET_PATTERN_LOOKBACK_MONTHS", "6")),
        pattern_min_occurrences=int(os.getenv("BUDGET_PATTERN_MIN_OCCURRENCES", "2")),
        generation_hour=int(os.getenv("BUDGET_GENERATION_HOUR", "3")),
        generation_minute=int(os.getenv("BUDGET_GENERATION_MINUTE", "15")),
    )
