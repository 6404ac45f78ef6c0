import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        currency: str,
        advisor_url: str,
        advisor_api_key: Optional[str],
        advisor_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.currency = currency
        self.advisor_url = advisor_url
        self.advisor_api_key = advisor_api_key
        self.advisor_timeout_secs = advisor_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGETWISE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budgetwise.db"
    database_url = os.getenv("BUDGETWISE_DATABASE_URL", f"sqlite:///{default_db}")
    currency = os.getenv("BUDGETWISE_CURRENCY", "USD").upper()
    advisor_url = os.getenv("BUDGETWISE_ADVISOR_URL", "http://localhost:3400/flows")
    advisor_api_key = os.getenv("BUDGETWISE_ADVISOR_API_KEY") or None
    advisor_timeout_secs = float(os.getenv("BUDGETWISE_ADVISOR_TIMEOUT_SECS", "20"))
    log_level = os.getenv("BUDGETWISE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        currency=currency,
        advisor_url=advisor_url.rstrip("/"),
        advisor_api_key=advisor_api_key,
        advisor_timeout_secs=advisor_timeout_secs,
        log_level=log_level,
    )
