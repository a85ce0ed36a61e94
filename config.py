import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_hours: int,
        openai_api_key: Optional[str],
        categorize_model: str,
        receipt_model: str,
        frontend_url: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.openai_api_key = openai_api_key
        self.categorize_model = categorize_model
        self.receipt_model = receipt_model
        self.frontend_url = frontend_url


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'expenses.db'}"
    timezone = os.getenv("EXPENSES_TIMEZONE", "UTC")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "5d0b7a1f3c9e42e8a6f1b2c4d8e07f39a1c6b5e2d4f8a7c3b9e1d0f2a6c4b8e3",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "168"))
    openai_api_key = os.getenv("OPENAI_API_KEY") or None
    categorize_model = os.getenv("EXPENSES_CATEGORIZE_MODEL", "gpt-4o-mini")
    receipt_model = os.getenv("EXPENSES_RECEIPT_MODEL", "gpt-4o")
    frontend_url = os.getenv("EXPENSES_FRONTEND_URL", "http://localhost:5173")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        openai_api_key=openai_api_key,
        categorize_model=categorize_model,
        receipt_model=receipt_model,
        frontend_url=frontend_url,
    )
