from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


def _max_age_default() -> str:
    return os.getenv("HISTORY_MAX_AGE_SECONDS", "3600")


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    app_env: str = os.getenv("APP_ENV", "development")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    port: int = int(os.getenv("PORT", "3000"))

    google_api_key: Optional[str] = os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    temperature: float = float(os.getenv("MODEL_TEMPERATURE", "0.7"))
    top_p: float = float(os.getenv("MODEL_TOP_P", "0.9"))
    max_output_tokens: int = int(os.getenv("MODEL_MAX_OUTPUT_TOKENS", "1000"))

    history_dir: str = os.getenv("HISTORY_DIR", os.path.join(os.getcwd(), "history"))
    history_max_age_seconds: float = float(_max_age_default())
    history_sweep_interval_seconds: float = float(
        os.getenv("HISTORY_SWEEP_INTERVAL_SECONDS", _max_age_default())
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
