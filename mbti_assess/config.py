from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# .env lives next to the package, not in the working directory
load_dotenv(Path(__file__).with_name(".env"))

PACKAGE_DIR = Path(__file__).resolve().parent
CONTENT_ROOT = PACKAGE_DIR / "config"


# --------------------- Domain constants ---------------------

DIMENSIONS = ("E/I", "S/N", "T/F", "J/P")
METHODOLOGIES = ("scenarios", "traits", "sais")
SAIS_COMBINATIONS = ((5, 0), (4, 1), (3, 2), (2, 3), (1, 4), (0, 5))
SAIS_POINTS_PER_QUESTION = 5

CORE_SESSION_TIMEOUT = timedelta(hours=3)
EXTENDED_SESSION_TIMEOUT = timedelta(hours=48)
SESSION_EXTENSION_INTERVAL = timedelta(minutes=5)
EXPIRATION_WARNING = timedelta(minutes=10)

INTERIM_CONFIDENCE_CAP = 65
INTERIM_MAX_INSIGHTS = 3

CORE_QUESTIONS_COUNT = 4
FORMAT_QUESTIONS = {"scenarios": 12, "traits": 16, "sais": 12}
TOTAL_QUESTIONS = {fmt: CORE_QUESTIONS_COUNT + n for fmt, n in FORMAT_QUESTIONS.items()}
PROGRESS_MILESTONES = {"core_complete": 25, "format_selected": 40, "assessment_complete": 100}
QUESTION_POOLS = {
    "core": "core-foundation",
    "scenarios": "life-scenarios",
    "traits": "personality-traits",
    "sais": "sais-methodology",
}


# --------------------- Environment ---------------------

def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    environment: str
    version: str

    log_level: str
    log_json: bool

    scratch_dir: str
    memory_max_items: int

    autosave_delay_sais_ms: int
    autosave_delay_default_ms: int

    scoring_cache_ttl_seconds: int
    interim_api_enabled: bool

    @staticmethod
    def from_env() -> "Settings":
        database_url = _env_str("DATABASE_URL")
        if not database_url:
            # Fallback to a local SQLite file when nothing is configured
            database_url = f"sqlite:///{PACKAGE_DIR / 'app.db'}"

        scratch_dir = _env_str("STORAGE_SCRATCH_DIR") or str(Path(tempfile.gettempdir()) / "mbti_assess")

        return Settings(
            database_url=database_url,
            environment=_env_str("ENVIRONMENT", "development") or "development",
            version="1.0.0",
            log_level=_env_str("LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("LOG_JSON", True),
            scratch_dir=scratch_dir,
            memory_max_items=_env_int("STORAGE_MEMORY_MAX_ITEMS", 0),
            autosave_delay_sais_ms=_env_int("AUTOSAVE_DELAY_SAIS_MS", 500),
            autosave_delay_default_ms=_env_int("AUTOSAVE_DELAY_DEFAULT_MS", 2000),
            scoring_cache_ttl_seconds=_env_int("SCORING_CACHE_TTL_SECONDS", 300),
            interim_api_enabled=_env_bool("INTERIM_API_ENABLED", True),
        )


settings = Settings.from_env()
