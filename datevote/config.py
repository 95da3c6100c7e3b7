"""Environment-driven settings.

Values are read from the process environment (``.env`` is loaded first).
Engine knobs are bundled in ``PlannerSettings`` and passed explicitly to
``EventPlanner``; nothing here is mutated at runtime.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# ===== Gemini（任意: 告知文の生成に使用） =====
GEMINI_API_KEY_MAIN = os.environ.get("GEMINI_API_KEY_MAIN", "")
GEMINI_MODEL = os.environ.get("GEMINI_MODEL", "gemini-2.5-flash-lite")

# ===== Email (Resend) =====
RESEND_API_KEY = os.environ.get("RESEND_API_KEY", "")
EMAIL_FROM_ADDRESS = os.environ.get("EMAIL_FROM_ADDRESS", "onboarding@resend.dev")
EMAIL_FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "datevote")
EMAIL_ORGANIZER_ADDRESS = os.environ.get("EMAIL_ORGANIZER_ADDRESS", "")

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class PlannerSettings:
    db_path: str = str(PROJECT_ROOT / "data" / "datevote.db")
    threshold: int = 70
    min_survey_responses: int = 2
    max_write_retries: int = 3
    recommendation_cache_size: int = 128
    recommendation_cache_ttl: int = 60 * 60

    @classmethod
    def from_env(cls) -> "PlannerSettings":
        defaults = cls()
        threshold = _int_env("DATEVOTE_THRESHOLD", defaults.threshold)
        if not 0 < threshold <= 100:
            raise RuntimeError("DATEVOTE_THRESHOLD must be within 1..100")
        return cls(
            db_path=os.environ.get("DATEVOTE_DB_PATH", defaults.db_path),
            threshold=threshold,
            min_survey_responses=max(1, _int_env("DATEVOTE_MIN_SURVEY_RESPONSES", defaults.min_survey_responses)),
            max_write_retries=max(1, _int_env("DATEVOTE_MAX_WRITE_RETRIES", defaults.max_write_retries)),
        )
