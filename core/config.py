"""
Configuration - environment-driven settings.

Values come from the process environment, with a local ``.env`` file loaded
first (same convention as the Redis store). Defaults match the production
assessment router: 15-20 questions, SE threshold 0.3.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the engine, API and CLI."""

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Content
    content_dir: str = "data/content"
    default_jurisdiction: str = "ca"

    # Assessment defaults
    min_questions: int = 15
    max_questions: int = 20
    se_threshold: float = 0.3
    starting_theta: float = 0.0
    weak_accuracy_threshold: float = 0.7
    strong_accuracy_threshold: float = 0.85

    # Question selection
    exposure_control: bool = True
    selection_randomness: float = 0.0
    total_assessments: int = 1000

    def __post_init__(self):
        if self.min_questions < 1 or self.max_questions < self.min_questions:
            raise ValueError(
                f"Need 1 <= min_questions <= max_questions, got {self.min_questions}/{self.max_questions}"
            )
        if not 0.0 <= self.selection_randomness <= 1.0:
            raise ValueError("SELECTION_RANDOMNESS must be within [0, 1]")
        if self.total_assessments < 0:
            raise ValueError("TOTAL_ASSESSMENTS must not be negative")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            redis_host=os.getenv("REDIS_HOST", "localhost"),
            redis_port=_env_int("REDIS_PORT", 6379),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            redis_db=_env_int("REDIS_DB", 0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=_env_bool("LOG_JSON", False),
            content_dir=os.getenv("CONTENT_DIR", "data/content"),
            default_jurisdiction=os.getenv("DEFAULT_JURISDICTION", "ca"),
            min_questions=_env_int("ASSESSMENT_MIN_QUESTIONS", 15),
            max_questions=_env_int("ASSESSMENT_MAX_QUESTIONS", 20),
            se_threshold=_env_float("ASSESSMENT_SE_THRESHOLD", 0.3),
            starting_theta=_env_float("ASSESSMENT_STARTING_THETA", 0.0),
            weak_accuracy_threshold=_env_float("WEAK_ACCURACY_THRESHOLD", 0.7),
            strong_accuracy_threshold=_env_float("STRONG_ACCURACY_THRESHOLD", 0.85),
            exposure_control=_env_bool("EXPOSURE_CONTROL", True),
            selection_randomness=_env_float("SELECTION_RANDOMNESS", 0.0),
            total_assessments=_env_int("TOTAL_ASSESSMENTS", 1000),
        )

    def assessment_config(self, **overrides):
        """Default AssessmentConfig, with per-request overrides applied."""
        from .assessment_session import AssessmentConfig

        values = {
            "min_questions": self.min_questions,
            "max_questions": self.max_questions,
            "se_threshold": self.se_threshold,
            "starting_theta": self.starting_theta,
            "weak_accuracy_threshold": self.weak_accuracy_threshold,
            "strong_accuracy_threshold": self.strong_accuracy_threshold,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return AssessmentConfig(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
