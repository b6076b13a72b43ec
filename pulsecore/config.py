"""
pulsecore Configuration

Centralized configuration for the correlation pipeline.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Storage Configuration
# =============================================================================

DEFAULT_DB_PATH = Path.cwd() / "data" / "pulse.db"

DB_PATH = os.environ.get("PULSE_DB_PATH", str(DEFAULT_DB_PATH))
DB_TIMEOUT = float(os.environ.get("PULSE_DB_TIMEOUT", "30"))


# =============================================================================
# Pipeline Configuration
# =============================================================================

REDACTION_PROFILE = os.environ.get("PULSE_REDACTION_PROFILE", "standard")

# Optional YAML file with custom redaction profiles
REDACTION_PROFILES_FILE = os.environ.get("PULSE_REDACTION_PROFILES", "")

FINGERPRINT_TOP_FRAMES = int(os.environ.get("PULSE_FINGERPRINT_TOP_FRAMES", "5"))
FINGERPRINT_INCLUDE_ROUTE = _env_bool("PULSE_FINGERPRINT_INCLUDE_ROUTE", False)

CORRELATOR_MAX_RETRIES = int(os.environ.get("PULSE_CORRELATOR_MAX_RETRIES", "3"))
OCCURRENCE_WINDOW_HOURS = int(os.environ.get("PULSE_OCCURRENCE_WINDOW_HOURS", "24"))


# =============================================================================
# Logging Configuration
# =============================================================================

LOG_LEVEL = os.environ.get("PULSE_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for CLI and embedding processes.

    Args:
        level: Level name, defaults to PULSE_LOG_LEVEL
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format=LOG_FORMAT,
    )


@dataclass(frozen=True)
class Settings:
    """
    Snapshot of pipeline settings.

    Built once at process start and handed to PipelineContext, so tests can
    override individual values without touching the environment.
    """

    db_path: str = DB_PATH
    db_timeout: float = DB_TIMEOUT
    redaction_profile: str = REDACTION_PROFILE
    redaction_profiles_file: str = REDACTION_PROFILES_FILE
    fingerprint_top_frames: int = FINGERPRINT_TOP_FRAMES
    fingerprint_include_route: bool = FINGERPRINT_INCLUDE_ROUTE
    correlator_max_retries: int = CORRELATOR_MAX_RETRIES
    occurrence_window_hours: int = OCCURRENCE_WINDOW_HOURS

    @classmethod
    def from_env(cls) -> "Settings":
        """Read settings from the current environment."""
        return cls(
            db_path=os.environ.get("PULSE_DB_PATH", str(DEFAULT_DB_PATH)),
            db_timeout=float(os.environ.get("PULSE_DB_TIMEOUT", "30")),
            redaction_profile=os.environ.get("PULSE_REDACTION_PROFILE", "standard"),
            redaction_profiles_file=os.environ.get("PULSE_REDACTION_PROFILES", ""),
            fingerprint_top_frames=int(os.environ.get("PULSE_FINGERPRINT_TOP_FRAMES", "5")),
            fingerprint_include_route=_env_bool("PULSE_FINGERPRINT_INCLUDE_ROUTE", False),
            correlator_max_retries=int(os.environ.get("PULSE_CORRELATOR_MAX_RETRIES", "3")),
            occurrence_window_hours=int(os.environ.get("PULSE_OCCURRENCE_WINDOW_HOURS", "24")),
        )


# Print configuration on import (for debugging)
if __name__ == "__main__":
    settings = Settings.from_env()
    print("pulsecore Configuration")
    print("=" * 50)
    for name, value in settings.__dict__.items():
        print(f"  {name}: {value}")
