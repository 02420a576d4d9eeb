"""
Environment driven settings and logging setup.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value.strip() if value and value.strip() else None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once at startup."""

    db_path: Path = Path("data/catalog.db")
    google_books_api_key: Optional[str] = None
    nyt_api_key: Optional[str] = None
    external_fallback_enabled: bool = True
    backfill_enabled: bool = False
    external_timeout_seconds: float = 3.0
    backfill_rate_per_second: float = 1.0
    backfill_max_concurrent: int = 2
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        return cls(
            db_path=Path(os.getenv("BOOKMETA_DB_PATH", "data/catalog.db")),
            google_books_api_key=_env_optional("GOOGLE_BOOKS_API_KEY"),
            nyt_api_key=_env_optional("NYT_API_KEY"),
            external_fallback_enabled=_env_bool("BOOKMETA_EXTERNAL_FALLBACK_ENABLED", True),
            backfill_enabled=_env_bool("BOOKMETA_BACKFILL_ENABLED", False),
            external_timeout_seconds=float(os.getenv("BOOKMETA_EXTERNAL_TIMEOUT_SECONDS", "3.0")),
            backfill_rate_per_second=float(os.getenv("BOOKMETA_BACKFILL_RATE_PER_SECOND", "1.0")),
            backfill_max_concurrent=int(os.getenv("BOOKMETA_BACKFILL_MAX_CONCURRENT", "2")),
            log_level=os.getenv("BOOKMETA_LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, force=True)
