"""Environment-driven settings for the Ace client and fallback cache."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

DEFAULT_FALLBACK_DIR = _PROJECT_ROOT / "fallback"
DEFAULT_TRACKER_DB = _PROJECT_ROOT / "api_tracker.db"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime configuration. Build with ``Settings.from_env()``."""

    database: str = ""
    username: str = ""
    password: str = ""
    server: str = "my.geotab.com"
    demo_mode: bool = False
    fallback_dir: Path = DEFAULT_FALLBACK_DIR
    http_timeout: float = 30.0
    tracker_db: Path | None = DEFAULT_TRACKER_DB

    @classmethod
    def from_env(cls, dotenv: bool = True) -> Settings:
        """Read settings from the process environment (and ``.env`` if present)."""
        if dotenv:
            load_dotenv()

        tracker_raw = os.getenv("ACE_TRACKER_DB")
        if tracker_raw is None:
            tracker_db: Path | None = DEFAULT_TRACKER_DB
        elif tracker_raw.strip() == "":
            tracker_db = None  # tracking disabled
        else:
            tracker_db = Path(tracker_raw)

        return cls(
            database=os.getenv("GEOTAB_DATABASE", ""),
            username=os.getenv("GEOTAB_USERNAME", ""),
            password=os.getenv("GEOTAB_PASSWORD", ""),
            server=os.getenv("GEOTAB_SERVER", "my.geotab.com"),
            demo_mode=_env_flag("ACE_DEMO_MODE"),
            fallback_dir=Path(os.getenv("ACE_FALLBACK_DIR", str(DEFAULT_FALLBACK_DIR))),
            http_timeout=float(os.getenv("ACE_HTTP_TIMEOUT", "30")),
            tracker_db=tracker_db,
        )

    @property
    def has_credentials(self) -> bool:
        return all([self.database, self.username, self.password])


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY
