from dotenv import load_dotenv
from dataclasses import dataclass
from pathlib import Path
import json
import logging
import os

from storecrawl.constants import (
    DEFAULT_CHROME_VERSION,
    DEFAULT_MAX_CONCURRENT_PAGES,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
)

load_dotenv()  # Loads variables from .env file

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """
    Manages application settings loaded from environment variables.
    """
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///storecrawl.db")  # Default to SQLite

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")

    # Browser session
    HEADLESS = _env_bool("HEADLESS", True)
    BROWSER_TYPE = os.getenv("BROWSER_TYPE", "chromium")
    MAX_CONCURRENT_PAGES = int(os.getenv("MAX_CONCURRENT_PAGES", str(DEFAULT_MAX_CONCURRENT_PAGES)))
    CHROME_VERSION = os.getenv("CHROME_VERSION", DEFAULT_CHROME_VERSION)


settings = Settings()


@dataclass
class CrawlerThresholds:
    """Configurable bounds for pacing, retries and failure handling."""

    # Human-like behaviour simulation (seconds unless noted)
    human_sim_min_pre_nav_delay: float = 0.5
    human_sim_max_pre_nav_delay: float = 1.4
    human_sim_min_post_load_delay: float = 0.7
    human_sim_max_post_load_delay: float = 1.2
    human_sim_min_hover_ms: int = 16
    human_sim_max_hover_ms: int = 142
    human_sim_scroll_steps: int = 5
    human_sim_min_scroll_px: int = 66
    human_sim_max_scroll_px: int = 99
    human_sim_fast_mode: bool = False  # Skip all human simulation when True

    # Failure handling
    consecutive_failure_threshold: int = 3  # Transient page failures in a row before aborting

    # Browser session resource retries
    session_acquire_attempts: int = 3
    session_backoff_base_seconds: float = 2.0
    session_backoff_max_seconds: float = 30.0
    drain_timeout_seconds: float = 30.0

    # Navigation
    default_navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS

    # Ingestion
    ingest_batch_size: int = 100

    @classmethod
    def from_env(cls) -> "CrawlerThresholds":
        """Load thresholds from environment variables.

        Environment variables should be prefixed with STORECRAWL_THRESHOLD_
        e.g., STORECRAWL_THRESHOLD_CONSECUTIVE_FAILURE_THRESHOLD=5

        Returns:
            CrawlerThresholds with values from environment
        """
        thresholds = cls()
        prefix = "STORECRAWL_THRESHOLD_"

        for field_name in thresholds.__dataclass_fields__:
            env_key = f"{prefix}{field_name.upper()}"
            env_value = os.getenv(env_key)

            if env_value is not None:
                field_type = thresholds.__dataclass_fields__[field_name].type
                try:
                    if field_type in (bool, "bool"):
                        setattr(thresholds, field_name, env_value.strip().lower() in ("1", "true", "yes", "on"))
                    elif field_type in (int, "int"):
                        setattr(thresholds, field_name, int(env_value))
                    elif field_type in (float, "float"):
                        setattr(thresholds, field_name, float(env_value))
                except ValueError:
                    logger.warning("Ignoring invalid value for %s: %r", env_key, env_value)

        return thresholds

    @classmethod
    def from_file(cls, path: str) -> "CrawlerThresholds":
        """Load thresholds from a JSON configuration file.

        Args:
            path: Path to JSON configuration file

        Returns:
            CrawlerThresholds with values from file
        """
        thresholds = cls()
        file_path = Path(path)

        if not file_path.exists():
            return thresholds

        with open(file_path, 'r') as f:
            config = json.load(f)

        threshold_config = config.get('thresholds', config)

        for field_name in thresholds.__dataclass_fields__:
            if field_name in threshold_config:
                setattr(thresholds, field_name, threshold_config[field_name])

        return thresholds

    def to_dict(self) -> dict:
        """Convert thresholds to dictionary."""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }

    def save_to_file(self, path: str) -> None:
        """Save current thresholds to a JSON file."""
        with open(path, 'w') as f:
            json.dump({'thresholds': self.to_dict()}, f, indent=2)


# Global default thresholds instance
default_thresholds = CrawlerThresholds()
