"""
Data path and settings helpers.

Directory structure:
data/
 ├── attempts/              # <attempt_id>.json attempt documents
 └── delivery_jobs.db       # Delivery job store (SQLite)
logs/                       # quiz_delivery_YYYYMMDD_<START>.log

Environment Variables:
- DELIVERY_DB_PATH: Job store path (default: data/delivery_jobs.db)
- ATTEMPTS_DIR: Attempt documents directory (default: data/attempts)
- DELIVERY_WORKERS: Concurrent background jobs (default: 4)
- DELIVERY_RECOVER_ON_STARTUP: Fail orphaned jobs at startup (default: true)
- LOG_DIR: Log directory (default: logs)
- LOG_LEVEL: Logging level (default: INFO)

Relative paths are resolved against the project root.
"""

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_DELIVERY_WORKERS = 4


# =============================================================================
# Environment Variable Helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_path(key: str, default: Path) -> Path:
    val = os.getenv(key, "").strip()
    if not val:
        return default
    path = Path(val)
    if not path.is_absolute():
        path = get_project_root() / path
    return path


# =============================================================================
# Base Paths
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    File is at quiz_delivery/infra/data_paths.py, so project root is 2 levels up.
    """
    return Path(__file__).parent.parent.parent.resolve()


def get_data_root() -> Path:
    return get_project_root() / "data"


def get_delivery_db_path() -> Path:
    return _get_env_path("DELIVERY_DB_PATH", get_data_root() / "delivery_jobs.db")


def get_attempts_dir() -> Path:
    return _get_env_path("ATTEMPTS_DIR", get_data_root() / "attempts")


def get_logs_dir() -> Path:
    return _get_env_path("LOG_DIR", get_project_root() / "logs")


# =============================================================================
# Settings
# =============================================================================

def get_delivery_workers() -> int:
    """Worker pool size, at least 1."""
    workers = _get_env_int("DELIVERY_WORKERS", DEFAULT_DELIVERY_WORKERS)
    if workers < 1:
        logger.warning(f"DELIVERY_WORKERS must be positive, using default: {DEFAULT_DELIVERY_WORKERS}")
        return DEFAULT_DELIVERY_WORKERS
    return workers


def is_recovery_enabled() -> bool:
    return _get_env_bool("DELIVERY_RECOVER_ON_STARTUP", default=True)


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO")


def ensure_data_directories() -> None:
    """Create the data directories used by the service."""
    get_delivery_db_path().parent.mkdir(parents=True, exist_ok=True)
    get_attempts_dir().mkdir(parents=True, exist_ok=True)
