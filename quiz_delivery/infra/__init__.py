"""
Infrastructure module - logging, paths, and settings.
"""

from .data_paths import (
    get_project_root,
    get_data_root,
    get_delivery_db_path,
    get_attempts_dir,
    get_logs_dir,
    get_delivery_workers,
    is_recovery_enabled,
    get_log_level,
    ensure_data_directories,
)

from .logging_config import setup_logging

__all__ = [
    # data_paths
    "get_project_root",
    "get_data_root",
    "get_delivery_db_path",
    "get_attempts_dir",
    "get_logs_dir",
    "get_delivery_workers",
    "is_recovery_enabled",
    "get_log_level",
    "ensure_data_directories",
    # logging
    "setup_logging",
]
