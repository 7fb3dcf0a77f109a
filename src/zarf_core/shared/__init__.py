"""Shared modules for zarf-core.

This module provides functionality used across the orchestrator, the
bootstrap injector and the CLI:
- Logging setup
- Filesystem paths
"""

from .logging import configure_logging, get_logger
from .paths import (
    CONFIG_FILE,
    LOG_DIR,
    ZARF_DIR,
    ensure_dirs,
    get_log_file,
    make_temp_dir,
)

__all__ = [
    # Paths
    "ZARF_DIR",
    "CONFIG_FILE",
    "LOG_DIR",
    "ensure_dirs",
    "get_log_file",
    "make_temp_dir",
    # Logging
    "configure_logging",
    "get_logger",
]
