"""Path management for zarf-core.

Manages the ~/.zarf/ directory structure.
"""

import tempfile
from pathlib import Path

# Base directory for all zarf-core data
ZARF_DIR = Path.home() / ".zarf"

# CLI config file
CONFIG_FILE = ZARF_DIR / "config.yaml"

# Log directory
LOG_DIR = ZARF_DIR / "logs"


def ensure_dirs() -> None:
    """Create directory structure if missing.

    Creates ~/.zarf/ and ~/.zarf/logs/ with user-only access.
    """
    ZARF_DIR.mkdir(mode=0o700, exist_ok=True)
    LOG_DIR.mkdir(mode=0o700, exist_ok=True)


def get_log_file(name: str = "zarf") -> Path:
    """Get path to a log file.

    Args:
        name: Log file name (without extension)

    Returns:
        Path to the log file
    """
    return LOG_DIR / f"{name}.log"


def make_temp_dir(base: str | Path | None = None) -> Path:
    """Create a private scratch directory for one run.

    Args:
        base: Parent directory; the system temp dir when omitted.

    Returns:
        Path to the new directory
    """
    return Path(tempfile.mkdtemp(prefix="zarf-", dir=str(base) if base else None))
