"""Well-known filesystem locations used by the engine."""

from __future__ import annotations

import os
import sys
from pathlib import Path


def _is_frozen() -> bool:
    """True when running from a bundled executable."""
    return bool(getattr(sys, "frozen", False))


def _resource_root() -> Path:
    if _is_frozen() and hasattr(sys, "_MEIPASS"):
        return Path(sys._MEIPASS)
    return Path(__file__).resolve().parents[2]


PROJECT_ROOT = _resource_root()
PACKAGE_ROOT = PROJECT_ROOT / "tcc_manager"

# Bundled resources (the privileged helper lives in <resources>/bin)
RESOURCE_DIR = PROJECT_ROOT / "resources"

# Shipped defaults
CONFIG_PATH = PROJECT_ROOT / "config.txt"

HOME_DIR = Path.home()

# Authorization stores, queried in this order
USER_TCC_DB = HOME_DIR / "Library" / "Application Support" / "com.apple.TCC" / "TCC.db"
SYSTEM_TCC_DB = Path("/Library/Application Support/com.apple.TCC/TCC.db")

# Application search roots
USER_APPLICATIONS_DIR = HOME_DIR / "Applications"
SYSTEM_APPLICATIONS_DIR = Path("/Applications")

# Per-user state (cache, overrides, logs)
_STATE_ENV = os.environ.get("TCC_MANAGER_STATE_DIR")
USER_STATE_DIR = (
    Path(_STATE_ENV).expanduser()
    if _STATE_ENV
    else HOME_DIR / "Library" / "Application Support" / "TCC Manager"
)
USER_CONFIG_PATH = USER_STATE_DIR / "config.txt"
CACHE_FILE = USER_STATE_DIR / "apps_cache.json"
LOGS_DIR = USER_STATE_DIR / "logs"
LOG_FILE = LOGS_DIR / "tcc_manager.log"


__all__ = [
    "PROJECT_ROOT",
    "PACKAGE_ROOT",
    "RESOURCE_DIR",
    "CONFIG_PATH",
    "HOME_DIR",
    "USER_TCC_DB",
    "SYSTEM_TCC_DB",
    "USER_APPLICATIONS_DIR",
    "SYSTEM_APPLICATIONS_DIR",
    "USER_STATE_DIR",
    "USER_CONFIG_PATH",
    "CACHE_FILE",
    "LOGS_DIR",
    "LOG_FILE",
]
