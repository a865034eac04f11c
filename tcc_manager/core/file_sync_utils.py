"""fsync helpers used by atomic writes."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from .logging_utils import get_module_logger

logger = get_module_logger("FileSync")


def fsync_file(file_obj) -> bool:
    """Flush and fsync an open file object. Best effort; never raises."""
    try:
        file_obj.flush()
        os.fsync(file_obj.fileno())
        return True
    except (OSError, AttributeError, ValueError) as exc:
        logger.debug("fsync_file failed: %s", exc)
        return False


def fsync_directory(path: Union[str, Path]) -> bool:
    """fsync a directory so a rename inside it survives a crash."""
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError as exc:
        logger.debug("Cannot open directory %s for fsync: %s", path, exc)
        return False
    try:
        os.fsync(fd)
        return True
    except OSError as exc:
        logger.debug("fsync of directory %s failed: %s", path, exc)
        return False
    finally:
        os.close(fd)


__all__ = ["fsync_file", "fsync_directory"]
