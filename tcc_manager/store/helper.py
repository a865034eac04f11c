"""Locates the privileged permission helper (``tccplus``)."""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence

from tcc_manager.core.errors import HelperNotExecutable, HelperNotFound
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.paths import HOME_DIR, RESOURCE_DIR

logger = get_module_logger("HelperLocator")

HELPER_NAME = "tccplus"


def default_candidates(
    extra_paths: Sequence[Path] = (),
    *,
    resource_dir: Path = RESOURCE_DIR,
    home: Path = HOME_DIR,
) -> List[Path]:
    """Probe order: bundled resource, configured paths, install locations."""
    return [
        resource_dir / "bin" / HELPER_NAME,
        *(Path(path) for path in extra_paths),
        Path("/usr/local/bin") / HELPER_NAME,
        Path("/opt/homebrew/bin") / HELPER_NAME,
        home / "bin" / HELPER_NAME,
    ]


class HelperLocator:
    """Resolves the helper once, at construction, from an ordered list.

    ``$PATH`` is consulted last when ``search_path`` is true.
    """

    def __init__(self, candidates: Sequence[Path], *, search_path: bool = True):
        self.candidates = [Path(path) for path in candidates]
        self.search_path = search_path
        self.path: Optional[Path] = self._probe()
        if self.path is None:
            logger.warning("Permission helper %s not found in %d locations", HELPER_NAME, len(self.candidates))
        else:
            logger.debug("Using permission helper %s", self.path)

    def _probe(self) -> Optional[Path]:
        for candidate in self.candidates:
            if candidate.is_file():
                return candidate
        if self.search_path:
            found = shutil.which(HELPER_NAME)
            if found:
                return Path(found)
        return None

    def require(self, action: str, service: str) -> Path:
        if self.path is None:
            raise HelperNotFound(action, service, self.candidates)
        if not os.access(self.path, os.X_OK):
            raise HelperNotExecutable(action, service, self.path)
        return self.path


__all__ = ["HELPER_NAME", "HelperLocator", "default_candidates"]
