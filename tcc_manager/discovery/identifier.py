"""Bundle identifier lookup via ``defaults read``."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from tcc_manager.core.errors import IdentifierNotFound, ProcessError
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.process_utils import WorkerPool

logger = get_module_logger("IdentifierResolver")

DEFAULTS = "/usr/bin/defaults"
BUNDLE_ID_KEY = "CFBundleIdentifier"


def info_plist_path(bundle_path: Union[str, Path]) -> Path:
    return Path(bundle_path) / "Contents" / "Info.plist"


class IdentifierResolver:
    """Stateless: safe to call concurrently for any number of bundles."""

    def __init__(self, pool: WorkerPool, *, reader: str = DEFAULTS):
        self.pool = pool
        self.reader = reader

    async def resolve(self, bundle_path: Union[str, Path]) -> Optional[str]:
        argv = [self.reader, "read", str(info_plist_path(bundle_path)), BUNDLE_ID_KEY]
        try:
            result = await self.pool.run(argv)
        except ProcessError as exc:
            logger.debug("Identifier lookup for %s failed: %s", bundle_path, exc)
            return None

        if not result.ok:
            logger.debug("No %s in %s: %s", BUNDLE_ID_KEY, bundle_path, result.stderr.strip())
            return None

        identifier = result.stdout.strip()
        return identifier or None

    async def require(self, bundle_path: Union[str, Path]) -> str:
        identifier = await self.resolve(bundle_path)
        if identifier is None:
            raise IdentifierNotFound(bundle_path)
        return identifier


__all__ = ["IdentifierResolver", "info_plist_path", "BUNDLE_ID_KEY"]
