"""
Installed-application discovery.

Spotlight's metadata index is asked first, scoped to the user and system
Applications folders. When the index is unavailable or finds nothing, a
bounded ``find`` walk of the same folders is used instead.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Optional, Set

from tcc_manager.core.errors import DiscoveryUnavailable, ProcessError
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.paths import SYSTEM_APPLICATIONS_DIR, USER_APPLICATIONS_DIR
from tcc_manager.core.process_utils import WorkerPool

logger = get_module_logger("AppDiscovery")

MDFIND = "/usr/bin/mdfind"
FIND = "/usr/bin/find"

APP_CONTENT_TYPE = "com.apple.application-bundle"
USER_INDEX_QUERY = f"kMDItemContentType == '{APP_CONTENT_TYPE}'"
# Apple-shipped apps in /Applications carry kMDItemSystemContent = 1
SYSTEM_INDEX_QUERY = f"{USER_INDEX_QUERY} && kMDItemSystemContent != 1"

APP_NAME_PATTERN = "*.app"
USER_WALK_DEPTH = 3
SYSTEM_WALK_DEPTH = 1


class AppDiscovery:

    def __init__(
        self,
        pool: WorkerPool,
        *,
        user_dir: Path = USER_APPLICATIONS_DIR,
        system_dir: Path = SYSTEM_APPLICATIONS_DIR,
        index_tool: Optional[str] = MDFIND,
        walk_tool: str = FIND,
    ):
        self.pool = pool
        self.user_dir = Path(user_dir)
        self.system_dir = Path(system_dir)
        self.index_tool = index_tool
        self.walk_tool = walk_tool

    def index_available(self) -> bool:
        return bool(self.index_tool) and shutil.which(self.index_tool) is not None

    async def discover(self) -> List[str]:
        """Return the sorted, de-duplicated bundle paths of installed apps."""
        try:
            return await self._discover()
        except DiscoveryUnavailable as exc:
            logger.warning("%s", exc)
            return []

    async def _discover(self) -> List[str]:
        apps: Set[str] = set()

        if self.index_available():
            apps |= await self._query_index(self.user_dir, USER_INDEX_QUERY)
            apps |= await self._query_index(self.system_dir, SYSTEM_INDEX_QUERY)
            logger.debug("Metadata index returned %d apps", len(apps))
        else:
            logger.debug("Metadata index tool %s not available", self.index_tool)

        if not apps:
            apps |= await self._walk(self.user_dir, USER_WALK_DEPTH)
            apps |= await self._walk(self.system_dir, SYSTEM_WALK_DEPTH)
            logger.debug("Directory walk returned %d apps", len(apps))

        if not apps:
            raise DiscoveryUnavailable(
                f"No applications found in {self.user_dir} or {self.system_dir}"
            )

        logger.info("Discovered %d applications", len(apps))
        return sorted(apps)

    async def _query_index(self, directory: Path, query: str) -> Set[str]:
        if not directory.is_dir():
            return set()
        argv = [self.index_tool, "-onlyin", str(directory), query]
        return await self._collect(argv, directory)

    async def _walk(self, directory: Path, max_depth: int) -> Set[str]:
        if not directory.is_dir():
            return set()
        argv = [
            self.walk_tool,
            str(directory),
            "-name", APP_NAME_PATTERN,
            "-type", "d",
            "-maxdepth", str(max_depth),
        ]
        return await self._collect(argv, directory)

    async def _collect(self, argv: List[str], directory: Path) -> Set[str]:
        try:
            result = await self.pool.run(argv)
        except ProcessError as exc:
            logger.debug("Search of %s failed: %s", directory, exc)
            return set()

        # find reports unreadable subfolders with a non-zero exit but still
        # prints everything it could reach
        if not result.ok:
            logger.debug(
                "%s exited %d for %s: %s",
                argv[0], result.returncode, directory, result.stderr.strip(),
            )
        paths = {line.rstrip("/") for line in result.lines}
        return {path for path in paths if path.endswith(".app")}


__all__ = ["AppDiscovery"]
