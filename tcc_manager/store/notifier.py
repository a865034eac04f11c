"""Nudges observers of the authorization store after a write.

Touches the database file, restarts the store daemon so it drops its
in-memory view, and posts the change notifications the privacy settings
pane listens for. Every step is best effort.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Sequence

from tcc_manager.core.errors import ProcessError
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.paths import USER_TCC_DB
from tcc_manager.core.process_utils import WorkerPool

logger = get_module_logger("StoreNotifier")

KILLALL = "/usr/bin/killall"
NOTIFYUTIL = "/usr/bin/notifyutil"
STORE_DAEMON = "tccd"
STORE_NOTIFICATIONS = (
    "com.apple.TCC.access.changed",
    "com.apple.tcc.access.changed",
)


class StoreNotifier:

    def __init__(
        self,
        pool: WorkerPool,
        *,
        db_path: Path = USER_TCC_DB,
        daemon: str = STORE_DAEMON,
        notifications: Sequence[str] = STORE_NOTIFICATIONS,
        killall: str = KILLALL,
        notifyutil: str = NOTIFYUTIL,
    ):
        self.pool = pool
        self.db_path = Path(db_path)
        self.daemon = daemon
        self.notifications = tuple(notifications)
        self.killall = killall
        self.notifyutil = notifyutil

    async def notify(self) -> bool:
        """Run every notification step; True only if all of them succeeded."""
        touched = await self._touch()
        signalled = await self._run([self.killall, self.daemon])
        posted = True
        for name in self.notifications:
            posted = await self._run([self.notifyutil, "-p", name]) and posted
        ok = touched and signalled and posted
        if not ok:
            logger.debug("Store notification incomplete (touch=%s daemon=%s post=%s)", touched, signalled, posted)
        return ok

    async def _touch(self) -> bool:
        try:
            await asyncio.to_thread(os.utime, self.db_path, None)
            return True
        except OSError as exc:
            logger.debug("Could not touch %s: %s", self.db_path, exc)
            return False

    async def _run(self, argv: Sequence[str]) -> bool:
        try:
            result = await self.pool.run(argv)
        except ProcessError as exc:
            logger.debug("%s", exc)
            return False
        if not result.ok:
            logger.debug("%s exited %d: %s", argv[0], result.returncode, result.stderr.strip())
        return result.ok


__all__ = ["StoreNotifier", "STORE_NOTIFICATIONS", "STORE_DAEMON"]
