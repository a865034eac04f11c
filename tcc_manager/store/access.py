"""Precondition check: can this process read the authorization store at all?

Reading the user store requires Full Disk Access. Without it every lookup
silently reports "not granted", so the orchestrator checks once at start-up
and surfaces a single warning instead of one failure per query.
"""

from __future__ import annotations

import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path

from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.process_utils import WorkerPool

from .reader import readonly_uri

logger = get_module_logger("StoreAccess")

PROBE_QUERY = "SELECT count(*) FROM sqlite_master"


@dataclass
class StoreAccessReport:
    db_path: Path
    exists: bool
    readable: bool
    queryable: bool
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.exists and self.readable and self.queryable

    def describe(self) -> str:
        if self.ok:
            return f"Authorization store is readable: {self.db_path}"
        if not self.exists:
            return f"Authorization store not found: {self.db_path}"
        reason = self.detail or "permission denied"
        return (
            f"Cannot read authorization store {self.db_path} ({reason}). "
            "Grant Full Disk Access to this program in System Settings > "
            "Privacy & Security, then restart it."
        )


def check_store_access(db_path: Path) -> StoreAccessReport:
    db_path = Path(db_path)
    if not db_path.exists():
        return StoreAccessReport(db_path, exists=False, readable=False, queryable=False)

    if not os.access(db_path, os.R_OK):
        return StoreAccessReport(
            db_path, exists=True, readable=False, queryable=False, detail="file is not readable"
        )

    try:
        conn = sqlite3.connect(readonly_uri(db_path), uri=True, timeout=1.0)
        try:
            conn.execute(PROBE_QUERY).fetchone()
        finally:
            conn.close()
    except sqlite3.Error as exc:
        return StoreAccessReport(db_path, exists=True, readable=True, queryable=False, detail=str(exc))

    return StoreAccessReport(db_path, exists=True, readable=True, queryable=True)


async def check_store_access_async(pool: WorkerPool, db_path: Path) -> StoreAccessReport:
    report = await pool.run_blocking(check_store_access, db_path)
    logger.debug("Store access for %s: %s", db_path, "ok" if report.ok else report.detail or "missing")
    return report


__all__ = ["StoreAccessReport", "check_store_access", "check_store_access_async"]
