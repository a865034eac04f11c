"""
Write path: grant or revoke one (app, service) authorization.

Two interchangeable strategies apply the change:

- ``HelperMutation`` runs the privileged ``tccplus`` helper
  (``add`` to grant, ``reset`` to revoke).
- ``DirectStoreMutation`` edits the user-scope database in place and
  checkpoints its write-ahead log so the change is visible immediately.
  The system-scope database is never written.

After a successful write ``PermissionMutator`` runs the store-notification
step; a failure there does not undo or fail the mutation.
"""

from __future__ import annotations

import os
import sqlite3
import time
from pathlib import Path
from typing import Optional, Protocol

from tcc_manager.core.errors import IdentifierNotFound, MutationFailed, ProcessError
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.models import (
    AUTH_VALUE_GRANTED,
    CLIENT_TYPE_BUNDLE_ID,
    INDIRECT_OBJECT_UNUSED,
    ServiceKind,
)
from tcc_manager.core.paths import USER_TCC_DB
from tcc_manager.core.process_utils import WorkerPool
from tcc_manager.discovery.identifier import IdentifierResolver

from .helper import HelperLocator
from .notifier import StoreNotifier

logger = get_module_logger("PermissionMutator")

# auth_reason 4 = "system set", auth_version 1 = current row format
AUTH_REASON_SYSTEM_SET = 4
AUTH_VERSION = 1
DEFAULT_FLAGS = 0

GRANT_SQL = (
    "INSERT OR REPLACE INTO access (service, client, client_type, auth_value, "
    "auth_reason, auth_version, indirect_object_identifier, flags, last_modified) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)"
)
REVOKE_SQL = (
    "DELETE FROM access WHERE service=? AND client=? AND client_type=? "
    "AND indirect_object_identifier=?"
)
CHECKPOINT_SQL = "PRAGMA wal_checkpoint(FULL)"


def action_name(grant: bool) -> str:
    return "grant" if grant else "revoke"


class WriteStrategy(Protocol):
    async def apply(self, identifier: str, service: ServiceKind, grant: bool) -> None:
        """Apply the change or raise MutationFailed."""
        ...


class HelperMutation:

    def __init__(self, pool: WorkerPool, locator: HelperLocator):
        self.pool = pool
        self.locator = locator

    def build_argv(self, helper: Path, identifier: str, service: ServiceKind, grant: bool):
        return [str(helper), "add" if grant else "reset", service.helper_name, identifier]

    async def apply(self, identifier: str, service: ServiceKind, grant: bool) -> None:
        action = action_name(grant)
        helper = self.locator.require(action, service.label)
        argv = self.build_argv(helper, identifier, service, grant)
        logger.debug("Running %s", " ".join(argv))

        try:
            result = await self.pool.run(argv)
        except ProcessError as exc:
            raise MutationFailed(action, service.label, str(exc)) from exc

        if not result.ok:
            detail = (result.stderr or result.stdout).strip() or f"exit status {result.returncode}"
            raise MutationFailed(action, service.label, detail)


class DirectStoreMutation:

    def __init__(self, pool: WorkerPool, *, db_path: Path = USER_TCC_DB, busy_timeout: float = 5.0):
        self.pool = pool
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout

    async def apply(self, identifier: str, service: ServiceKind, grant: bool) -> None:
        await self.pool.run_blocking(self._apply_sync, identifier, service, grant)

    def _connect(self) -> sqlite3.Connection:
        # mode=rw: never create a database that isn't there
        uri = f"{Path(os.path.abspath(self.db_path)).as_uri()}?mode=rw"
        return sqlite3.connect(uri, uri=True, timeout=self.busy_timeout)

    def _apply_sync(self, identifier: str, service: ServiceKind, grant: bool) -> None:
        action = action_name(grant)
        if not self.db_path.exists():
            raise MutationFailed(action, service.label, f"store not found: {self.db_path}")

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise MutationFailed(action, service.label, f"cannot open store: {exc}") from exc

        try:
            with conn:
                if grant:
                    conn.execute(GRANT_SQL, (
                        service.value,
                        identifier,
                        CLIENT_TYPE_BUNDLE_ID,
                        AUTH_VALUE_GRANTED,
                        AUTH_REASON_SYSTEM_SET,
                        AUTH_VERSION,
                        INDIRECT_OBJECT_UNUSED,
                        DEFAULT_FLAGS,
                        int(time.time()),
                    ))
                else:
                    conn.execute(REVOKE_SQL, (
                        service.value,
                        identifier,
                        CLIENT_TYPE_BUNDLE_ID,
                        INDIRECT_OBJECT_UNUSED,
                    ))
            conn.execute(CHECKPOINT_SQL).fetchall()
        except sqlite3.Error as exc:
            raise MutationFailed(action, service.label, str(exc)) from exc
        finally:
            conn.close()


class PermissionMutator:

    def __init__(
        self,
        resolver: IdentifierResolver,
        strategy: WriteStrategy,
        notifier: Optional[StoreNotifier] = None,
    ):
        self.resolver = resolver
        self.strategy = strategy
        self.notifier = notifier

    async def grant(self, bundle_path: str, service: ServiceKind) -> None:
        await self.set(bundle_path, service, True)

    async def revoke(self, bundle_path: str, service: ServiceKind) -> None:
        await self.set(bundle_path, service, False)

    async def set(self, bundle_path: str, service: ServiceKind, grant: bool) -> None:
        action = action_name(grant)
        try:
            identifier = await self.resolver.require(bundle_path)
        except IdentifierNotFound as exc:
            raise MutationFailed(action, service.label, f"could not read bundle identifier of {bundle_path}") from exc

        await self.strategy.apply(identifier, service, grant)
        logger.info("Applied %s %s for %s", action, service.label, identifier)

        if self.notifier is not None:
            try:
                await self.notifier.notify()
            except Exception as exc:  # pragma: no cover - notify() already absorbs failures
                logger.warning("Store notification failed after %s: %s", action, exc)


__all__ = [
    "DirectStoreMutation",
    "HelperMutation",
    "WriteStrategy",
    "PermissionMutator",
    "GRANT_SQL",
    "REVOKE_SQL",
    "action_name",
]
