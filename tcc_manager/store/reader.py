"""
Read path for the two-tier authorization store.

Each service is looked up in the user-scope database first and the
system-scope database second; the first store that has a row decides.
``auth_value == 2`` means granted, anything else (or no row anywhere)
means not granted. Store and query failures never escape a batch: they
degrade to "not granted" for the affected app.
"""

from __future__ import annotations

import asyncio
import json
import os
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol, Sequence, Tuple, Union

from tcc_manager.core.errors import ProcessError, QueryFailed, StoreUnavailable
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.models import (
    ALL_SERVICES,
    AUTH_VALUE_GRANTED,
    PermissionState,
    ServiceKind,
)
from tcc_manager.core.paths import SYSTEM_TCC_DB, USER_TCC_DB
from tcc_manager.core.process_utils import WorkerPool
from tcc_manager.discovery.identifier import IdentifierResolver

logger = get_module_logger("PermissionStore")

READ_QUERY = "SELECT auth_value FROM access WHERE service=? AND client=?"
SQLITE3 = "/usr/bin/sqlite3"
BUSY_TIMEOUT = 5.0

LookupResult = Tuple[Optional[str], PermissionState]


def readonly_uri(db_path: Union[str, Path]) -> str:
    """URI for a private-cache, read-only connection to ``db_path``."""
    absolute = Path(os.path.abspath(db_path))
    return f"{absolute.as_uri()}?mode=ro&cache=private"


class StoreQuery(Protocol):
    """Fetch the raw ``auth_value`` for one (service, client) pair.

    Returns None when the store has no matching row. Raises StoreUnavailable
    or QueryFailed when the store cannot answer.
    """

    async def fetch(self, db_path: Path, service: ServiceKind, client: str) -> Optional[int]:
        ...


class DirectQuery:
    """One short-lived read-only sqlite connection per lookup.

    The connection uses a private page cache, keeps no prepared statements
    and runs in WAL-aware read-only mode, so rows committed by an external
    writer are visible to the very next lookup.
    """

    def __init__(self, pool: WorkerPool, *, busy_timeout: float = BUSY_TIMEOUT):
        self.pool = pool
        self.busy_timeout = busy_timeout

    async def fetch(self, db_path: Path, service: ServiceKind, client: str) -> Optional[int]:
        return await self.pool.run_blocking(self._fetch_sync, Path(db_path), service.value, client)

    def _fetch_sync(self, db_path: Path, service: str, client: str) -> Optional[int]:
        if not db_path.exists():
            raise StoreUnavailable(db_path, "file not found")

        try:
            conn = sqlite3.connect(
                readonly_uri(db_path),
                uri=True,
                timeout=self.busy_timeout,
                cached_statements=0,
                check_same_thread=False,
            )
        except sqlite3.Error as exc:
            raise StoreUnavailable(db_path, str(exc)) from exc

        try:
            conn.execute("PRAGMA query_only = ON")
            row = conn.execute(READ_QUERY, (service, client)).fetchone()
        except sqlite3.Error as exc:
            raise QueryFailed(db_path, str(exc)) from exc
        finally:
            conn.close()

        if row is None:
            return None
        value = row[0]
        if isinstance(value, int):
            return value
        try:
            return int(value)
        except (TypeError, ValueError):
            return None


def _sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def decode_auth_rows(output: str) -> Optional[int]:
    """Decode ``sqlite3 -json`` output for the read query.

    Accepts only an empty document or a list of objects whose first entry
    carries an integer ``auth_value``. Raises ValueError on anything else.
    """
    text = output.strip()
    if not text:
        return None
    rows = json.loads(text)
    if not isinstance(rows, list):
        raise ValueError("expected a JSON array of rows")
    if not rows:
        return None
    first = rows[0]
    if not isinstance(first, dict):
        raise ValueError("expected row objects")
    value = first.get("auth_value")
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"auth_value is not an integer: {value!r}")
    return value


class ScriptedQuery:
    """Lookup through the ``sqlite3`` command-line tool.

    Every lookup is a fresh process, so nothing is cached between reads.
    Output that does not match the expected row shape fails closed.
    """

    def __init__(self, pool: WorkerPool, *, tool: str = SQLITE3):
        self.pool = pool
        self.tool = tool

    def build_argv(self, db_path: Path, service: ServiceKind, client: str) -> Sequence[str]:
        sql = (
            "SELECT auth_value FROM access "
            f"WHERE service={_sql_literal(service.value)} AND client={_sql_literal(client)};"
        )
        return [self.tool, "-readonly", "-json", str(db_path), sql]

    async def fetch(self, db_path: Path, service: ServiceKind, client: str) -> Optional[int]:
        db_path = Path(db_path)
        if not await asyncio.to_thread(db_path.exists):
            raise StoreUnavailable(db_path, "file not found")

        try:
            result = await self.pool.run(self.build_argv(db_path, service, client))
        except ProcessError as exc:
            raise QueryFailed(db_path, str(exc)) from exc

        if not result.ok:
            detail = result.stderr.strip() or f"exit status {result.returncode}"
            if "unable to open" in detail or "authorization denied" in detail:
                raise StoreUnavailable(db_path, detail)
            raise QueryFailed(db_path, detail)

        try:
            return decode_auth_rows(result.stdout)
        except ValueError as exc:
            raise QueryFailed(db_path, f"malformed output: {exc}") from exc


class PermissionStore:

    def __init__(
        self,
        resolver: IdentifierResolver,
        strategy: StoreQuery,
        *,
        user_db: Path = USER_TCC_DB,
        system_db: Path = SYSTEM_TCC_DB,
    ):
        self.resolver = resolver
        self.strategy = strategy
        self.user_db = Path(user_db)
        self.system_db = Path(system_db)

    @property
    def databases(self) -> Tuple[Path, Path]:
        """Stores in lookup priority order."""
        return (self.user_db, self.system_db)

    async def is_granted(self, identifier: str, service: ServiceKind) -> bool:
        for db_path in self.databases:
            try:
                value = await self.strategy.fetch(db_path, service, identifier)
            except (StoreUnavailable, QueryFailed) as exc:
                logger.debug("%s for %s/%s: %s", type(exc).__name__, identifier, service.label, exc)
                continue
            if value is not None:
                return value == AUTH_VALUE_GRANTED
        return False

    async def query_identifier(
        self,
        identifier: str,
        services: Iterable[ServiceKind] = ALL_SERVICES,
    ) -> PermissionState:
        state = PermissionState()
        for service in services:
            state = state.with_service(service, await self.is_granted(identifier, service))
        return state

    async def lookup(
        self,
        bundle_path: str,
        services: Iterable[ServiceKind] = ALL_SERVICES,
    ) -> LookupResult:
        """Resolve the identifier of ``bundle_path`` and read its state."""
        identifier = await self.resolver.resolve(bundle_path)
        if identifier is None:
            return None, PermissionState()
        return identifier, await self.query_identifier(identifier, services)

    async def query(
        self,
        bundle_path: str,
        services: Iterable[ServiceKind] = ALL_SERVICES,
    ) -> PermissionState:
        _, state = await self.lookup(bundle_path, services)
        return state

    async def query_batch(
        self,
        bundle_paths: Sequence[str],
        services: Iterable[ServiceKind] = ALL_SERVICES,
    ) -> Dict[str, LookupResult]:
        """Look up every app concurrently and return once all have finished.

        Concurrency is bounded by the worker pool. An app whose lookup raises
        is reported with the default not-granted state.
        """
        service_list = tuple(services)
        results = await asyncio.gather(
            *(self.lookup(path, service_list) for path in bundle_paths),
            return_exceptions=True,
        )

        batch: Dict[str, LookupResult] = {}
        failures = 0
        for path, result in zip(bundle_paths, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                failures += 1
                logger.warning("Permission query for %s failed: %s", path, result)
                batch[path] = (None, PermissionState())
            else:
                batch[path] = result

        logger.info("Queried %d apps (%d failed)", len(batch), failures)
        return batch


__all__ = [
    "DirectQuery",
    "PermissionStore",
    "ScriptedQuery",
    "StoreQuery",
    "READ_QUERY",
    "decode_auth_rows",
    "readonly_uri",
]
