"""Unit test fixtures for isolated, fast test execution.

This file provides:
- Temporary authorization databases with the real ``access`` table layout
- Fake app bundles on disk
- A harness wiring SyncOrchestrator to in-memory collaborators
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import pytest

from tcc_manager.cache.app_cache import AppCache
from tcc_manager.core.config_manager import EngineSettings
from tcc_manager.core.models import ServiceKind
from tcc_manager.store.reader import PermissionStore
from tcc_manager.store.writer import PermissionMutator
from tcc_manager.sync.orchestrator import SyncOrchestrator
from tests.infrastructure.helpers.tcc_db import Row, create_tcc_db
from tests.infrastructure.mocks.store_mocks import (
    InMemoryAuthStore,
    MemoryWriter,
    MockDiscovery,
    MockResolver,
    SYSTEM_DB,
    USER_DB,
    NoSleep,
)


# =============================================================================
# Store and bundle fixtures
# =============================================================================

@pytest.fixture
def tcc_db(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``tcc_db("user/TCC.db", rows=[(ServiceKind.CAMERA, "com.x", 2)])``."""

    def factory(name: str = "TCC.db", rows: Iterable[Row] = ()) -> Path:
        return create_tcc_db(tmp_path / name, rows)

    return factory


@pytest.fixture
def app_bundle(tmp_path: Path) -> Callable[..., Path]:
    """Factory creating an empty ``Name.app`` bundle directory."""

    def factory(name: str, parent: str = "Applications") -> Path:
        bundle = tmp_path / parent / f"{name}.app" / "Contents"
        bundle.mkdir(parents=True, exist_ok=True)
        return bundle.parent

    return factory


# =============================================================================
# Orchestrator harness
# =============================================================================

@dataclass
class Harness:
    orchestrator: SyncOrchestrator
    auth: InMemoryAuthStore
    writer: MemoryWriter
    discovery: MockDiscovery
    resolver: MockResolver
    cache: AppCache
    sleep: NoSleep

    def grant_row(self, identifier: str, service: ServiceKind, db: Path = USER_DB, value: int = 2) -> None:
        self.auth.set(db, service, identifier, value)


@pytest.fixture
def harness_factory(tmp_path: Path) -> Callable[..., Harness]:
    """Build an orchestrator over in-memory discovery, resolver and store.

    ``apps`` maps bundle path to bundle identifier (None for unreadable).
    """

    def factory(
        apps: Dict[str, Optional[str]],
        *,
        settings: Optional[EngineSettings] = None,
        lag: int = 0,
        writer_error: Optional[str] = None,
        cache_path: Optional[Path] = None,
    ) -> Harness:
        auth = InMemoryAuthStore()
        discovery = MockDiscovery(apps)
        resolver = MockResolver({path: ident for path, ident in apps.items() if ident})
        store = PermissionStore(resolver, auth, user_db=USER_DB, system_db=SYSTEM_DB)
        writer = MemoryWriter(auth, USER_DB, lag=lag, error=writer_error)
        mutator = PermissionMutator(resolver, writer)
        cache = AppCache(cache_path or tmp_path / "state" / "apps_cache.json")
        sleep = NoSleep()
        orchestrator = SyncOrchestrator(
            discovery,
            store,
            mutator,
            cache,
            settings=settings or EngineSettings(),
            sleep=sleep,
        )
        return Harness(orchestrator, auth, writer, discovery, resolver, cache, sleep)

    return factory
