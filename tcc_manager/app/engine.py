"""Builds the engine's services from settings and wires them together."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tcc_manager.cache.app_cache import AppCache
from tcc_manager.core.config_manager import (
    EngineSettings,
    MutationStrategy,
    QueryStrategy,
)
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.paths import (
    CACHE_FILE,
    RESOURCE_DIR,
    SYSTEM_APPLICATIONS_DIR,
    SYSTEM_TCC_DB,
    USER_APPLICATIONS_DIR,
    USER_TCC_DB,
)
from tcc_manager.core.process_utils import WorkerPool
from tcc_manager.discovery.identifier import IdentifierResolver
from tcc_manager.discovery.scanner import AppDiscovery
from tcc_manager.store.access import check_store_access_async
from tcc_manager.store.helper import HelperLocator, default_candidates
from tcc_manager.store.notifier import StoreNotifier
from tcc_manager.store.reader import DirectQuery, PermissionStore, ScriptedQuery
from tcc_manager.store.writer import DirectStoreMutation, HelperMutation, PermissionMutator
from tcc_manager.sync.orchestrator import SyncOrchestrator

logger = get_module_logger("Engine")


@dataclass
class EngineLocations:
    user_db: Path = USER_TCC_DB
    system_db: Path = SYSTEM_TCC_DB
    user_apps: Path = USER_APPLICATIONS_DIR
    system_apps: Path = SYSTEM_APPLICATIONS_DIR
    cache_file: Path = CACHE_FILE
    resource_dir: Path = RESOURCE_DIR


@dataclass
class Engine:
    settings: EngineSettings
    pool: WorkerPool
    discovery: AppDiscovery
    resolver: IdentifierResolver
    store: PermissionStore
    mutator: PermissionMutator
    cache: AppCache
    orchestrator: SyncOrchestrator


def build_engine(
    settings: Optional[EngineSettings] = None,
    locations: Optional[EngineLocations] = None,
) -> Engine:
    settings = settings or EngineSettings()
    where = locations or EngineLocations()

    pool = WorkerPool(max_concurrency=settings.max_concurrency, timeout=settings.process_timeout)
    discovery = AppDiscovery(pool, user_dir=where.user_apps, system_dir=where.system_apps)
    resolver = IdentifierResolver(pool)

    if settings.query_strategy is QueryStrategy.SCRIPTED:
        query = ScriptedQuery(pool)
    else:
        query = DirectQuery(pool)
    store = PermissionStore(resolver, query, user_db=where.user_db, system_db=where.system_db)

    if settings.mutation_strategy is MutationStrategy.DIRECT:
        writer = DirectStoreMutation(pool, db_path=where.user_db)
    else:
        locator = HelperLocator(default_candidates(settings.helper_paths, resource_dir=where.resource_dir))
        writer = HelperMutation(pool, locator)

    notifier = StoreNotifier(pool, db_path=where.user_db) if settings.notify_store else None
    mutator = PermissionMutator(resolver, writer, notifier)
    cache = AppCache(where.cache_file)

    orchestrator = SyncOrchestrator(
        discovery,
        store,
        mutator,
        cache,
        settings=settings,
        access_probe=lambda: check_store_access_async(pool, where.user_db),
    )

    logger.debug(
        "Engine built: query=%s mutation=%s policy=%s concurrency=%d",
        settings.query_strategy.value,
        settings.mutation_strategy.value,
        settings.verify_policy.value,
        settings.max_concurrency,
    )
    return Engine(settings, pool, discovery, resolver, store, mutator, cache, orchestrator)


__all__ = ["Engine", "EngineLocations", "build_engine"]
