"""
Sync Orchestrator - keeps the in-memory app list, the authorization store
and the on-disk cache consistent.

Toggle life cycle for one (app, service) key:

    IDLE -> MUTATING -> VERIFYING -> SETTLED
                           |  ^
                           v  |
                        RETRYING        (bounded, fixed delay)
                           |
                           v
                      RECONCILING -> SETTLED   (full rediscovery + requery)

With ``VerifyPolicy.OPTIMISTIC`` the requested value is applied right after
the mutation and a single background re-read only logs mismatches.

The orchestrator is the only writer of the app collection. Writes happen
under one asyncio.Lock; callers only ever receive copies.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from tcc_manager.cache.app_cache import AppCache
from tcc_manager.core.asyncio_utils import create_logged_task, drain_tasks
from tcc_manager.core.config_manager import EngineSettings, VerifyPolicy
from tcc_manager.core.errors import MutationFailed, TCCManagerError, VerificationExhausted
from tcc_manager.core.logging_utils import get_module_logger
from tcc_manager.core.models import ALL_SERVICES, AppRecord, PermissionState, ServiceKind, app_name_from_path
from tcc_manager.core.retry_policy import RetryPolicy
from tcc_manager.discovery.scanner import AppDiscovery
from tcc_manager.store.access import StoreAccessReport
from tcc_manager.store.reader import LookupResult, PermissionStore
from tcc_manager.store.writer import PermissionMutator, action_name

logger = get_module_logger("SyncOrchestrator")

ToggleKey = Tuple[str, ServiceKind]
AccessProbe = Callable[[], Awaitable[StoreAccessReport]]


class SyncPhase(Enum):
    IDLE = "idle"
    MUTATING = "mutating"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    RECONCILING = "reconciling"
    SETTLED = "settled"


class ToggleOutcome(Enum):
    SETTLED = "settled"          # confirmed by a re-read, or applied optimistically
    RECONCILED = "reconciled"    # not confirmed in time; a full refresh decided the value
    FAILED = "failed"            # the mutation itself failed
    REJECTED = "rejected"        # a toggle for the same key is still in flight
    UNKNOWN_APP = "unknown_app"


@dataclass
class ToggleResult:
    path: str
    service: ServiceKind
    requested: bool
    outcome: ToggleOutcome
    granted: Optional[bool] = None
    error: Optional[str] = None

    @property
    def confirmed(self) -> bool:
        """True when the final in-memory value is the requested one."""
        return self.outcome in (ToggleOutcome.SETTLED, ToggleOutcome.RECONCILED) and self.granted == self.requested


class SyncOrchestrator:
    """
    Owns the app collection and drives discovery, batch queries and toggles.

    Usage:
        orchestrator = SyncOrchestrator(discovery, store, mutator, cache, settings=settings)
        await orchestrator.start()
        result = await orchestrator.toggle(app.path, ServiceKind.CAMERA, True)
        if result.outcome is ToggleOutcome.FAILED:
            print(result.error)
    """

    def __init__(
        self,
        discovery: AppDiscovery,
        store: PermissionStore,
        mutator: PermissionMutator,
        cache: AppCache,
        *,
        settings: Optional[EngineSettings] = None,
        access_probe: Optional[AccessProbe] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.logger = logger
        self.discovery = discovery
        self.store = store
        self.mutator = mutator
        self.cache = cache
        self.settings = settings or EngineSettings()
        self._access_probe = access_probe
        self._sleep = sleep

        self._apps: Dict[str, AppRecord] = {}
        self._lock = asyncio.Lock()
        self._inflight: Set[ToggleKey] = set()
        self._phases: Dict[ToggleKey, SyncPhase] = {}
        # bumped on every in-place write of a key's permission value
        self._versions: Dict[ToggleKey, int] = {}
        self._background: Set["asyncio.Task"] = set()

        self.loaded_from_cache = False
        self.last_error: Optional[str] = None
        self.store_warning: Optional[str] = None
        self._access_checked = False

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def apps(self) -> List[AppRecord]:
        return [self._apps[key].copy() for key in sorted(self._apps)]

    def snapshot(self) -> List[AppRecord]:
        return self.apps

    def get(self, path: str) -> Optional[AppRecord]:
        record = self._apps.get(path)
        return record.copy() if record is not None else None

    def filter_apps(self, text: str) -> List[AppRecord]:
        """Apps whose name, path or identifier contains ``text`` (any case)."""
        needle = text.strip()
        if not needle:
            return self.apps
        return [record for record in self.apps if record.matches(needle)]

    def find(self, name_or_path: str) -> Optional[AppRecord]:
        """Look an app up by bundle path, then by exact name (any case).

        ``Zoom``, ``Zoom.app`` and ``zoom.app/`` all name the same bundle.
        """
        record = self.get(name_or_path.rstrip("/"))
        if record is not None:
            return record
        wanted = app_name_from_path(name_or_path).lower()
        for candidate in self.apps:
            if candidate.name.lower() == wanted:
                return candidate
        return None

    def is_busy(self, path: str, service: Optional[ServiceKind] = None) -> bool:
        if service is not None:
            return (path, service) in self._inflight
        return any(key[0] == path for key in self._inflight)

    def phase(self, path: str, service: ServiceKind) -> SyncPhase:
        return self._phases.get((path, service), SyncPhase.IDLE)

    # ------------------------------------------------------------------
    # Loading and refreshing

    async def start(self, *, force_refresh: bool = False) -> List[AppRecord]:
        """Check store access once, then load from cache or discover."""
        await self.check_store_access()
        return await self.load(force_refresh=force_refresh)

    async def check_store_access(self) -> Optional[StoreAccessReport]:
        if self._access_checked or self._access_probe is None:
            return None
        self._access_checked = True
        report = await self._access_probe()
        if not report.ok:
            self.store_warning = report.describe()
            self.logger.warning("%s", self.store_warning)
        return report

    async def load(self, *, force_refresh: bool = False) -> List[AppRecord]:
        if not force_refresh:
            cached = await self.cache.load()
            if cached:
                async with self._lock:
                    self._apps = {record.id: record for record in cached}
                self.loaded_from_cache = True
                self.logger.info("Using %d cached apps", len(cached))
                return self.apps
        return await self.refresh_all()

    async def refresh_all(self) -> List[AppRecord]:
        """Rediscover every app and requery all of them in one wave.

        The collection is swapped in only after every query has finished.
        Apps no longer on disk are dropped. If discovery finds nothing the
        current collection (and the cache) are left untouched.
        """
        paths = await self.discovery.discover()
        if not paths:
            self.logger.warning("Discovery returned no apps; keeping %d known apps", len(self._apps))
            return self.apps

        async with self._lock:
            for path in paths:
                record = self._apps.get(path)
                if record is not None:
                    record.permissions.pending = True
            started = dict(self._versions)

        batch = await self.store.query_batch(paths)

        async with self._lock:
            fresh: Dict[str, AppRecord] = {}
            for path in paths:
                identifier, state = batch.get(path, (None, PermissionState()))
                record = AppRecord.from_path(path)
                record.identifier = identifier
                record.permissions = state.settled()
                current = self._apps.get(path)
                if current is not None:
                    # Keep values written after this wave read the store
                    for service in ALL_SERVICES:
                        if self._is_newer_than_wave((path, service), started):
                            record.permissions = record.permissions.with_service(
                                service, current.permissions.granted(service)
                            )
                record.permissions.pending = self.is_busy(path)
                fresh[path] = record
            dropped = set(self._apps) - set(fresh)
            self._apps = fresh

        if dropped:
            self.logger.info("Dropped %d apps no longer installed", len(dropped))
        self.loaded_from_cache = False
        await self._persist()
        return self.apps

    async def refresh_app(self, path: str) -> Optional[AppRecord]:
        """Requery a single known app and update it in place."""
        if path not in self._apps:
            return None

        await self._set_pending(path, True)
        try:
            identifier, state = await self.store.lookup(path)
        except TCCManagerError as exc:
            self.logger.warning("Refresh of %s failed: %s", path, exc)
            await self._set_pending(path, self.is_busy(path))
            return self.get(path)

        async with self._lock:
            record = self._apps.get(path)
            if record is not None:
                record.identifier = identifier or record.identifier
                record.permissions = state.settled()
                record.permissions.pending = self.is_busy(path)
                for service in ALL_SERVICES:
                    self._bump((path, service))
        return self.get(path)

    # ------------------------------------------------------------------
    # Toggling

    async def toggle(self, path: str, service: ServiceKind, grant: bool) -> ToggleResult:
        """Grant or revoke ``service`` for the app at ``path``.

        A second request for a key that is still in flight is rejected.
        The in-flight guard is released on every exit path.
        """
        key: ToggleKey = (path, service)
        if path not in self._apps:
            return ToggleResult(
                path, service, grant, ToggleOutcome.UNKNOWN_APP,
                error=f"Unknown application: {path}",
            )
        if key in self._inflight:
            self.logger.warning("Ignoring %s %s for %s: already in progress", action_name(grant), service.label, path)
            return ToggleResult(
                path, service, grant, ToggleOutcome.REJECTED,
                granted=self._granted(path, service),
                error=f"A {service.label} change for this app is already in progress",
            )

        self._inflight.add(key)
        try:
            await self._set_pending(path, True)
            return await self._run_toggle(key, grant)
        finally:
            self._inflight.discard(key)
            self._phases.pop(key, None)
            await self._set_pending(path, self.is_busy(path))

    async def _run_toggle(self, key: ToggleKey, grant: bool) -> ToggleResult:
        path, service = key
        self._enter(key, SyncPhase.MUTATING)

        try:
            await self.mutator.set(path, service, grant)
        except TCCManagerError as exc:
            return await self._mutation_failed(key, grant, exc)

        if self.settings.verify_policy is VerifyPolicy.OPTIMISTIC:
            await self._apply_state(path, service, grant)
            self._enter(key, SyncPhase.SETTLED)
            await self._persist()
            create_logged_task(
                self._background_verify(path, service, grant),
                logger=self.logger,
                context=f"verify {service.label} {path}",
                pending=self._background,
            )
            return ToggleResult(path, service, grant, ToggleOutcome.SETTLED, granted=grant)

        return await self._verify(key, grant)

    async def _mutation_failed(self, key: ToggleKey, grant: bool, exc: TCCManagerError) -> ToggleResult:
        path, service = key
        if isinstance(exc, MutationFailed):
            message = str(exc)
        else:
            message = str(MutationFailed(action_name(grant), service.label, str(exc)))
        self.last_error = message
        self.logger.error("%s (%s)", message, path)

        # Show what the store actually holds now
        await self.refresh_app(path)
        return ToggleResult(
            path, service, grant, ToggleOutcome.FAILED,
            granted=self._granted(path, service),
            error=message,
        )

    async def _verify(self, key: ToggleKey, grant: bool) -> ToggleResult:
        path, service = key
        policy = RetryPolicy(
            max_attempts=self.settings.verify_attempts,
            delay=self.settings.verify_delay,
            sleep=self._sleep,
        )
        self._enter(key, SyncPhase.VERIFYING)

        async def read_back() -> LookupResult:
            return await self.store.lookup(path, (service,))

        def on_retry(attempt: int, last: Optional[LookupResult]) -> None:
            self._enter(key, SyncPhase.RETRYING)
            self.logger.debug(
                "%s %s for %s not visible yet, verification read %d/%d",
                action_name(grant), service.label, path, attempt, policy.max_attempts,
            )

        result = await policy.execute_with_result(
            operation=read_back,
            is_success=lambda looked_up: looked_up[1].granted(service) == grant,
            on_retry=on_retry,
        )

        if result.success:
            await self._apply_state(path, service, grant)
            self._enter(key, SyncPhase.SETTLED)
            await self._persist()
            self.logger.info(
                "%s %s for %s confirmed after %d read(s)",
                action_name(grant), service.label, path, result.attempt_count,
            )
            return ToggleResult(path, service, grant, ToggleOutcome.SETTLED, granted=grant)

        exhausted = VerificationExhausted(f"{action_name(grant)} {service.label} for {path}", result.attempt_count)
        self.logger.warning("%s; reconciling all apps", exhausted)
        self._enter(key, SyncPhase.RECONCILING)
        await self.refresh_all()
        self._enter(key, SyncPhase.SETTLED)

        observed = self._granted(path, service)
        if observed != grant:
            self.logger.warning(
                "After reconcile %s reports %s=%s (requested %s)",
                path, service.label, observed, grant,
            )
        return ToggleResult(path, service, grant, ToggleOutcome.RECONCILED, granted=observed)

    async def _background_verify(self, path: str, service: ServiceKind, grant: bool) -> None:
        await self._sleep(self.settings.verify_delay)
        _, state = await self.store.lookup(path, (service,))
        if state.granted(service) == grant:
            self.logger.debug("Background check confirmed %s=%s for %s", service.label, grant, path)
        else:
            self.logger.warning(
                "Background check: store reports %s=%s for %s after setting %s",
                service.label, state.granted(service), path, grant,
            )

    async def wait_for_background(self) -> None:
        await drain_tasks(self._background)

    async def close(self) -> None:
        await drain_tasks(self._background, cancel=True)

    # ------------------------------------------------------------------
    # Internal helpers

    def _enter(self, key: ToggleKey, phase: SyncPhase) -> None:
        previous = self._phases.get(key, SyncPhase.IDLE)
        self._phases[key] = phase
        self.logger.debug("%s/%s: %s -> %s", key[0], key[1].label, previous.value, phase.value)

    def _granted(self, path: str, service: ServiceKind) -> Optional[bool]:
        record = self._apps.get(path)
        return record.permissions.granted(service) if record is not None else None

    def _bump(self, key: ToggleKey) -> None:
        self._versions[key] = self._versions.get(key, 0) + 1

    def _is_newer_than_wave(self, key: ToggleKey, started: Dict[ToggleKey, int]) -> bool:
        """True if ``key`` must keep its in-memory value over a wave's read.

        That is the case when the value was written after the wave took its
        version snapshot, or a toggle for it is still awaiting confirmation.
        A key being reconciled takes whatever the wave observed.
        """
        if self._versions.get(key, 0) != started.get(key, 0):
            return True
        return key in self._inflight and self._phases.get(key) is not SyncPhase.RECONCILING

    async def _apply_state(self, path: str, service: ServiceKind, grant: bool) -> None:
        async with self._lock:
            record = self._apps.get(path)
            if record is not None:
                record.permissions = record.permissions.with_service(service, grant)
                self._bump((path, service))

    async def _set_pending(self, path: str, pending: bool) -> None:
        async with self._lock:
            record = self._apps.get(path)
            if record is not None:
                record.permissions.pending = pending

    async def _persist(self) -> bool:
        async with self._lock:
            snapshot = [record.copy() for record in self._apps.values()]
        if not snapshot:
            return False
        saved = await self.cache.save(snapshot)
        if not saved:
            self.last_error = f"Could not save the app list to {self.cache.path}"
        return saved


__all__ = [
    "SyncOrchestrator",
    "SyncPhase",
    "ToggleOutcome",
    "ToggleResult",
]
