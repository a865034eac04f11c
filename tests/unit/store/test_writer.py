"""Unit tests for the write path: helper and direct strategies, PermissionMutator."""

from unittest.mock import AsyncMock

import pytest

from tcc_manager.core.errors import HelperNotFound, IdentifierNotFound, MutationFailed, ProcessTimeout
from tcc_manager.core.models import ServiceKind
from tcc_manager.core.process_utils import WorkerPool
from tcc_manager.discovery.identifier import IdentifierResolver
from tcc_manager.store.helper import HelperLocator
from tcc_manager.store.reader import DirectQuery
from tcc_manager.store.writer import DirectStoreMutation, HelperMutation, PermissionMutator, action_name
from tests.infrastructure.mocks.process_mocks import MockPool, completed
from tests.infrastructure.mocks.store_mocks import MockResolver
from tests.infrastructure.helpers.tcc_db import read_rows

CAMERA = ServiceKind.CAMERA
MICROPHONE = ServiceKind.MICROPHONE


@pytest.fixture
def helper_binary(tmp_path):
    helper = tmp_path / "bin" / "tccplus"
    helper.parent.mkdir()
    helper.write_text("#!/bin/sh\nexit 0\n")
    helper.chmod(0o755)
    return helper


class TestHelperMutation:
    """Test the tccplus invocation."""

    @pytest.mark.asyncio
    async def test_grant_argv(self, helper_binary):
        pool = MockPool()
        mutation = HelperMutation(pool, HelperLocator([helper_binary], search_path=False))

        await mutation.apply("us.zoom.xos", CAMERA, True)

        assert pool.calls == [[str(helper_binary), "add", "Camera", "us.zoom.xos"]]

    @pytest.mark.asyncio
    async def test_revoke_argv(self, helper_binary):
        pool = MockPool()
        mutation = HelperMutation(pool, HelperLocator([helper_binary], search_path=False))

        await mutation.apply("us.zoom.xos", MICROPHONE, False)

        assert pool.calls == [[str(helper_binary), "reset", "Microphone", "us.zoom.xos"]]

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_stderr(self, helper_binary):
        pool = MockPool(lambda argv: completed(argv, "", returncode=1, stderr="tccplus: not permitted\n"))
        mutation = HelperMutation(pool, HelperLocator([helper_binary], search_path=False))

        with pytest.raises(MutationFailed) as excinfo:
            await mutation.apply("us.zoom.xos", CAMERA, True)

        assert str(excinfo.value) == "Failed to grant camera permission: tccplus: not permitted"

    @pytest.mark.asyncio
    async def test_timeout_is_mutation_failure(self, helper_binary):
        pool = MockPool(lambda argv: ProcessTimeout(argv, 10.0))
        mutation = HelperMutation(pool, HelperLocator([helper_binary], search_path=False))

        with pytest.raises(MutationFailed, match="timed out"):
            await mutation.apply("us.zoom.xos", MICROPHONE, False)

    @pytest.mark.asyncio
    async def test_missing_helper(self, tmp_path):
        pool = MockPool()
        mutation = HelperMutation(pool, HelperLocator([tmp_path / "nope"], search_path=False))

        with pytest.raises(HelperNotFound) as excinfo:
            await mutation.apply("us.zoom.xos", CAMERA, True)

        assert excinfo.value.action == "grant"
        assert excinfo.value.service == "camera"
        assert pool.calls == []


class TestDirectStoreMutation:
    """Test in-place writes to a real user-scope database."""

    @pytest.mark.asyncio
    async def test_grant_inserts_row(self, tcc_db):
        db = tcc_db()

        await DirectStoreMutation(WorkerPool(), db_path=db).apply("us.zoom.xos", CAMERA, True)

        assert read_rows(db) == [(CAMERA.value, "us.zoom.xos", 0, 2, "UNUSED")]

    @pytest.mark.asyncio
    async def test_grant_replaces_denied_row(self, tcc_db):
        db = tcc_db(rows=[(CAMERA, "us.zoom.xos", 0)])

        await DirectStoreMutation(WorkerPool(), db_path=db).apply("us.zoom.xos", CAMERA, True)

        assert read_rows(db) == [(CAMERA.value, "us.zoom.xos", 0, 2, "UNUSED")]

    @pytest.mark.asyncio
    async def test_revoke_deletes_only_that_row(self, tcc_db):
        db = tcc_db(rows=[(CAMERA, "us.zoom.xos", 2), (MICROPHONE, "us.zoom.xos", 2)])

        await DirectStoreMutation(WorkerPool(), db_path=db).apply("us.zoom.xos", CAMERA, False)

        assert read_rows(db) == [(MICROPHONE.value, "us.zoom.xos", 0, 2, "UNUSED")]

    @pytest.mark.asyncio
    async def test_write_visible_to_next_read(self, tcc_db):
        db = tcc_db()
        pool = WorkerPool()

        await DirectStoreMutation(pool, db_path=db).apply("us.zoom.xos", MICROPHONE, True)

        assert await DirectQuery(pool).fetch(db, MICROPHONE, "us.zoom.xos") == 2

    @pytest.mark.asyncio
    async def test_missing_store_is_not_created(self, tmp_path):
        db = tmp_path / "TCC.db"

        with pytest.raises(MutationFailed, match="store not found"):
            await DirectStoreMutation(WorkerPool(), db_path=db).apply("us.zoom.xos", CAMERA, True)

        assert not db.exists()

    @pytest.mark.asyncio
    async def test_sqlite_error_is_mutation_failure(self, tmp_path):
        db = tmp_path / "TCC.db"
        db.write_bytes(b"definitely not sqlite" * 64)

        with pytest.raises(MutationFailed):
            await DirectStoreMutation(WorkerPool(), db_path=db).apply("us.zoom.xos", CAMERA, True)


class TestPermissionMutator:
    """Test identifier resolution and the notification step."""

    @pytest.mark.asyncio
    async def test_set_resolves_and_notifies(self):
        strategy = AsyncMock()
        notifier = AsyncMock()
        notifier.notify.return_value = True
        mutator = PermissionMutator(MockResolver({"/Applications/Zoom.app": "us.zoom.xos"}), strategy, notifier)

        await mutator.grant("/Applications/Zoom.app", CAMERA)
        await mutator.revoke("/Applications/Zoom.app", MICROPHONE)

        strategy.apply.assert_any_await("us.zoom.xos", CAMERA, True)
        strategy.apply.assert_any_await("us.zoom.xos", MICROPHONE, False)
        assert notifier.notify.await_count == 2

    @pytest.mark.asyncio
    async def test_unresolved_identifier_fails_without_writing(self):
        strategy = AsyncMock()
        mutator = PermissionMutator(MockResolver({}), strategy)

        with pytest.raises(MutationFailed, match="could not read bundle identifier"):
            await mutator.set("/Applications/Ghost.app", CAMERA, True)

        strategy.apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_plist_key_chains_identifier_error(self):
        pool = MockPool(lambda argv: completed(argv, "", returncode=1, stderr="does not exist"))
        strategy = AsyncMock()
        mutator = PermissionMutator(IdentifierResolver(pool), strategy)

        with pytest.raises(MutationFailed, match="could not read bundle identifier") as excinfo:
            await mutator.set("/Applications/Broken.app", MICROPHONE, False)

        assert isinstance(excinfo.value.__cause__, IdentifierNotFound)
        assert pool.calls_to("/usr/bin/defaults")
        strategy.apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_write_skips_notification(self):
        strategy = AsyncMock()
        strategy.apply.side_effect = MutationFailed("revoke", "camera", "denied")
        notifier = AsyncMock()
        mutator = PermissionMutator(MockResolver({"/Applications/Zoom.app": "us.zoom.xos"}), strategy, notifier)

        with pytest.raises(MutationFailed):
            await mutator.revoke("/Applications/Zoom.app", CAMERA)

        notifier.notify.assert_not_awaited()

    def test_action_name(self):
        assert action_name(True) == "grant"
        assert action_name(False) == "revoke"


class TestDirectStoreIdempotence:
    """Repeated grants keep one row; repeated revokes keep none."""

    @pytest.mark.asyncio
    async def test_double_grant_leaves_one_row(self, tcc_db):
        db = tcc_db()
        mutation = DirectStoreMutation(WorkerPool(), db_path=db)

        await mutation.apply("com.example.foo", CAMERA, True)
        await mutation.apply("com.example.foo", CAMERA, True)

        assert read_rows(db) == [(CAMERA.value, "com.example.foo", 0, 2, "UNUSED")]

    @pytest.mark.asyncio
    async def test_double_revoke_leaves_no_row(self, tcc_db):
        db = tcc_db(rows=[(CAMERA, "com.example.foo", 2)])
        mutation = DirectStoreMutation(WorkerPool(), db_path=db)

        await mutation.apply("com.example.foo", CAMERA, False)
        await mutation.apply("com.example.foo", CAMERA, False)

        assert read_rows(db) == []
