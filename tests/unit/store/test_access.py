"""Unit tests for the store access precondition check."""

import pytest

from tcc_manager.core.process_utils import WorkerPool
from tcc_manager.store.access import check_store_access, check_store_access_async


class TestCheckStoreAccess:

    def test_readable_store(self, tcc_db):
        report = check_store_access(tcc_db())

        assert report.ok
        assert "is readable" in report.describe()

    def test_missing_store(self, tmp_path):
        report = check_store_access(tmp_path / "TCC.db")

        assert not report.ok
        assert not report.exists
        assert "not found" in report.describe()
        assert not (tmp_path / "TCC.db").exists()

    def test_unqueryable_store_mentions_full_disk_access(self, tmp_path):
        db = tmp_path / "TCC.db"
        db.write_bytes(b"not a database" * 128)

        report = check_store_access(db)

        assert report.exists and report.readable
        assert not report.queryable
        assert "Full Disk Access" in report.describe()

    @pytest.mark.asyncio
    async def test_async_wrapper(self, tcc_db):
        report = await check_store_access_async(WorkerPool(), tcc_db())

        assert report.ok
