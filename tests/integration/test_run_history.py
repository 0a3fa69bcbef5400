"""
実行履歴ストレージテスト
"""

import pytest

from fieldjob_sync.core.models import BatchResult, RunSummary
from fieldjob_sync.layers.storage.run_history import RunHistoryStore


@pytest.fixture
async def history(tmp_path):
    store = RunHistoryStore(tmp_path / "data" / "history.db")
    await store.initialize()
    return store


class TestRunHistoryStore:

    @pytest.mark.asyncio
    async def test_record_and_read_back(self, history):
        summary = RunSummary(checked=4, status_updated=1, disappeared=1)
        summary.record_error("JOB-000009", RuntimeError("quota"), "rate_limit_error")

        run_id = await history.record_run("drift_scan", summary.to_dict())
        runs = await history.recent_runs()

        assert runs[0].id == run_id
        assert runs[0].counts["checked"] == 4
        assert runs[0].counts["errors"] == 1
        assert runs[0].details[0]["job_id"] == "JOB-000009"

    @pytest.mark.asyncio
    async def test_newest_first_and_filter(self, history):
        await history.record_run("drift_scan", RunSummary().to_dict())
        await history.record_run("repair_columns", BatchResult(operation="repair_columns").to_dict())
        await history.record_run("drift_scan", RunSummary(checked=2).to_dict())

        runs = await history.recent_runs(limit=2)
        assert [run.kind for run in runs] == ["drift_scan", "repair_columns"]

        scans = await history.recent_runs(kind="drift_scan")
        assert [run.counts["checked"] for run in scans] == [2, 0]

    @pytest.mark.asyncio
    async def test_lazy_initialization(self, tmp_path):
        store = RunHistoryStore(tmp_path / "lazy.db")
        assert await store.recent_runs() == []
