"""
定期実行スケジューラーテスト
"""

from unittest.mock import Mock

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from fieldjob_sync.config.settings import SchedulerConfig
from fieldjob_sync.layers.detection_layer.drift_detector import DriftDetector
from fieldjob_sync.layers.scheduling_layer.reconciliation_scheduler import ReconciliationScheduler, parse_fire_time
from fieldjob_sync.layers.storage.run_history import RunHistoryStore
from fieldjob_sync.utils.enhanced_logger import EnhancedLogger


@pytest.fixture
def detector(job_store, calendar, registry, detection_config, no_sleep_handler):
    return DriftDetector(job_store, calendar, registry, detection_config, no_sleep_handler)


@pytest.fixture
def history(tmp_path):
    return RunHistoryStore(tmp_path / "history.db")


@pytest.fixture
async def scheduler(detector, history):
    config = SchedulerConfig(fire_time="10:00", timezone="Asia/Bangkok", task_name="daily_drift_scan")
    service = ReconciliationScheduler(detector, config, history, EnhancedLogger("scheduler_test"))
    yield service
    service.stop()


class TestReconciliationScheduler:

    def test_parse_fire_time(self):
        assert parse_fire_time("07:05") == (7, 5)
        with pytest.raises(ValueError):
            parse_fire_time("24:00")

    @pytest.mark.asyncio
    async def test_status_before_start(self, scheduler):
        status = scheduler.status()

        assert status["active"] is False
        assert status["timezone"] == "Asia/Bangkok"
        assert status["next_run"] == "Daily at 10:00 (Asia/Bangkok)"
        assert status["next_run_time"] is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, scheduler):
        first = scheduler.start()
        second = scheduler.start()

        assert first == second
        assert len(scheduler._scheduler.get_jobs()) == 1

        status = scheduler.status()
        assert status["active"] is True
        assert status["next_run_time"].endswith("+07:00")
        assert "T10:00:00" in status["next_run_time"]

    @pytest.mark.asyncio
    async def test_stop_removes_registration(self, scheduler):
        handle = scheduler.start()

        assert scheduler.stop(handle) is True
        assert scheduler.stop(handle) is False
        assert scheduler.status()["active"] is False

    @pytest.mark.asyncio
    async def test_run_now_records_history(self, scheduler, history, job_store, make_job):
        job_store.add(make_job(event_id="gone"))

        summary = await scheduler.run_now()

        assert summary.disappeared == 1
        assert scheduler.status()["last_run"]["statusUpdated"] == 1
        runs = await history.recent_runs()
        assert runs[0].kind == "drift_scan"
        assert runs[0].counts["disappeared"] == 1

    @pytest.mark.asyncio
    async def test_scheduled_run_swallows_failures(self, scheduler, job_store):
        job_store.fail_listing = True

        await scheduler._scheduled_run()

        assert scheduler.last_run is None

    @pytest.mark.asyncio
    async def test_stop_clears_handle_when_shutdown_fails(self, scheduler):
        scheduler.start()
        owned = scheduler._scheduler
        real_shutdown = owned.shutdown
        owned.shutdown = Mock(side_effect=RuntimeError("Event loop is closed"))

        assert scheduler.stop() is True

        assert scheduler.is_active is False
        assert scheduler._scheduler is None
        real_shutdown(wait=False)

    @pytest.mark.asyncio
    async def test_injected_scheduler_is_left_running(self, detector):
        shared = AsyncIOScheduler(timezone="Asia/Bangkok")
        shared.start()
        config = SchedulerConfig(fire_time="10:00", timezone="Asia/Bangkok", task_name="daily_drift_scan")
        service = ReconciliationScheduler(detector, config, scheduler=shared)

        service.start()
        assert service.stop() is True

        assert shared.running
        assert shared.get_job("daily_drift_scan") is None
        assert service.start().task_name == "daily_drift_scan"
        service.stop()
        shared.shutdown(wait=False)
