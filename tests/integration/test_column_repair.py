"""
カラム入れ違い修復テスト
"""

import pytest

from fieldjob_sync.config.settings import RepairConfig
from fieldjob_sync.layers.detection_layer.column_repair import ColumnRepairService


@pytest.fixture
def repair(job_store, no_sleep_handler):
    return ColumnRepairService.from_config(job_store, RepairConfig(), no_sleep_handler)


class TestColumnRepair:

    @pytest.mark.asyncio
    async def test_swaps_zone_and_status(self, repair, job_store, make_job):
        job_store.add(make_job(zone="Scheduled", status="กรุงเทพ"))

        result = await repair.repair_all()

        job = job_store.jobs["JOB-000001"]
        assert (job.zone, job.status) == ("กรุงเทพ", "Scheduled")
        assert result.succeeded == 1

    @pytest.mark.asyncio
    async def test_clean_records_untouched(self, repair, job_store, make_job):
        job_store.add(make_job(zone="บางนา", status="New"))

        result = await repair.repair_all()

        assert job_store.data_updates == []
        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_pass(self, repair, job_store, make_job):
        job_store.add(make_job("JOB-000001", zone="New", status="บางนา"))
        job_store.add(make_job("JOB-000002", zone="Scheduled", status="นนทบุรี"))
        job_store.failing_job_ids.add("JOB-000001")

        result = await repair.repair_all()

        assert result.failed == 1
        assert result.succeeded == 1
        assert job_store.jobs["JOB-000002"].status == "Scheduled"
