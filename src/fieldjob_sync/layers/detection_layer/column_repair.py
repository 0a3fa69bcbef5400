"""
カラム修復 - zone と status の入れ違いを検出して入れ替える
"""

import logging
from datetime import datetime
from typing import List, Optional

from ...config.settings import RepairConfig
from ...core.models import BatchResult, JobRecord
from ..data_acquisition.base import JobStore
from ..data_acquisition.error_handler import ErrorHandler
from ..data_processing.repair_rules import FieldSwapRule

logger = logging.getLogger(__name__)


def zone_status_rule(config: RepairConfig) -> FieldSwapRule:
    return FieldSwapRule(
        first_field="zone",
        second_field="status",
        second_field_values=list(config.status_values),
        first_field_values=list(config.zone_values),
    )


class ColumnRepairService:
    """レコード単位のカラム入れ替え修復"""

    def __init__(self,
                 job_store: JobStore,
                 rules: Optional[List[FieldSwapRule]] = None,
                 error_handler: Optional[ErrorHandler] = None):
        self.job_store = job_store
        self.rules = rules if rules is not None else [zone_status_rule(RepairConfig())]
        self.error_handler = error_handler or ErrorHandler()

    @classmethod
    def from_config(cls, job_store: JobStore, config: RepairConfig,
                    error_handler: Optional[ErrorHandler] = None) -> "ColumnRepairService":
        return cls(job_store, [zone_status_rule(config)], error_handler)

    def find_swaps(self, job: JobRecord) -> dict:
        """適用すべき部分更新（該当なしは空）"""
        record = job.to_row()
        changes = {}
        for rule in self.rules:
            if rule.needs_swap(record):
                changes.update(rule.swapped(record))
        return changes

    async def repair_all(self) -> BatchResult:
        jobs = await self.job_store.get_all_jobs()
        result = BatchResult(operation="repair_columns", total=len(jobs))

        for job in jobs:
            changes = self.find_swaps(job)
            if not changes:
                continue
            try:
                await self.job_store.update_job_data(job.job_id, changes)
                logger.info(f"Swapped columns for {job.job_id}: {changes}")
                result.add_success(job.job_id, **changes)
            except Exception as e:
                error_type = self.error_handler.classify_error(e)
                logger.error(f"Column repair failed for {job.job_id}: {e}")
                result.add_failure(job.job_id, e, error_type.value)

        result.skipped = result.total - result.succeeded - result.failed
        result.finished_at = datetime.now()
        logger.info(result.summary())
        return result
