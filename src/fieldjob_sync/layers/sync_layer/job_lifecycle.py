"""
ジョブライフサイクル - ステータス変更に連動したカレンダー管理と一括処理
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from ...core.models import BatchResult, JobRecord, JobStatus, SyncOutcome
from ..data_acquisition.base import JobStore
from ..data_acquisition.error_handler import ErrorHandler
from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


@dataclass
class StatusChange:
    """ステータス変更結果"""
    job: JobRecord
    sync_outcome: Optional[SyncOutcome] = None
    removed_event_ids: List[str] = field(default_factory=list)


class JobLifecycleService:
    """ステータス変更 → Scheduled/Rescheduledで同期、Cancelledでイベント削除"""

    def __init__(self,
                 job_store: JobStore,
                 sync_engine: SyncEngine,
                 error_handler: Optional[ErrorHandler] = None,
                 bulk_delay_seconds: float = 0.1):
        self.job_store = job_store
        self.sync_engine = sync_engine
        self.error_handler = error_handler or ErrorHandler()
        self.bulk_delay_seconds = bulk_delay_seconds

    async def change_status(self, job_id: str, status: str, notes: str = "") -> StatusChange:
        """単一ジョブのステータス変更（失敗はそのまま呼び出し元へ）"""
        job = await self.job_store.update_job_status(job_id, status, notes)
        change = StatusChange(job=job)

        if status in JobStatus.CALENDAR_ACTIVE:
            logger.info(f"Auto-syncing calendar event for {job_id} (status: {status})")
            change.sync_outcome = await self.sync_engine.sync(job)
        elif status == JobStatus.CANCELLED:
            logger.info(f"Auto-deleting calendar event for {job_id} (status: {status})")
            change.removed_event_ids = await self.unsync(job)

        return change

    async def unsync(self, job: JobRecord) -> List[str]:
        """イベント削除とeventIdのクリア"""
        removed = await self.sync_engine.unsync(job)
        if job.event_id:
            await self.job_store.update_job_event_id(job.job_id, "")
        return removed

    async def bulk_change_status(self, job_ids: Sequence[str], status: str, notes: str = "") -> BatchResult:
        """一括ステータス変更（1件の失敗で中断しない）"""
        result = BatchResult(operation="bulk_change_status", total=len(job_ids))

        for index, job_id in enumerate(job_ids):
            if index:
                await asyncio.sleep(self.bulk_delay_seconds)
            try:
                change = await self.change_status(job_id, status, notes)
                info = {"status": change.job.status}
                if change.sync_outcome is not None:
                    info["event_ids"] = change.sync_outcome.event_ids
                    info["sync_skipped"] = change.sync_outcome.skip_reason
                if change.removed_event_ids:
                    info["removed_event_ids"] = change.removed_event_ids
                result.add_success(job_id, **info)
            except Exception as e:
                error_type = self.error_handler.classify_error(e)
                logger.error(f"Bulk status change failed for {job_id}: {e}")
                result.add_failure(job_id, e, error_type.value)

        result.finished_at = datetime.now()
        logger.info(result.summary())
        return result

    async def resync_all(self, statuses: Iterable[str] = JobStatus.CALENDAR_ACTIVE) -> BatchResult:
        """対象ステータスの全ジョブを再同期"""
        wanted = set(statuses)
        jobs = [job for job in await self.job_store.get_all_jobs() if job.status in wanted]
        return await self._sync_batch("resync_all", jobs)

    async def sync_missing(self) -> BatchResult:
        """カレンダー対象なのにイベントIDが未設定のジョブだけを同期"""
        jobs = [job for job in await self.job_store.get_all_jobs() if needs_calendar(job) and not job.event_id]
        logger.info(f"Found {len(jobs)} jobs without calendar events")
        return await self._sync_batch("sync_missing", jobs)

    async def audit_calendar_coverage(self) -> Dict[str, Any]:
        """イベント有無の集計（書き込みなし）"""
        jobs = await self.job_store.get_all_jobs()
        audit: Dict[str, Any] = {
            "total_jobs": len(jobs),
            "jobs_needing_calendar": 0,
            "jobs_with_calendar": 0,
            "jobs_without_calendar": [],
            "jobs_with_broken_data": [],
            "by_status": dict(Counter(job.status or "Unknown" for job in jobs)),
            "by_team": dict(Counter(job.team or "Unknown" for job in jobs)),
        }

        for job in jobs:
            if job.status not in JobStatus.CALENDAR_ACTIVE:
                continue
            issues = schedule_issues(job)
            if issues:
                audit["jobs_with_broken_data"].append({"job_id": job.job_id, "status": job.status, "issues": issues})
                continue
            audit["jobs_needing_calendar"] += 1
            if job.event_id:
                audit["jobs_with_calendar"] += 1
            else:
                audit["jobs_without_calendar"].append({
                    "job_id": job.job_id,
                    "status": job.status,
                    "team": job.team,
                    "date": job.date or job.start_date,
                    "customer": job.display_name,
                })

        logger.info(
            f"Calendar audit: {audit['jobs_with_calendar']}/{audit['jobs_needing_calendar']} linked, "
            f"{len(audit['jobs_with_broken_data'])} with broken data"
        )
        return audit

    async def _sync_batch(self, operation: str, jobs: List[JobRecord]) -> BatchResult:
        result = BatchResult(operation=operation, total=len(jobs))

        for index, job in enumerate(jobs):
            if index:
                await asyncio.sleep(self.bulk_delay_seconds)
            try:
                outcome = await self.sync_engine.sync(job)
                if outcome.is_noop:
                    result.add_skip(job.job_id, outcome.skip_reason)
                else:
                    result.add_success(job.job_id, event_ids=outcome.event_ids)
            except Exception as e:
                error_type = self.error_handler.classify_error(e)
                logger.error(f"Calendar sync failed for {job.job_id} ({operation}): {e}")
                result.add_failure(job.job_id, e, error_type.value)

        result.finished_at = datetime.now()
        logger.info(result.summary())
        return result


def schedule_issues(job: JobRecord) -> List[str]:
    """カレンダー作成に必要な項目の欠落"""
    issues = []
    if not job.team.strip():
        issues.append("Missing team")
    if not job.date.strip() and not (job.start_date.strip() and job.end_date.strip()):
        issues.append("Missing date")
    return issues


def needs_calendar(job: JobRecord) -> bool:
    return job.status in JobStatus.CALENDAR_ACTIVE and not schedule_issues(job)
