"""
ドリフト検知 - キューカレンダーから移動・消失したイベントを検出し、ジョブを完了扱いにする

移動か削除かは区別できないため、どちらも完了センチネルへ遷移させる。
"""

import asyncio
import logging
from datetime import datetime
from typing import Callable, List, Optional

from ...config.settings import DetectionConfig
from ...core.errors import ExternalCallFailure
from ...core.models import (
    CalendarEvent,
    CalendarInfo,
    DetectionProvenance,
    DetectionResult,
    DriftOutcome,
    JobRecord,
    RunSummary,
)
from ...utils.enhanced_logger import EnhancedLogger, get_logger
from ..data_acquisition.base import CalendarService, JobStore
from ..data_acquisition.error_handler import ErrorHandler
from ..sync_layer.calendar_registry import CalendarRegistry

logger = logging.getLogger(__name__)


class DriftDetector:
    """イベント所在チェックとステータス自動更新"""

    def __init__(self,
                 job_store: JobStore,
                 calendar: CalendarService,
                 registry: CalendarRegistry,
                 config: Optional[DetectionConfig] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 operation_logger: Optional[EnhancedLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.job_store = job_store
        self.calendar = calendar
        self.registry = registry
        self.config = config or DetectionConfig()
        self.error_handler = error_handler or ErrorHandler()
        self.operation_logger = operation_logger
        self.clock = clock
        # 定期実行と手動実行の同時実行を防ぐ（後続は待機）
        self._scan_lock = asyncio.Lock()

    @property
    def is_scanning(self) -> bool:
        return self._scan_lock.locked()

    def is_eligible(self, job: JobRecord) -> bool:
        return bool(job.event_id and job.team and job.status not in self.config.terminal_statuses)

    async def run_drift_scan(self) -> RunSummary:
        """全対象ジョブを順番にチェック

        ジョブ一覧の取得失敗のみ全体を中断し、ジョブ単位の失敗は errors に計上して継続する。
        """
        async with self._scan_lock:
            op_logger = self.operation_logger or get_logger()
            op_context = op_logger.log_operation_start("drift_scan")
            summary = RunSummary(started_at=self.clock())

            try:
                jobs = await self.job_store.get_all_jobs()
            except Exception as e:
                op_logger.log_operation_end(op_context, success=False, error=str(e))
                raise

            eligible = [job for job in jobs if self.is_eligible(job)]
            summary.checked = len(eligible)
            logger.info(f"Found {len(eligible)} jobs with calendar events to check")

            for index, job in enumerate(eligible):
                if index:
                    await asyncio.sleep(self.config.inter_job_delay_seconds)
                try:
                    result = await self._process_job(job)
                    summary.record(result)
                except Exception as e:
                    error_type = self.error_handler.classify_error(e)
                    logger.error(f"Error processing drift detection for job {job.job_id}: {e}")
                    summary.record_error(job.job_id, e, error_type.value)

            summary.finished_at = self.clock()
            op_logger.log_operation_end(
                op_context,
                success=True,
                checked=summary.checked,
                status_updated=summary.status_updated,
                moved=summary.moved,
                disappeared=summary.disappeared,
                errors=summary.errors,
            )
            logger.info(summary.summary())
            return summary

    async def check_one_job(self, job_id: str) -> DetectionResult:
        """単一ジョブのチェック（失敗は呼び出し元へ送出）"""
        job = await self.job_store.get_job(job_id)
        return await self._process_job(job)

    async def _process_job(self, job: JobRecord) -> DetectionResult:
        if not job.event_id or not job.team:
            return DetectionResult(job.job_id, DriftOutcome.SKIPPED, reason="No calendar event or team specified")

        if job.status in self.config.terminal_statuses:
            return DetectionResult(job.job_id, DriftOutcome.SKIPPED, reason=f"Terminal status: {job.status}")

        team, queue_calendar_id = self.registry.resolve(job.team)
        if not queue_calendar_id:
            return DetectionResult(job.job_id, DriftOutcome.SKIPPED,
                                   reason=f"No queue calendar configured for team: {team}")

        # Linked: キューカレンダーに存在
        if await self.calendar.get_event(queue_calendar_id, job.event_id):
            return DetectionResult(job.job_id, DriftOutcome.LINKED, reason="No changes detected")

        found = await self._search_other_calendars(job.event_id)
        if found:
            calendar_info, _event = found
            provenance = DetectionProvenance(
                source_calendar_id=queue_calendar_id,
                detection_time=self.clock(),
                destination_calendar_id=calendar_info.id,
                destination_calendar_name=calendar_info.summary,
                destination_is_personal=self.registry.is_personal(calendar_info.id, calendar_info.summary),
            )
            outcome = DriftOutcome.MOVED_EXTERNALLY
            reason = f"Event moved to calendar: {calendar_info.summary}"
        else:
            provenance = DetectionProvenance(
                source_calendar_id=queue_calendar_id,
                detection_time=self.clock(),
                disappeared=True,
            )
            outcome = DriftOutcome.DISAPPEARED
            reason = "Event disappeared from queue calendar - assumed completed by technician"

        new_status = self.config.completion_status
        await self.job_store.update_job_status(job.job_id, new_status, provenance=provenance)
        logger.info(f"Drift detection: updated job {job.job_id} status to \"{new_status}\" ({outcome.value})")

        return DetectionResult(job.job_id, outcome, reason=reason, new_status=new_status, provenance=provenance)

    async def _search_other_calendars(self, event_id: str) -> Optional[tuple]:
        """キューカレンダー以外を列挙順に検索（最初に見つかったものを採用、列挙順は保証されない）"""
        calendars: List[CalendarInfo] = await self.calendar.list_calendars()

        for calendar_info in calendars:
            if self.registry.is_queue_calendar(calendar_info.id):
                continue
            try:
                event: Optional[CalendarEvent] = await self.calendar.get_event(calendar_info.id, event_id)
            except ExternalCallFailure as e:
                # アクセスできないカレンダーは飛ばして次へ
                logger.debug(f"Skipping calendar {calendar_info.id} while searching {event_id}: {e}")
                continue
            if event:
                return calendar_info, event

        return None
