"""
カレンダー照合 - キューカレンダー上で直接編集された日時をジョブストアへ反映する

ジョブ → カレンダーの同期（SyncEngine）の逆方向。
タイトルのジョブIDでジョブを特定し、ジョブが存在しないイベントは孤立イベントとして報告する。
"""

import logging
import re
from datetime import datetime
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

from ...core.models import BatchResult, CalendarEvent, JobRecord, JobStatus
from ...utils.enhanced_logger import EnhancedLogger, get_logger
from ..data_acquisition.base import CalendarService, JobStore
from ..data_acquisition.error_handler import ErrorHandler
from ..data_processing.time_normalizer import normalize_time
from .calendar_registry import CalendarRegistry

logger = logging.getLogger(__name__)

OPERATION = "reconcile_from_calendar"
IMPORT_NOTE = "นำเข้าจาก Google Calendar"
IMPORT_DEFAULT_TYPE = "ติดตั้ง"
IMPORT_DEFAULT_ZONE = "ไม่ระบุ"
IMPORT_DEFAULT_CUSTOMER = "ลูกค้าจาก Calendar"

# "JOB-000123" または期間指定の派生ID "JOB-000123-2025-08-01"
_TOKEN_PATTERN = re.compile(r"^(JOB-\d+)(?:-(\d{4}-\d{2}-\d{2}))?$")


def parse_title_token(event: CalendarEvent):
    """(ジョブID, 派生日 or None)。システム作成でないイベントは (None, None)"""
    match = _TOKEN_PATTERN.match(event.title_token)
    if not match:
        return None, None
    return match.group(1), match.group(2)


class CalendarReconciler:
    """カレンダー → ジョブストアの逆方向照合"""

    def __init__(self,
                 job_store: JobStore,
                 calendar: CalendarService,
                 registry: CalendarRegistry,
                 timezone: str = "Asia/Bangkok",
                 error_handler: Optional[ErrorHandler] = None,
                 operation_logger: Optional[EnhancedLogger] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.job_store = job_store
        self.calendar = calendar
        self.registry = registry
        self.timezone = ZoneInfo(timezone)
        self.error_handler = error_handler or ErrorHandler()
        self.operation_logger = operation_logger
        self.clock = clock or (lambda: datetime.now(self.timezone))

    async def reconcile_from_calendar(self,
                                      since: Optional[datetime] = None,
                                      import_unlinked: bool = False) -> BatchResult:
        """各キューカレンダーの今後のイベントを走査してジョブへ反映

        - ジョブIDを持つイベント: 日付・開始・終了時刻が異なればジョブを更新
        - ジョブが存在しないイベント: 孤立イベントとしてスキップ（削除はしない）
        - ジョブIDのないイベント: import_unlinked の場合のみ新規ジョブとして取り込む

        ジョブ一覧の取得失敗のみ全体を中断し、カレンダー単位・イベント単位の失敗は計上して継続する。
        """
        op_logger = self.operation_logger or get_logger()
        op_context = op_logger.log_operation_start(OPERATION, import_unlinked=import_unlinked)
        result = BatchResult(operation=OPERATION)
        time_min = since or self.clock()

        try:
            jobs = await self.job_store.get_all_jobs()
        except Exception as e:
            op_logger.log_operation_end(op_context, success=False, error=str(e))
            raise

        jobs_by_id: Dict[str, JobRecord] = {job.job_id: job for job in jobs}
        linked_event_ids = {job.event_id for job in jobs if job.event_id}

        for team, calendar_id in self.registry.team_calendars.items():
            try:
                events = await self.calendar.list_events(calendar_id, time_min=time_min)
            except Exception as e:
                error_type = self.error_handler.classify_error(e)
                logger.error(f"Failed to list events for team {team} ({calendar_id}): {e}")
                result.add_failure(None, e, error_type.value, calendar_id=calendar_id)
                continue

            logger.info(f"Found {len(events)} upcoming events in {team} calendar")
            for event in events:
                await self._reconcile_event(result, team, calendar_id, event, jobs_by_id,
                                            linked_event_ids, import_unlinked)

        result.finished_at = datetime.now()
        op_logger.log_operation_end(op_context, success=result.failed == 0,
                                    updated=result.succeeded, skipped=result.skipped, failed=result.failed)
        logger.info(result.summary())
        return result

    async def _reconcile_event(self, result: BatchResult, team: str, calendar_id: str, event: CalendarEvent,
                               jobs_by_id: Dict[str, JobRecord], linked_event_ids, import_unlinked: bool):
        job_id, derived_day = parse_title_token(event)

        if job_id is None:
            if not import_unlinked or event.id in linked_event_ids:
                return
            result.total += 1
            try:
                await self._import_event(result, team, event)
            except Exception as e:
                error_type = self.error_handler.classify_error(e)
                logger.error(f"Failed to import calendar event {event.id}: {e}")
                result.add_failure(None, e, error_type.value, event_id=event.id)
            return

        result.total += 1
        job = jobs_by_id.get(job_id)
        if job is None:
            logger.warning(f"Orphan calendar event {event.id} in {calendar_id}: job {job_id} no longer exists")
            result.add_skip(job_id, "orphan", event_id=event.id, calendar_id=calendar_id)
            return

        if derived_day is not None or job.is_range and job.start_date.strip() and job.end_date.strip():
            # 期間指定の1日分は単日の日付・時刻カラムに対応しない
            result.add_skip(job_id, "range_day_event", event_id=event.id)
            return
        if job.status not in JobStatus.CALENDAR_ACTIVE:
            result.add_skip(job_id, "inactive_status", event_id=event.id)
            return
        _, expected_calendar = self.registry.resolve(job.team)
        if expected_calendar and expected_calendar != calendar_id:
            result.add_skip(job_id, "other_queue", event_id=event.id)
            return

        changes = self.detect_changes(job, event)
        if not changes:
            result.add_skip(job_id, "unchanged", event_id=event.id)
            return

        try:
            await self.job_store.update_job_data(job_id, changes)
        except Exception as e:
            error_type = self.error_handler.classify_error(e)
            logger.error(f"Failed to apply calendar changes to {job_id}: {e}")
            result.add_failure(job_id, e, error_type.value, event_id=event.id)
            return

        jobs_by_id[job_id] = job.replace(**changes)
        logger.info(f"Updated {job_id} from calendar event {event.id}: {changes}")
        result.add_success(job_id, action="updated", event_id=event.id, changes=changes)

    def detect_changes(self, job: JobRecord, event: CalendarEvent) -> Dict[str, str]:
        """イベントの日付・時刻とジョブの差分（終日イベントは日付のみ）"""
        if event.start is None:
            return {}

        start = self._localize(event.start)
        observed = {"date": start.date().isoformat()}
        if not event.all_day and event.end is not None:
            observed["start_time"] = start.strftime("%H:%M")
            observed["end_time"] = self._localize(event.end).strftime("%H:%M")

        current = {
            "date": job.date.strip(),
            "start_time": normalize_time(job.start_time) or job.start_time.strip(),
            "end_time": normalize_time(job.end_time) or job.end_time.strip(),
        }
        return {name: value for name, value in observed.items() if current[name] != value}

    async def _import_event(self, result: BatchResult, team: str, event: CalendarEvent):
        """手動作成イベントを新規ジョブとして登録（時刻指定イベントのみ）"""
        if event.all_day or event.start is None or event.end is None:
            result.add_skip(None, "unlinked_all_day_event", event_id=event.id)
            return

        start = self._localize(event.start)
        customer = event.summary.strip() or IMPORT_DEFAULT_CUSTOMER
        job = await self.job_store.create_job({
            "customer": customer,
            "team": team,
            "date": start.date().isoformat(),
            "start_time": start.strftime("%H:%M"),
            "end_time": self._localize(event.end).strftime("%H:%M"),
            "status": JobStatus.SCHEDULED,
            "notes": IMPORT_NOTE,
            "event_id": event.id,
            "type": IMPORT_DEFAULT_TYPE,
            "zone": IMPORT_DEFAULT_ZONE,
            "address": event.location,
            "details": event.description,
        })
        logger.info(f"Imported calendar event {event.id} as {job.job_id}")
        result.add_success(job.job_id, action="created", event_id=event.id)

    def _localize(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value
        return value.astimezone(self.timezone)

