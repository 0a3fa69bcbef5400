"""
同期エンジン - ジョブレコード → カレンダーイベントの冪等な作成・更新
ジョブストアとカレンダーサービスの両方を保持し、イベントIDの書き戻しもここで行う
"""

import logging
from datetime import timedelta
from typing import List, Optional, Set, Tuple

from ...core.errors import ConfigurationGap, ScheduleMissing, SyncGap, ValidationFailure
from ...core.models import CalendarEvent, EventDraft, JobRecord, SyncOutcome
from ..data_acquisition.base import CalendarService, JobStore
from .calendar_registry import CalendarRegistry
from .event_composer import EventComposer, parse_job_date

logger = logging.getLogger(__name__)


class SyncEngine:
    """ジョブ → カレンダー同期"""

    def __init__(self,
                 job_store: JobStore,
                 calendar: CalendarService,
                 registry: CalendarRegistry,
                 composer: Optional[EventComposer] = None):
        self.job_store = job_store
        self.calendar = calendar
        self.registry = registry
        self.composer = composer or EventComposer()

    async def sync(self, job: JobRecord) -> SyncOutcome:
        """ジョブをチームのキューカレンダーへ同期

        カレンダー未設定・日付なしは no-op（SyncOutcome.skipped）、
        時刻不正は ValidationFailure、外部呼び出し失敗は ExternalCallFailure を送出。
        """
        try:
            calendar_id, day_views = self.plan(job)
        except SyncGap as gap:
            logger.warning(f"Calendar sync skipped for {job.job_id}: {gap}")
            return SyncOutcome(job_id=job.job_id, skipped=gap)

        # 書き込み前に全日分を検証
        drafts = [self.composer.compose(view) for view in day_views]

        events: List[CalendarEvent] = []
        for draft in drafts:
            events.append(await self._upsert(calendar_id, draft))

        # 今回作成・更新したもの以外を削除（日程変更・単日 ⇔ 期間指定の切り替え・重複）
        removed = await self._delete_owned_events(calendar_id, job.job_id, keep={event.id for event in events})

        outcome = SyncOutcome(job_id=job.job_id, events=events, calendar_id=calendar_id, removed_event_ids=removed)
        outcome.event_id_written = await self._write_back_event_id(job, outcome.primary_event_id)

        logger.info(outcome.summary())
        return outcome

    def plan(self, job: JobRecord) -> Tuple[str, List[JobRecord]]:
        """(キューカレンダーID, 1日ごとのジョブビュー)"""
        team, calendar_id = self.registry.resolve(job.team)
        if not calendar_id:
            raise ConfigurationGap(team, job.team)
        return calendar_id, self.expand_schedule(job)

    def expand_schedule(self, job: JobRecord) -> List[JobRecord]:
        """期間指定ジョブを1日1件のビューに展開（派生IDはタイトルの一意性のためだけに使う）"""
        if job.is_range and job.start_date.strip() and job.end_date.strip():
            start = parse_job_date(job.start_date, job.job_id, "start_date")
            end = parse_job_date(job.end_date, job.job_id, "end_date")
            if end < start:
                raise ValidationFailure(
                    f"end_date {end} is before start_date {start}", job_id=job.job_id, field_name="end_date"
                )

            views = []
            current = start
            while current <= end:
                day = current.isoformat()
                views.append(job.replace(date=day, job_id=f"{job.job_id}-{day}"))
                current += timedelta(days=1)

            logger.debug(f"Expanded {job.job_id} into {len(views)} daily events")
            return views

        if job.date.strip():
            return [job]

        raise ScheduleMissing(job.job_id)

    async def find_existing_event(self, calendar_id: str, job_id: str) -> Optional[CalendarEvent]:
        """タイトル先頭トークンがジョブIDと一致するイベントを検索"""
        for event in await self.calendar.search_events(calendar_id, job_id):
            if event.title_token == job_id:
                return event
        return None

    async def _upsert(self, calendar_id: str, draft: EventDraft) -> CalendarEvent:
        existing = await self.find_existing_event(calendar_id, draft.job_id)

        if existing:
            event = await self.calendar.update_event(calendar_id, existing.id, draft.to_dict())
            logger.info(f"Updated calendar event for job: {draft.job_id}")
        else:
            event = await self.calendar.insert_event(calendar_id, draft.to_dict())
            logger.info(f"Created calendar event for job: {draft.job_id}")

        return event

    async def _write_back_event_id(self, job: JobRecord, event_id: Optional[str]) -> bool:
        """イベントIDをジョブストアへ書き戻す（失敗してもイベントは有効なのでログのみ）"""
        if not event_id or event_id == job.event_id:
            return False

        try:
            await self.job_store.update_job_event_id(job.job_id, event_id)
        except Exception as e:
            logger.error(f"Failed to update eventId for job {job.job_id}: {e}")
            return False

        logger.info(f"Updated job {job.job_id} with eventId: {event_id}")
        return True

    async def unsync(self, job: JobRecord) -> List[str]:
        """ジョブに紐づくイベント（期間指定の派生分を含む）を削除"""
        team, calendar_id = self.registry.resolve(job.team)
        if not calendar_id:
            logger.warning(f"No calendar configured for team: {team} (original: {job.team})")
            return []

        deleted = await self._delete_owned_events(calendar_id, job.job_id)
        logger.info(f"Deleted {len(deleted)} calendar event(s) for job: {job.job_id}")
        return deleted

    async def _delete_owned_events(self, calendar_id: str, job_id: str, keep: Set[str] = frozenset()) -> List[str]:
        """ジョブIDまたは派生IDをタイトルに持つイベントのうち、イベントIDが keep にないものを削除"""
        derived_prefix = f"{job_id}-"
        deleted = []
        for event in await self.calendar.search_events(calendar_id, job_id):
            if event.id in keep:
                continue
            token = event.title_token
            if token == job_id or token.startswith(derived_prefix):
                if await self.calendar.delete_event(calendar_id, event.id):
                    deleted.append(event.id)
                    logger.info(f"Deleted calendar event {event.id} ({token}) for job: {job_id}")
        return deleted
