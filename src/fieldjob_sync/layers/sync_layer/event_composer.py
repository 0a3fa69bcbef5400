"""
イベント組み立て - ジョブレコードからカレンダーイベント内容を生成
"""

import logging
from datetime import date, datetime, time
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from ...config.settings import SyncConfig
from ...core.errors import ValidationFailure
from ...core.models import EventDraft, JobRecord, TimeWindow
from ..data_processing.time_normalizer import normalize_time, to_minutes

logger = logging.getLogger(__name__)

CORRUPTED_END_TIME = "00:00"
NOT_SPECIFIED = "ไม่ระบุ"
NONE_TEXT = "ไม่มี"
DEFAULT_CUSTOMER = "ลูกค้า"


def parse_job_date(value: str, job_id: str, field_name: str = "date") -> date:
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError):
        raise ValidationFailure(f"Invalid date format in {field_name}: \"{value}\"", job_id=job_id, field_name=field_name)


class EventComposer:
    """イベント内容の組み立て"""

    def __init__(self, config: Optional[SyncConfig] = None):
        self.config = config or SyncConfig()
        self.timezone = ZoneInfo(self.config.timezone)

    def resolve_times(self, job: JobRecord) -> Tuple[str, str]:
        """開始・終了時刻の正規化と終了時刻 00:00 の修復

        正規化・修復後も不正な場合は ValidationFailure。
        """
        start_given = bool(job.start_time.strip())
        end_given = bool(job.end_time.strip())

        start = normalize_time(job.start_time) if start_given else self.config.default_start_time
        end = normalize_time(job.end_time) if end_given else self.config.default_end_time

        if end == CORRUPTED_END_TIME:
            start, end = self._repair_window(job, start, start_given)

        if start is None:
            raise ValidationFailure(f"Invalid start_time: \"{job.start_time}\"", job_id=job.job_id, field_name="start_time")
        if end is None:
            raise ValidationFailure(f"Invalid end_time: \"{job.end_time}\"", job_id=job.job_id, field_name="end_time")
        if to_minutes(end) <= to_minutes(start):
            raise ValidationFailure(f"end_time {end} is not after start_time {start}", job_id=job.job_id, field_name="end_time")

        return start, end

    def _repair_window(self, job: JobRecord, start: Optional[str], start_given: bool) -> Tuple[Optional[str], str]:
        """time_window に基づく固定時間帯で置き換え"""
        policy = self.config.time_window_policy.get(job.time_window)
        if policy:
            start, end = policy[0], policy[1]
        elif start_given:
            if start is None:
                # 開始時刻が解釈できなければ推測しない
                return None, self.config.default_end_time
            if to_minutes(start) >= to_minutes(self.config.afternoon_start_time):
                end = self.config.afternoon_end_time
            else:
                end = self.config.morning_end_time
        else:
            start, end = self.config.default_start_time, self.config.default_end_time

        logger.info(f"Fixed invalid end_time \"{job.end_time}\" for {job.job_id} "
                    f"using time_window \"{job.time_window}\": {start} - {end}")
        return start, end

    def compose(self, job: JobRecord) -> EventDraft:
        """1日分のジョブビューからイベントを生成"""
        event_date = parse_job_date(job.date, job.job_id)
        all_day = job.time_window == TimeWindow.ALL_DAY

        start_dt = end_dt = None
        if not all_day:
            start, end = self.resolve_times(job)
            start_dt = self._localize(event_date, start)
            end_dt = self._localize(event_date, end)

        return EventDraft(
            job_id=job.job_id,
            summary=f"{job.job_id}: {job.display_name or DEFAULT_CUSTOMER}",
            description=self._build_description(job),
            location=job.address,
            event_date=event_date,
            start=start_dt,
            end=end_dt,
            all_day=all_day,
            timezone=self.config.timezone,
            reminder_minutes=list(self.config.reminder_minutes),
        )

    def _localize(self, event_date: date, hhmm: str) -> datetime:
        hours, minutes = hhmm.split(":")
        return datetime.combine(event_date, time(int(hours), int(minutes)), tzinfo=self.timezone)

    def _build_description(self, job: JobRecord) -> str:
        lines = [
            f"ประเภทงาน: {job.type or NOT_SPECIFIED}",
            f"ลูกค้า: {job.display_name or NOT_SPECIFIED}",
            f"โทร: {job.phone or NOT_SPECIFIED}",
            f"ที่อยู่: {job.address or NOT_SPECIFIED}",
            f"สถานะ: {job.status or NOT_SPECIFIED}",
            f"ช่วงเวลา: {job.time_window or NOT_SPECIFIED}",
            f"รายละเอียด: {job.details or NONE_TEXT}",
            f"หมายเหตุ: {job.notes or NONE_TEXT}",
        ]
        return "\n".join(lines)
