"""データモデル定義"""

import dataclasses
import re
from datetime import datetime, date, timedelta
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from .errors import SyncGap


JOB_ID_PREFIX = "JOB-"
JOB_ID_PATTERN = re.compile(r"^JOB-(\d+)$")


class JobStatus:
    """ジョブステータス値"""
    NEW = "New"
    NEED_INFO = "Need Info"
    READY_TO_SCHEDULE = "Ready to schedule"
    SCHEDULED = "Scheduled"
    RESCHEDULED = "Rescheduled"
    CANCELLED = "Cancelled"
    IN_PROGRESS = "In progress"
    DONE = "Done"
    CLOSED = "Closed"
    COMPLETED = "Completed"
    # 完了センチネル（自動検知で推定完了）
    APPOINTMENT_CONFIRMED = "นัดหมายเรียบร้อยแล้ว"

    CALENDAR_ACTIVE = (SCHEDULED, RESCHEDULED)


class TimeWindow:
    """時間帯"""
    AM = "AM"
    PM = "PM"
    ALL_DAY = "All Day"


# Sheetsのヘッダー名とJobRecord属性の対応（属性名と異なるもののみ）
_HEADER_ALIASES = {
    "eventId": "event_id",
    "calendar_event_id": "event_id",
    "customer_phone": "phone",
    "customer_address": "address",
    "job_description": "details",
}


@dataclass
class JobRecord:
    """ジョブレコード（ジョブストアが所有、コアは参照・部分更新のみ）"""
    job_id: str
    team: str = ""
    status: str = ""
    date: str = ""
    date_type: str = ""
    start_date: str = ""
    end_date: str = ""
    time_window: str = ""
    start_time: str = ""
    end_time: str = ""
    zone: str = ""
    customer: str = ""
    customer_name: str = ""
    address: str = ""
    phone: str = ""
    notes: str = ""
    type: str = ""
    details: str = ""
    event_id: str = ""
    created_at: str = ""
    updated_at: str = ""
    extra: Dict[str, str] = field(default_factory=dict)
    row_number: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any], row_number: Optional[int] = None) -> "JobRecord":
        """ヘッダー付き行データから生成"""
        known = {f.name for f in dataclasses.fields(cls)} - {"extra", "row_number"}
        values: Dict[str, str] = {}
        extra: Dict[str, str] = {}

        for key, raw in row.items():
            value = "" if raw is None else str(raw).strip()
            attr = _HEADER_ALIASES.get(key, key)
            if attr in known:
                # 同じ属性に複数カラムがある場合は空でない最初の値を採用
                if not values.get(attr):
                    values[attr] = value
            else:
                extra[key] = value

        values.setdefault("job_id", "")
        return cls(extra=extra, row_number=row_number, **values)

    def to_row(self) -> Dict[str, str]:
        """Sheets書き込み用の辞書（eventIdは既存ヘッダー名）"""
        data = dataclasses.asdict(self)
        data.pop("extra")
        data.pop("row_number")
        data["eventId"] = data.pop("event_id")
        data.update(self.extra)
        return data

    def replace(self, **changes) -> "JobRecord":
        return dataclasses.replace(self, **changes)

    @property
    def display_name(self) -> str:
        return self.customer or self.customer_name

    @property
    def is_range(self) -> bool:
        return self.date_type == "range"


@dataclass
class CalendarInfo:
    """カレンダー情報"""
    id: str
    summary: str = ""
    primary: bool = False


@dataclass
class CalendarEvent:
    """カレンダーイベント（カレンダーサービスが所有）"""
    id: str
    calendar_id: str
    summary: str
    description: str = ""
    location: str = ""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    all_day: bool = False
    status: str = "confirmed"

    @property
    def title_token(self) -> str:
        """タイトル先頭のジョブIDトークン"""
        return self.summary.split(":", 1)[0].strip()

    @classmethod
    def from_api(cls, calendar_id: str, event_data: Dict[str, Any]) -> "CalendarEvent":
        """Google Calendar APIレスポンスをパース"""
        start_info = event_data.get("start", {}) or {}
        end_info = event_data.get("end", {}) or {}
        all_day = "date" in start_info

        if all_day:
            start = datetime.fromisoformat(start_info["date"])
            end = datetime.fromisoformat(end_info["date"]) if end_info.get("date") else None
        else:
            start = _parse_api_datetime(start_info.get("dateTime"))
            end = _parse_api_datetime(end_info.get("dateTime"))

        return cls(
            id=event_data.get("id", ""),
            calendar_id=calendar_id,
            summary=event_data.get("summary", "") or "",
            description=event_data.get("description", "") or "",
            location=event_data.get("location", "") or "",
            start=start,
            end=end,
            all_day=all_day,
            status=event_data.get("status", "confirmed"),
        )


def _parse_api_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class EventDraft:
    """作成・更新するイベント内容"""
    job_id: str
    summary: str
    description: str
    location: str
    event_date: date
    start: Optional[datetime]
    end: Optional[datetime]
    all_day: bool
    timezone: str
    reminder_minutes: List[int] = field(default_factory=lambda: [60, 15])

    def to_dict(self) -> Dict[str, Any]:
        """Google Calendar API形式に変換"""
        event_dict: Dict[str, Any] = {
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "attendees": [],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "popup", "minutes": minutes}
                    for minutes in self.reminder_minutes
                ],
            },
        }

        if self.all_day:
            # 終日イベントの終了日は排他的
            event_dict["start"] = {
                "date": self.event_date.isoformat(),
                "timeZone": self.timezone,
            }
            event_dict["end"] = {
                "date": (self.event_date + timedelta(days=1)).isoformat(),
                "timeZone": self.timezone,
            }
        else:
            event_dict["start"] = {
                "dateTime": self.start.isoformat(),
                "timeZone": self.timezone,
            }
            event_dict["end"] = {
                "dateTime": self.end.isoformat(),
                "timeZone": self.timezone,
            }

        return event_dict


@dataclass
class SyncOutcome:
    """同期結果（no-opとイベント作成を区別する）"""
    job_id: str
    events: List[CalendarEvent] = field(default_factory=list)
    skipped: Optional[SyncGap] = None
    calendar_id: Optional[str] = None
    event_id_written: bool = False
    removed_event_ids: List[str] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return self.skipped is not None

    @property
    def skip_reason(self) -> Optional[str]:
        return self.skipped.reason_code if self.skipped else None

    @property
    def event_ids(self) -> List[str]:
        return [event.id for event in self.events]

    @property
    def primary_event_id(self) -> Optional[str]:
        return self.events[0].id if self.events else None

    def summary(self) -> str:
        if self.is_noop:
            return f"Sync skipped for {self.job_id}: {self.skipped}"
        return (f"Sync completed for {self.job_id}: {len(self.events)} event(s) in {self.calendar_id}, "
                f"{len(self.removed_event_ids)} stale event(s) removed")


class DriftOutcome(Enum):
    """ドリフト検知結果"""
    LINKED = "linked"
    MOVED_EXTERNALLY = "moved_externally"
    DISAPPEARED = "disappeared"
    SKIPPED = "skipped"


@dataclass
class DetectionProvenance:
    """ステータス自動更新の根拠"""
    source_calendar_id: str
    detection_time: datetime
    destination_calendar_id: Optional[str] = None
    destination_calendar_name: Optional[str] = None
    destination_is_personal: bool = False
    disappeared: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "auto_detection": True,
            "source_calendar": self.source_calendar_id,
            "detection_time": self.detection_time.isoformat(),
        }
        if self.disappeared:
            data["disappeared_from_queue"] = True
        else:
            data["moved_from_queue"] = True
            data["moved_to_calendar"] = self.destination_calendar_name
            data["moved_to_calendar_id"] = self.destination_calendar_id
            data["personal_calendar"] = self.destination_is_personal
        return data


@dataclass
class DetectionResult:
    """ジョブ単位の検知結果"""
    job_id: str
    outcome: DriftOutcome
    reason: str = ""
    new_status: Optional[str] = None
    provenance: Optional[DetectionProvenance] = None

    @property
    def status_updated(self) -> bool:
        return self.new_status is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "new_status": self.new_status,
            "provenance": self.provenance.to_dict() if self.provenance else None,
        }


@dataclass
class RunSummary:
    """ドリフトスキャン結果"""
    checked: int = 0
    status_updated: int = 0
    moved: int = 0
    disappeared: int = 0
    errors: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def record(self, result: DetectionResult):
        if result.outcome == DriftOutcome.MOVED_EXTERNALLY:
            self.moved += 1
        elif result.outcome == DriftOutcome.DISAPPEARED:
            self.disappeared += 1
        if result.status_updated:
            self.status_updated += 1
        self.details.append(result.to_dict())

    def record_error(self, job_id: str, error: Exception, error_type: str):
        self.errors += 1
        self.details.append({
            "job_id": job_id,
            "error": str(error),
            "error_type": error_type,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "statusUpdated": self.status_updated,
            "moved": self.moved,
            "disappeared": self.disappeared,
            "errors": self.errors,
            "details": self.details,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def summary(self) -> str:
        return (f"Drift scan: {self.checked} checked, "
                f"{self.status_updated} status updated, "
                f"{self.moved} moved, "
                f"{self.disappeared} disappeared, "
                f"{self.errors} errors")


@dataclass
class BatchResult:
    """一括処理結果（一括ステータス変更・再同期・カラム修復・カレンダー照合）"""
    operation: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    def add_success(self, job_id: str, **info):
        self.succeeded += 1
        self.details.append({"job_id": job_id, "success": True, **info})

    def add_skip(self, job_id: Optional[str], reason: str, **info):
        self.skipped += 1
        self.details.append({"job_id": job_id, "success": True, "skipped": reason, **info})

    def add_failure(self, job_id: Optional[str], error: Exception, error_type: str, **info):
        self.failed += 1
        self.details.append({
            "job_id": job_id,
            "success": False,
            "error": str(error),
            "error_type": error_type,
            **info,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "details": self.details,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def summary(self) -> str:
        return (f"{self.operation}: {self.succeeded}/{self.total} succeeded, "
                f"{self.failed} failed, {self.skipped} skipped")


def next_job_id(existing_ids: Iterable[str]) -> str:
    """既存IDの最大連番 + 1（不正なIDは無視）"""
    max_id = 0
    for job_id in existing_ids:
        match = JOB_ID_PATTERN.match((job_id or "").strip())
        if match:
            max_id = max(max_id, int(match.group(1)))
    return f"{JOB_ID_PREFIX}{max_id + 1:06d}"
