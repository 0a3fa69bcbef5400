"""
テスト共通フィクスチャ - ジョブストア・カレンダーサービスのインメモリ実装
"""

import itertools
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from fieldjob_sync.config.settings import CalendarsConfig, DetectionConfig, SyncConfig
from fieldjob_sync.core.errors import ErrorType, ExternalCallFailure, JobNotFoundError
from fieldjob_sync.core.models import CalendarEvent, CalendarInfo, DetectionProvenance, JobRecord, JobStatus
from fieldjob_sync.layers.data_acquisition.base import CalendarService, JobStore
from fieldjob_sync.layers.data_acquisition.error_handler import ErrorHandler
from fieldjob_sync.layers.sync_layer.calendar_registry import CalendarRegistry
from fieldjob_sync.layers.sync_layer.event_composer import EventComposer
from fieldjob_sync.layers.sync_layer.sync_engine import SyncEngine

QUEUE_A = "queue-a@group.calendar.google.com"
QUEUE_B = "queue-b@group.calendar.google.com"


class FakeJobStore(JobStore):
    """ジョブストアのインメモリ実装"""

    def __init__(self, jobs: Optional[List[JobRecord]] = None):
        self.jobs: Dict[str, JobRecord] = {job.job_id: job for job in jobs or []}
        self.status_updates: List[Dict[str, Any]] = []
        self.event_id_updates: List[tuple] = []
        self.data_updates: List[tuple] = []
        self.failing_job_ids = set()
        self.fail_listing = False

    def add(self, job: JobRecord) -> JobRecord:
        self.jobs[job.job_id] = job
        return job

    def _check(self, job_id: str):
        if job_id in self.failing_job_ids:
            raise ExternalCallFailure("job_store", "update", "sheet write failed", ErrorType.JOB_STORE_ERROR)
        if job_id not in self.jobs:
            raise JobNotFoundError(job_id)

    async def get_all_jobs(self) -> List[JobRecord]:
        if self.fail_listing:
            raise ExternalCallFailure("job_store", "read_sheet", "sheet unavailable", ErrorType.NETWORK_ERROR)
        return list(self.jobs.values())

    async def update_job_status(self, job_id: str, status: str, notes: str = "",
                                provenance: Optional[DetectionProvenance] = None) -> JobRecord:
        self._check(job_id)
        changes = {"status": status}
        if notes:
            changes["notes"] = notes
        self.jobs[job_id] = self.jobs[job_id].replace(**changes)
        self.status_updates.append({"job_id": job_id, "status": status, "provenance": provenance})
        return self.jobs[job_id]

    async def update_job_event_id(self, job_id: str, event_id: str) -> bool:
        self._check(job_id)
        self.jobs[job_id] = self.jobs[job_id].replace(event_id=event_id)
        self.event_id_updates.append((job_id, event_id))
        return True

    async def update_job_data(self, job_id: str, fields: Dict[str, Any]) -> bool:
        self._check(job_id)
        self.jobs[job_id] = self.jobs[job_id].replace(**fields)
        self.data_updates.append((job_id, fields))
        return True

    async def create_job(self, fields: Dict[str, Any]) -> JobRecord:
        job_id = fields.get("job_id") or await self.get_next_job_id()
        job = JobRecord.from_row({**fields, "job_id": job_id, "status": fields.get("status") or JobStatus.NEW})
        return self.add(job)


class FakeCalendarService(CalendarService):
    """カレンダーサービスのインメモリ実装（検索はタイトルの部分一致）"""

    def __init__(self, calendars: Optional[List[CalendarInfo]] = None):
        self.calendars: List[CalendarInfo] = list(calendars or [])
        self.events: Dict[str, Dict[str, CalendarEvent]] = {info.id: {} for info in self.calendars}
        self.failing_calendars = set()
        self.calls: List[tuple] = []
        self._ids = itertools.count(1)

    def add_calendar(self, calendar_id: str, summary: str = "") -> CalendarInfo:
        info = CalendarInfo(id=calendar_id, summary=summary or calendar_id)
        self.calendars.append(info)
        self.events.setdefault(calendar_id, {})
        return info

    def put_event(self, calendar_id: str, event_id: str, summary: str, **fields) -> CalendarEvent:
        event = CalendarEvent(id=event_id, calendar_id=calendar_id, summary=summary, **fields)
        self.events.setdefault(calendar_id, {})[event_id] = event
        return event

    def _guard(self, calendar_id: str, operation: str):
        self.calls.append((operation, calendar_id))
        if calendar_id in self.failing_calendars:
            raise ExternalCallFailure("google_calendar", operation, "forbidden", ErrorType.AUTHENTICATION_ERROR, 403)

    async def list_calendars(self) -> List[CalendarInfo]:
        return list(self.calendars)

    async def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        self._guard(calendar_id, "get_event")
        event = self.events.get(calendar_id, {}).get(event_id)
        if event is None or event.status == "cancelled":
            return None
        return event

    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> CalendarEvent:
        self._guard(calendar_id, "insert_event")
        event = CalendarEvent.from_api(calendar_id, {**body, "id": f"evt-{next(self._ids)}"})
        self.events.setdefault(calendar_id, {})[event.id] = event
        return event

    async def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> CalendarEvent:
        self._guard(calendar_id, "update_event")
        event = CalendarEvent.from_api(calendar_id, {**body, "id": event_id})
        self.events[calendar_id][event_id] = event
        return event

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        self._guard(calendar_id, "delete_event")
        return self.events.get(calendar_id, {}).pop(event_id, None) is not None

    async def search_events(self, calendar_id: str, query: str) -> List[CalendarEvent]:
        self._guard(calendar_id, "search_events")
        return [event for event in self.events.get(calendar_id, {}).values() if query in event.summary]

    async def list_events(self, calendar_id: str, time_min: Optional[datetime] = None) -> List[CalendarEvent]:
        self._guard(calendar_id, "list_events")
        return [
            event for event in self.events.get(calendar_id, {}).values()
            if time_min is None or event.start is None or _comparable(event.start, time_min) >= time_min
        ]


def _comparable(value: datetime, reference: Optional[datetime]) -> datetime:
    """終日イベント（naive）を比較用に reference のタイムゾーンへ揃える"""
    if reference is not None and value.tzinfo is None and reference.tzinfo is not None:
        return value.replace(tzinfo=reference.tzinfo)
    return value


@pytest.fixture
def job_store():
    return FakeJobStore()


@pytest.fixture
def calendar():
    service = FakeCalendarService()
    service.add_calendar(QUEUE_A, "ทีม A")
    service.add_calendar(QUEUE_B, "ทีม B")
    return service


@pytest.fixture
def calendars_config():
    return CalendarsConfig(team_calendars={"ทีม A": QUEUE_A, "ทีม B": QUEUE_B})


@pytest.fixture
def registry(calendars_config):
    return CalendarRegistry.from_config(calendars_config)


@pytest.fixture
def no_sleep_handler():
    async def no_sleep(delay):
        return None

    return ErrorHandler(sleep=no_sleep)


@pytest.fixture
def sync_config():
    return SyncConfig(bulk_delay_seconds=0)


@pytest.fixture
def detection_config():
    return DetectionConfig(inter_job_delay_seconds=0)


@pytest.fixture
def engine(job_store, calendar, registry, sync_config):
    return SyncEngine(job_store, calendar, registry, EventComposer(sync_config))


@pytest.fixture
def make_job():
    def factory(job_id="JOB-000001", **fields) -> JobRecord:
        defaults = {
            "team": "ทีม A",
            "status": JobStatus.SCHEDULED,
            "date": "2025-03-10",
            "start_time": "09:00",
            "end_time": "12:00",
            "customer": "สมชาย ใจดี",
            "address": "123 ถนนสุขุมวิท",
            "phone": "0812345678",
            "type": "ติดตั้ง",
        }
        defaults.update(fields)
        return JobRecord(job_id=job_id, **defaults)

    return factory
