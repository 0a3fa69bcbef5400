"""
Googleアダプターテスト（APIクライアントはモック）
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest
from googleapiclient.errors import HttpError

from fieldjob_sync.config.settings import GoogleConfig
from fieldjob_sync.core.errors import ErrorType, ExternalCallFailure, ValidationFailure
from fieldjob_sync.core.models import DetectionProvenance
from fieldjob_sync.layers.data_acquisition.google_calendar_service import GoogleCalendarService
from fieldjob_sync.layers.data_acquisition.google_sheets_store import GoogleSheetsJobStore, column_letter

HEADERS = ["job_id", "team", "status", "date", "eventId", "zone", "created_at", "auto_detection"]
ROWS = [
    HEADERS,
    ["JOB-000001", "ทีม A", "Scheduled", "2025-03-10", "evt-1", "บางนา", "2025-03-01 09:00:00"],
    ["JOB-000002", "ทีม B", "New", "", "", "", "2025-03-05 09:00:00", ""],
]


def request(result):
    return Mock(execute=Mock(return_value=result))


def http_error(status):
    return HttpError(Mock(status=status, reason="error"), b'{"error": {"message": "error"}}')


@pytest.fixture
def sheets_values():
    values = MagicMock()

    def get(spreadsheetId, range):
        if range.endswith("!1:1"):
            return request({"values": [HEADERS]})
        return request({"values": ROWS})

    values.get.side_effect = get
    values.batchUpdate.return_value = request({})
    values.append.return_value = request({})
    return values


@pytest.fixture
def sheets_store(sheets_values, no_sleep_handler):
    service = MagicMock()
    service.spreadsheets.return_value.values.return_value = sheets_values
    config = GoogleConfig(spreadsheet_id="sheet-1", jobs_sheet_name="Jobs")
    return GoogleSheetsJobStore(config, error_handler=no_sleep_handler, service=service)


class TestGoogleSheetsJobStore:

    def test_column_letter(self):
        assert column_letter(0) == "A"
        assert column_letter(25) == "Z"
        assert column_letter(27) == "AB"

    @pytest.mark.asyncio
    async def test_get_all_jobs_newest_first(self, sheets_store):
        jobs = await sheets_store.get_all_jobs()

        assert [job.job_id for job in jobs] == ["JOB-000002", "JOB-000001"]
        assert jobs[1].row_number == 2
        assert jobs[1].event_id == "evt-1"

    @pytest.mark.asyncio
    async def test_update_status_with_provenance(self, sheets_store, sheets_values):
        provenance = DetectionProvenance(source_calendar_id="queue-a", detection_time=datetime(2025, 3, 11, 10))

        job = await sheets_store.update_job_status("JOB-000001", "นัดหมายเรียบร้อยแล้ว", provenance=provenance)

        body = sheets_values.batchUpdate.call_args.kwargs["body"]
        cells = {item["range"]: item["values"][0][0] for item in body["data"]}
        assert cells["Jobs!C2"] == "นัดหมายเรียบร้อยแล้ว"
        assert json.loads(cells["Jobs!H2"])["source_calendar"] == "queue-a"
        assert job.status == "นัดหมายเรียบร้อยแล้ว"

    @pytest.mark.asyncio
    async def test_update_event_id(self, sheets_store, sheets_values):
        assert await sheets_store.update_job_event_id("JOB-000002", "evt-2")

        body = sheets_values.batchUpdate.call_args.kwargs["body"]
        assert body["data"] == [{"range": "Jobs!E3", "values": [["evt-2"]]}]

    @pytest.mark.asyncio
    async def test_update_job_data_rejects_unknown_fields(self, sheets_store):
        with pytest.raises(ValidationFailure):
            await sheets_store.update_job_data("JOB-000001", {"colour": "red"})

    @pytest.mark.asyncio
    async def test_create_job_assigns_next_id(self, sheets_store, sheets_values):
        job = await sheets_store.create_job({"team": "ทีม A", "date": "2025-04-01"})

        assert job.job_id == "JOB-000003"
        assert job.status == "New"
        row = sheets_values.append.call_args.kwargs["body"]["values"][0]
        assert row[0] == "JOB-000003"
        assert row[1] == "ทีม A"


@pytest.fixture
def calendar_api():
    return MagicMock()


@pytest.fixture
def calendar_service(calendar_api, no_sleep_handler):
    return GoogleCalendarService(GoogleConfig(), error_handler=no_sleep_handler, service=calendar_api)


class TestGoogleCalendarService:

    @pytest.mark.asyncio
    async def test_get_event_not_found(self, calendar_service, calendar_api):
        calendar_api.events.return_value.get.return_value = Mock(execute=Mock(side_effect=http_error(404)))
        assert await calendar_service.get_event("queue-a", "evt-1") is None

    @pytest.mark.asyncio
    async def test_get_event_cancelled(self, calendar_service, calendar_api):
        calendar_api.events.return_value.get.return_value = request({"id": "evt-1", "status": "cancelled"})
        assert await calendar_service.get_event("queue-a", "evt-1") is None

    @pytest.mark.asyncio
    async def test_get_event_forbidden_raises(self, calendar_service, calendar_api):
        calendar_api.events.return_value.get.return_value = Mock(execute=Mock(side_effect=http_error(403)))

        with pytest.raises(ExternalCallFailure) as exc_info:
            await calendar_service.get_event("other", "evt-1")
        assert exc_info.value.error_type == ErrorType.AUTHENTICATION_ERROR

    @pytest.mark.asyncio
    async def test_delete_missing_event(self, calendar_service, calendar_api):
        calendar_api.events.return_value.delete.return_value = Mock(execute=Mock(side_effect=http_error(410)))
        assert await calendar_service.delete_event("queue-a", "evt-1") is False

    @pytest.mark.asyncio
    async def test_search_events_paginates(self, calendar_service, calendar_api):
        calendar_api.events.return_value.list.side_effect = [
            request({"items": [{"id": "e1", "summary": "JOB-1: A", "start": {"date": "2025-03-10"}}],
                     "nextPageToken": "p2"}),
            request({"items": [{"id": "e2", "summary": "JOB-1: B", "status": "cancelled"},
                               {"id": "e3", "summary": "JOB-1-2025-03-11: C", "start": {"date": "2025-03-11"}}]}),
        ]

        events = await calendar_service.search_events("queue-a", "JOB-1")

        assert [event.id for event in events] == ["e1", "e3"]
        second_call = calendar_api.events.return_value.list.call_args_list[1]
        assert second_call.kwargs["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_list_events_from_time(self, calendar_service, calendar_api):
        calendar_api.events.return_value.list.return_value = request({
            "items": [{"id": "e1", "summary": "JOB-000001: A",
                       "start": {"dateTime": "2025-08-01T09:00:00+07:00"},
                       "end": {"dateTime": "2025-08-01T12:00:00+07:00"}}],
        })
        since = datetime(2025, 7, 1, tzinfo=timezone.utc)

        events = await calendar_service.list_events("queue-a", time_min=since)

        assert events[0].start.hour == 9
        kwargs = calendar_api.events.return_value.list.call_args.kwargs
        assert kwargs["timeMin"] == "2025-07-01T00:00:00+00:00"
        assert kwargs["orderBy"] == "startTime"
        assert "q" not in kwargs

    @pytest.mark.asyncio
    async def test_list_calendars(self, calendar_service, calendar_api):
        calendar_api.calendarList.return_value.list.return_value = request({
            "items": [{"id": "queue-a", "summary": "ทีม A"}, {"id": "me@example.com", "summary": "Me", "primary": True}],
        })

        calendars = await calendar_service.list_calendars()

        assert [info.id for info in calendars] == ["queue-a", "me@example.com"]
        assert calendars[1].primary
