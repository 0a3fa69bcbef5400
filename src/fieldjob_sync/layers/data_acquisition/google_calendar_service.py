"""
Google Calendarアダプター
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build

from ...config.settings import GoogleConfig
from ...core.errors import ErrorType, ExternalCallFailure
from ...core.models import CalendarEvent, CalendarInfo
from .base import CalendarService
from .error_handler import ErrorHandler
from .google_auth import CALENDAR_SCOPES, build_credentials

logger = logging.getLogger(__name__)

SERVICE_NAME = "google_calendar"


class GoogleCalendarService(CalendarService):
    """Google Calendar API v3 アダプター（セッションは遅延生成・再利用）"""

    def __init__(self,
                 config: GoogleConfig,
                 error_handler: Optional[ErrorHandler] = None,
                 service: Any = None):
        self.config = config
        self.error_handler = error_handler or ErrorHandler()
        self.service = service

    def _get_service(self):
        """認証済みサービスを取得（未生成の場合のみ生成）"""
        if self.service is None:
            credentials = build_credentials(self.config, CALENDAR_SCOPES)
            self.service = build('calendar', 'v3', credentials=credentials, cache_discovery=False)
            logger.info("Google Calendar service initialized")
        return self.service

    async def _execute(self, operation: str, make_request: Callable[[Any], Any]) -> Dict[str, Any]:
        async def call():
            request = make_request(self._get_service())
            return await asyncio.to_thread(request.execute)

        return await self.error_handler.call_with_retry(SERVICE_NAME, operation, call)

    async def list_calendars(self) -> List[CalendarInfo]:
        calendars: List[CalendarInfo] = []
        page_token = None

        while True:
            result = await self._execute(
                "list_calendars",
                lambda service: service.calendarList().list(pageToken=page_token),
            )
            for item in result.get('items', []):
                calendars.append(CalendarInfo(
                    id=item.get('id', ''),
                    summary=item.get('summary', ''),
                    primary=bool(item.get('primary', False)),
                ))
            page_token = result.get('nextPageToken')
            if not page_token:
                break

        logger.debug(f"Found {len(calendars)} reachable calendars")
        return calendars

    async def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        try:
            data = await self._execute(
                "get_event",
                lambda service: service.events().get(calendarId=calendar_id, eventId=event_id),
            )
        except ExternalCallFailure as e:
            if e.error_type == ErrorType.NOT_FOUND_ERROR:
                return None
            raise

        # 削除直後のイベントは status=cancelled で返る
        if data.get('status') == 'cancelled':
            return None
        return CalendarEvent.from_api(calendar_id, data)

    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> CalendarEvent:
        data = await self._execute(
            "insert_event",
            lambda service: service.events().insert(calendarId=calendar_id, body=body),
        )
        return CalendarEvent.from_api(calendar_id, data)

    async def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> CalendarEvent:
        data = await self._execute(
            "update_event",
            lambda service: service.events().update(calendarId=calendar_id, eventId=event_id, body=body),
        )
        return CalendarEvent.from_api(calendar_id, data)

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        try:
            await self._execute(
                "delete_event",
                lambda service: service.events().delete(calendarId=calendar_id, eventId=event_id),
            )
        except ExternalCallFailure as e:
            if e.error_type == ErrorType.NOT_FOUND_ERROR:
                return False
            raise
        return True

    async def search_events(self, calendar_id: str, query: str) -> List[CalendarEvent]:
        return await self._list_all("search_events", calendar_id, q=query)

    async def list_events(self, calendar_id: str, time_min: Optional[datetime] = None) -> List[CalendarEvent]:
        params: Dict[str, Any] = {'orderBy': 'startTime'}
        if time_min is not None:
            params['timeMin'] = time_min.isoformat()
        return await self._list_all("list_events", calendar_id, **params)

    async def _list_all(self, operation: str, calendar_id: str, **params) -> List[CalendarEvent]:
        """events().list の全ページを取得（キャンセル済みは除外）"""
        events: List[CalendarEvent] = []
        page_token = None

        while True:
            result = await self._execute(
                operation,
                lambda service: service.events().list(
                    calendarId=calendar_id,
                    singleEvents=True,
                    showDeleted=False,
                    maxResults=250,
                    pageToken=page_token,
                    **params,
                ),
            )
            for item in result.get('items', []):
                if item.get('status') != 'cancelled':
                    events.append(CalendarEvent.from_api(calendar_id, item))
            page_token = result.get('nextPageToken')
            if not page_token:
                break

        return events
