"""
データ取得層 - ジョブストア・カレンダーサービスのアダプターを統括管理
"""

from .base import CalendarService, JobStore
from .error_handler import ErrorHandler, ErrorStrategy
from .google_calendar_service import GoogleCalendarService
from .google_sheets_store import GoogleSheetsJobStore

__all__ = [
    'CalendarService', 'JobStore',
    'ErrorHandler', 'ErrorStrategy',
    'GoogleCalendarService', 'GoogleSheetsJobStore'
]
