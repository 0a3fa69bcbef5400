"""
同期層 - ジョブ → Google Calendar の冪等な同期を管理
"""

from .calendar_registry import CalendarRegistry
from .event_composer import EventComposer
from .sync_engine import SyncEngine
from .job_lifecycle import JobLifecycleService, StatusChange
from .calendar_reconciler import CalendarReconciler

__all__ = [
    'CalendarRegistry', 'EventComposer', 'SyncEngine',
    'JobLifecycleService', 'StatusChange', 'CalendarReconciler'
]
