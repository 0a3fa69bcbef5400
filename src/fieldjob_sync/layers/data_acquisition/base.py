"""
外部サービス契約 - ジョブストアとカレンダーサービスのインターフェース
アダプター同士は互いを参照しない
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...core.errors import JobNotFoundError
from ...core.models import CalendarEvent, CalendarInfo, DetectionProvenance, JobRecord, next_job_id


class JobStore(ABC):
    """表形式ジョブストア（ジョブ項目の正本）"""

    @abstractmethod
    async def get_all_jobs(self) -> List[JobRecord]:
        """全ジョブ（作成日の新しい順）"""

    @abstractmethod
    async def update_job_status(self,
                                job_id: str,
                                status: str,
                                notes: str = "",
                                provenance: Optional[DetectionProvenance] = None) -> JobRecord:
        """ステータス更新（notes指定時はnotesも更新）"""

    @abstractmethod
    async def update_job_event_id(self, job_id: str, event_id: str) -> bool:
        """イベントIDの書き戻し"""

    @abstractmethod
    async def update_job_data(self, job_id: str, fields: Dict[str, Any]) -> bool:
        """任意項目の部分更新"""

    @abstractmethod
    async def create_job(self, fields: Dict[str, Any]) -> JobRecord:
        """新規ジョブ作成"""

    async def get_job(self, job_id: str) -> JobRecord:
        for job in await self.get_all_jobs():
            if job.job_id == job_id:
                return job
        raise JobNotFoundError(job_id)

    async def get_next_job_id(self) -> str:
        jobs = await self.get_all_jobs()
        return next_job_id(job.job_id for job in jobs)


class CalendarService(ABC):
    """カレンダーサービス"""

    @abstractmethod
    async def list_calendars(self) -> List[CalendarInfo]:
        """サービスアカウントから参照可能なカレンダー一覧"""

    @abstractmethod
    async def get_event(self, calendar_id: str, event_id: str) -> Optional[CalendarEvent]:
        """イベント取得（存在しない・キャンセル済みはNone）"""

    @abstractmethod
    async def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> CalendarEvent:
        """イベント作成"""

    @abstractmethod
    async def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> CalendarEvent:
        """イベント更新"""

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """イベント削除（既に存在しなければFalse）"""

    @abstractmethod
    async def search_events(self, calendar_id: str, query: str) -> List[CalendarEvent]:
        """フリーテキスト検索"""

    @abstractmethod
    async def list_events(self, calendar_id: str, time_min: Optional[datetime] = None) -> List[CalendarEvent]:
        """イベント一覧（time_min 以降、開始時刻順）"""
