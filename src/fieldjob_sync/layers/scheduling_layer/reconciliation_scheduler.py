"""
定期実行スケジューラー - 毎日決まった時刻にドリフトスキャンを実行

APScheduler の AsyncIOScheduler を使うため、start() はイベントループ内で呼び出すこと。
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ...config.settings import SchedulerConfig
from ...core.models import RunSummary
from ...utils.enhanced_logger import EnhancedLogger, get_logger
from ..detection_layer.drift_detector import DriftDetector
from ..storage.run_history import RunHistoryStore

logger = logging.getLogger(__name__)

RUN_KIND = "drift_scan"


@dataclass(frozen=True)
class ScheduleHandle:
    """登録済みタスクの識別子"""
    task_name: str
    fire_time: str
    timezone: str


def parse_fire_time(fire_time: str):
    hours, minutes = fire_time.strip().split(":")
    hour, minute = int(hours), int(minutes)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid fire time: {fire_time}")
    return hour, minute


class ReconciliationScheduler:
    """ドリフトスキャンの定期・手動実行"""

    def __init__(self,
                 detector: DriftDetector,
                 config: Optional[SchedulerConfig] = None,
                 history: Optional[RunHistoryStore] = None,
                 operation_logger: Optional[EnhancedLogger] = None,
                 scheduler: Optional[AsyncIOScheduler] = None):
        self.detector = detector
        self.config = config or SchedulerConfig()
        self.history = history
        self.operation_logger = operation_logger
        self.hour, self.minute = parse_fire_time(self.config.fire_time)
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self._handle: Optional[ScheduleHandle] = None
        self.last_run: Optional[Dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self._handle is not None

    def start(self) -> ScheduleHandle:
        """定期タスクを登録（登録済みなら既存のハンドルを返す）"""
        if self._handle is not None:
            logger.info(f"Scheduler already running: {self._handle.task_name}")
            return self._handle

        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=self.config.timezone)

        trigger = CronTrigger(hour=self.hour, minute=self.minute, timezone=self.config.timezone)
        self._scheduler.add_job(
            self._scheduled_run,
            trigger,
            id=self.config.task_name,
            name=self.config.task_name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()

        self._handle = ScheduleHandle(self.config.task_name, self.config.fire_time, self.config.timezone)
        logger.info(f"Drift detection scheduler started: {self.next_run_description()}")
        return self._handle

    def stop(self, handle: Optional[ScheduleHandle] = None) -> bool:
        """登録解除（未登録なら False）

        外部から渡されたスケジューラーはタスクを外すだけで停止しない。
        """
        if self._handle is None or (handle is not None and handle != self._handle):
            return False

        try:
            if self._scheduler.get_job(self._handle.task_name):
                self._scheduler.remove_job(self._handle.task_name)
            if self._owns_scheduler and self._scheduler.running:
                self._scheduler.shutdown(wait=False)
        except RuntimeError as e:
            # イベントループ終了後の停止
            logger.warning(f"Scheduler shutdown after event loop closed: {e}")
        finally:
            if self._owns_scheduler:
                self._scheduler = None
            self._handle = None

        logger.info("Drift detection scheduler stopped")
        return True

    async def run_now(self) -> RunSummary:
        """手動実行（実行中のスキャンがあれば完了を待ってから実行）"""
        logger.info("Running drift detection manually")
        summary = await self.detector.run_drift_scan()
        await self._record(summary)
        return summary

    async def _scheduled_run(self):
        logger.info("Running scheduled drift detection")
        op_logger = self.operation_logger or get_logger()
        try:
            summary = await self.detector.run_drift_scan()
            await self._record(summary)
        except Exception as e:
            op_logger.error("Scheduled drift detection failed", error=e, task=self.config.task_name)
            return
        logger.info(f"Scheduled drift detection completed: {summary.summary()}")

    async def _record(self, summary: RunSummary):
        self.last_run = summary.to_dict()
        if self.history is None:
            return
        try:
            await self.history.record_run(RUN_KIND, self.last_run)
        except Exception as e:
            logger.error(f"Failed to record drift scan history: {e}")

    def next_run_description(self) -> str:
        return f"Daily at {self.hour:02d}:{self.minute:02d} ({self.config.timezone})"

    def next_run_time(self) -> Optional[datetime]:
        if self._handle is None or self._scheduler is None:
            return None
        job = self._scheduler.get_job(self._handle.task_name)
        return job.next_run_time if job else None

    def status(self) -> Dict[str, Any]:
        """スケジューラー状態"""
        op_logger = self.operation_logger or get_logger()
        next_time = self.next_run_time()
        return {
            "active": self.is_active,
            "task_name": self.config.task_name,
            "timezone": self.config.timezone,
            "next_run": self.next_run_description(),
            "next_run_time": next_time.isoformat() if next_time else None,
            "running": self.detector.is_scanning,
            "last_run": self.last_run,
            "health": op_logger.get_health_status(),
        }
