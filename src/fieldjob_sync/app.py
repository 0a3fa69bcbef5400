"""
アプリケーション構築 - 各アダプター・サービスを一度だけ生成して注入する
"""

from dataclasses import dataclass
from typing import Optional

from .config.settings import AppConfig
from .layers.data_acquisition.base import CalendarService, JobStore
from .layers.data_acquisition.error_handler import ErrorHandler
from .layers.data_acquisition.google_calendar_service import GoogleCalendarService
from .layers.data_acquisition.google_sheets_store import GoogleSheetsJobStore
from .layers.detection_layer.column_repair import ColumnRepairService
from .layers.detection_layer.drift_detector import DriftDetector
from .layers.scheduling_layer.reconciliation_scheduler import ReconciliationScheduler
from .layers.storage.run_history import RunHistoryStore
from .layers.sync_layer.calendar_registry import CalendarRegistry
from .layers.sync_layer.calendar_reconciler import CalendarReconciler
from .layers.sync_layer.event_composer import EventComposer
from .layers.sync_layer.job_lifecycle import JobLifecycleService
from .layers.sync_layer.sync_engine import SyncEngine
from .utils.enhanced_logger import EnhancedLogger, setup_logging


@dataclass
class Application:
    """構築済みサービス一式"""
    config: AppConfig
    logger: EnhancedLogger
    error_handler: ErrorHandler
    job_store: JobStore
    calendar: CalendarService
    registry: CalendarRegistry
    composer: EventComposer
    engine: SyncEngine
    lifecycle: JobLifecycleService
    reconciler: CalendarReconciler
    detector: DriftDetector
    column_repair: ColumnRepairService
    scheduler: ReconciliationScheduler
    history: Optional[RunHistoryStore]


def build_application(config: AppConfig,
                      job_store: Optional[JobStore] = None,
                      calendar: Optional[CalendarService] = None,
                      error_handler: Optional[ErrorHandler] = None) -> Application:
    """設定からアプリケーションを構築（アダプターは差し替え可能）"""
    operation_logger = setup_logging({
        'level': config.logging.level,
        'file_path': config.logging.file_path,
        'name': config.logging.name,
        'metrics_enabled': config.logging.metrics_enabled,
    })
    error_handler = error_handler or ErrorHandler()

    job_store = job_store or GoogleSheetsJobStore(config.google, config.sync.timezone, error_handler)
    calendar = calendar or GoogleCalendarService(config.google, error_handler)

    registry = CalendarRegistry.from_config(config.calendars)
    composer = EventComposer(config.sync)
    engine = SyncEngine(job_store, calendar, registry, composer)
    lifecycle = JobLifecycleService(job_store, engine, error_handler, config.sync.bulk_delay_seconds)
    reconciler = CalendarReconciler(
        job_store,
        calendar,
        registry,
        config.sync.timezone,
        error_handler=error_handler,
        operation_logger=operation_logger,
    )

    detector = DriftDetector(
        job_store,
        calendar,
        registry,
        config.detection,
        error_handler=error_handler,
        operation_logger=operation_logger,
    )
    column_repair = ColumnRepairService.from_config(job_store, config.repair, error_handler)

    history = RunHistoryStore(config.history.database_path) if config.history.enabled else None
    scheduler = ReconciliationScheduler(detector, config.scheduler, history, operation_logger)

    return Application(
        config=config,
        logger=operation_logger,
        error_handler=error_handler,
        job_store=job_store,
        calendar=calendar,
        registry=registry,
        composer=composer,
        engine=engine,
        lifecycle=lifecycle,
        reconciler=reconciler,
        detector=detector,
        column_repair=column_repair,
        scheduler=scheduler,
        history=history,
    )
