"""
スケジューリング層 - ドリフトスキャンの定期実行
"""

from .reconciliation_scheduler import ReconciliationScheduler, ScheduleHandle

__all__ = ['ReconciliationScheduler', 'ScheduleHandle']
