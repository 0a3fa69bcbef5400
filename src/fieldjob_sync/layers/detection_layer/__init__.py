"""
検知層 - キューカレンダー外へのイベント移動・消失の検知とデータ修復
"""

from .drift_detector import DriftDetector
from .column_repair import ColumnRepairService

__all__ = ['DriftDetector', 'ColumnRepairService']
