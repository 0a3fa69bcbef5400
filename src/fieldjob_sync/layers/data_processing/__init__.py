"""
データ処理層 - 時刻の正規化と破損データの修復ルール
"""

from .time_normalizer import normalize_time
from .repair_rules import FieldSwapRule, PersonalCalendarMatcher, TeamNameResolver, TeamRepairRule

__all__ = [
    'normalize_time',
    'FieldSwapRule', 'PersonalCalendarMatcher', 'TeamNameResolver', 'TeamRepairRule'
]
