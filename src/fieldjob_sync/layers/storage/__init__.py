"""
ストレージ層 - 実行履歴の永続化
"""

from .run_history import RunHistoryStore, RunRecord

__all__ = ['RunHistoryStore', 'RunRecord']
