"""
Field Job Sync - ジョブレコードとGoogle Calendarの同期・ドリフト検知
"""

__version__ = "1.0.0"
