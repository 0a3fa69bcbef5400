"""
例外定義 - 同期・検知処理のエラー分類
"""

from enum import Enum
from typing import Optional


class ErrorType(Enum):
    """エラータイプ分類"""
    NETWORK_ERROR = "network_error"
    AUTHENTICATION_ERROR = "authentication_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    NOT_FOUND_ERROR = "not_found_error"
    VALIDATION_ERROR = "validation_error"
    JOB_STORE_ERROR = "job_store_error"
    GOOGLE_CALENDAR_ERROR = "google_calendar_error"
    UNKNOWN_ERROR = "unknown_error"


class FieldJobSyncError(Exception):
    """基底例外"""


class SyncGap(FieldJobSyncError):
    """同期対象外（エラーではない、no-op扱い）"""

    reason_code = "sync_gap"


class ConfigurationGap(SyncGap):
    """チームに対応するカレンダーが設定されていない"""

    reason_code = "no_calendar_configured"

    def __init__(self, team: str, original_team: Optional[str] = None):
        self.team = team
        self.original_team = original_team
        super().__init__(f"No calendar configured for team: {team} (original: {original_team})")


class ScheduleMissing(SyncGap):
    """日付情報がない"""

    reason_code = "no_schedule"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"No usable schedule date for job {job_id}")


class ValidationFailure(FieldJobSyncError):
    """日時が正規化・修復後も不正"""

    def __init__(self, message: str, job_id: Optional[str] = None, field_name: Optional[str] = None):
        self.job_id = job_id
        self.field_name = field_name
        super().__init__(message)


class ExternalCallFailure(FieldJobSyncError):
    """外部サービス（ジョブストア・カレンダー）呼び出しの失敗"""

    def __init__(self,
                 service: str,
                 operation: str,
                 message: str,
                 error_type: ErrorType = ErrorType.UNKNOWN_ERROR,
                 status_code: Optional[int] = None):
        self.service = service
        self.operation = operation
        self.error_type = error_type
        self.status_code = status_code
        super().__init__(f"{service}.{operation} failed ({error_type.value}): {message}")


class JobNotFoundError(FieldJobSyncError):
    """ジョブストアに該当ジョブが存在しない"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")
