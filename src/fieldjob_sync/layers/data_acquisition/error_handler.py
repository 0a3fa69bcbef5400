"""
エラーハンドリング - 外部呼び出しエラーの分類とリトライ
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from googleapiclient.errors import HttpError

from ...core.errors import ErrorType, ExternalCallFailure, FieldJobSyncError, JobNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ErrorStrategy:
    """エラー対応戦略設定"""
    retry_attempts: int
    backoff_multiplier: float
    initial_delay: float = 1.0


def http_status(error: Exception) -> Optional[int]:
    """HttpErrorのステータスコード（それ以外はNone）"""
    if isinstance(error, HttpError):
        try:
            return int(error.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None
    return None


def is_not_found(error: Exception) -> bool:
    return http_status(error) in (404, 410)


class ErrorHandler:
    """外部呼び出しエラーの分類・リトライ"""

    # エラータイプ別の対応戦略（retry_attempts は初回を含まない再試行回数）
    STRATEGIES: Dict[ErrorType, ErrorStrategy] = {
        ErrorType.NETWORK_ERROR: ErrorStrategy(retry_attempts=3, backoff_multiplier=2.0),
        ErrorType.RATE_LIMIT_ERROR: ErrorStrategy(retry_attempts=5, backoff_multiplier=4.0, initial_delay=2.0),
        ErrorType.AUTHENTICATION_ERROR: ErrorStrategy(retry_attempts=0, backoff_multiplier=1.0),
        ErrorType.NOT_FOUND_ERROR: ErrorStrategy(retry_attempts=0, backoff_multiplier=1.0),
        ErrorType.VALIDATION_ERROR: ErrorStrategy(retry_attempts=0, backoff_multiplier=1.0),
        ErrorType.GOOGLE_CALENDAR_ERROR: ErrorStrategy(retry_attempts=2, backoff_multiplier=2.0),
        ErrorType.JOB_STORE_ERROR: ErrorStrategy(retry_attempts=2, backoff_multiplier=2.0),
        ErrorType.UNKNOWN_ERROR: ErrorStrategy(retry_attempts=0, backoff_multiplier=1.0),
    }

    def __init__(self, strategies: Optional[Dict[ErrorType, ErrorStrategy]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.strategies = {**self.STRATEGIES, **(strategies or {})}
        self.error_counts: Dict[ErrorType, int] = {}
        self._sleep = sleep

    def classify_error(self, error: Exception) -> ErrorType:
        """エラーを分類してタイプを返す"""
        if isinstance(error, ExternalCallFailure):
            return error.error_type

        if isinstance(error, JobNotFoundError):
            return ErrorType.NOT_FOUND_ERROR

        status = http_status(error)
        if status is not None:
            if status in (404, 410):
                return ErrorType.NOT_FOUND_ERROR
            if status == 429:
                return ErrorType.RATE_LIMIT_ERROR
            if status == 403 and ("rateLimitExceeded" in str(error) or "userRateLimitExceeded" in str(error)):
                return ErrorType.RATE_LIMIT_ERROR
            if status in (401, 403):
                return ErrorType.AUTHENTICATION_ERROR
            if status == 400:
                return ErrorType.VALIDATION_ERROR
            if status >= 500:
                return ErrorType.NETWORK_ERROR

        if isinstance(error, (ConnectionError, TimeoutError)):
            return ErrorType.NETWORK_ERROR

        error_message = str(error).lower()

        if any(keyword in error_message for keyword in ['connection', 'timeout', 'network']):
            return ErrorType.NETWORK_ERROR

        if any(keyword in error_message for keyword in ['unauthorized', '401', 'authentication', 'invalid_grant']):
            return ErrorType.AUTHENTICATION_ERROR

        if any(keyword in error_message for keyword in ['rate limit', '429', 'too many requests', 'quota']):
            return ErrorType.RATE_LIMIT_ERROR

        if isinstance(error, (ValueError, FieldJobSyncError)):
            return ErrorType.VALIDATION_ERROR

        if 'calendar' in error_message:
            return ErrorType.GOOGLE_CALENDAR_ERROR

        if 'sheet' in error_message or 'spreadsheet' in error_message:
            return ErrorType.JOB_STORE_ERROR

        return ErrorType.UNKNOWN_ERROR

    async def call_with_retry(self, service: str, operation: str, call: Callable[[], Awaitable[T]]) -> T:
        """戦略に従って再試行し、最終的な失敗は ExternalCallFailure にする"""
        attempt = 0
        while True:
            try:
                return await call()
            except ExternalCallFailure:
                raise
            except Exception as e:
                error_type = self.classify_error(e)
                strategy = self.strategies.get(error_type, self.strategies[ErrorType.UNKNOWN_ERROR])

                # 404/410 は呼び出し側が「存在しない」として扱う想定内の結果
                expected = error_type == ErrorType.NOT_FOUND_ERROR
                if not expected:
                    self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1

                if attempt >= strategy.retry_attempts:
                    log = logger.debug if expected else logger.error
                    log(f"{service}.{operation} failed ({error_type.value}) after {attempt + 1} attempt(s): {e}")
                    raise ExternalCallFailure(
                        service, operation, str(e),
                        error_type=error_type,
                        status_code=http_status(e),
                    ) from e

                delay = strategy.initial_delay * (strategy.backoff_multiplier ** attempt)
                attempt += 1
                logger.warning(f"{service}.{operation} failed ({error_type.value}), retry {attempt}/{strategy.retry_attempts} in {delay:.1f}s")
                await self._sleep(delay)
