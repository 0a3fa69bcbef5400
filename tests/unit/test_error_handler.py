"""
エラー分類・リトライテスト
"""

from unittest.mock import Mock

import pytest
from googleapiclient.errors import HttpError

from fieldjob_sync.core.errors import ErrorType, ExternalCallFailure, ValidationFailure
from fieldjob_sync.layers.data_acquisition.error_handler import ErrorHandler, ErrorStrategy, is_not_found


def http_error(status: int, message: str = "error") -> HttpError:
    resp = Mock(status=status, reason=message)
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode()
    return HttpError(resp, content)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def error_handler(sleeps):
    async def fake_sleep(delay):
        sleeps.append(delay)

    return ErrorHandler(sleep=fake_sleep)


class TestClassification:
    """エラー分類"""

    @pytest.mark.parametrize("status, expected", [
        (404, ErrorType.NOT_FOUND_ERROR),
        (410, ErrorType.NOT_FOUND_ERROR),
        (429, ErrorType.RATE_LIMIT_ERROR),
        (401, ErrorType.AUTHENTICATION_ERROR),
        (400, ErrorType.VALIDATION_ERROR),
        (503, ErrorType.NETWORK_ERROR),
    ])
    def test_http_status(self, error_handler, status, expected):
        assert error_handler.classify_error(http_error(status)) == expected

    def test_transport_errors(self, error_handler):
        assert error_handler.classify_error(ConnectionError("reset")) == ErrorType.NETWORK_ERROR
        assert error_handler.classify_error(TimeoutError()) == ErrorType.NETWORK_ERROR

    def test_keywords(self, error_handler):
        assert error_handler.classify_error(Exception("invalid_grant: token expired")) == ErrorType.AUTHENTICATION_ERROR
        assert error_handler.classify_error(Exception("calendar backend error")) == ErrorType.GOOGLE_CALENDAR_ERROR
        assert error_handler.classify_error(Exception("spreadsheet locked")) == ErrorType.JOB_STORE_ERROR
        assert error_handler.classify_error(Exception("???")) == ErrorType.UNKNOWN_ERROR

    def test_domain_errors(self, error_handler):
        assert error_handler.classify_error(ValidationFailure("bad time")) == ErrorType.VALIDATION_ERROR
        failure = ExternalCallFailure("google_calendar", "get_event", "x", ErrorType.RATE_LIMIT_ERROR)
        assert error_handler.classify_error(failure) == ErrorType.RATE_LIMIT_ERROR

    def test_is_not_found(self):
        assert is_not_found(http_error(404))
        assert not is_not_found(http_error(500))
        assert not is_not_found(ValueError())


class TestRetry:
    """リトライ戦略"""

    @pytest.mark.asyncio
    async def test_network_error_recovers(self, error_handler, sleeps):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("connection reset")
            return {"ok": True}

        result = await error_handler.call_with_retry("google_calendar", "list_calendars", flaky)

        assert result == {"ok": True}
        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]
        assert error_handler.error_counts[ErrorType.NETWORK_ERROR] == 2

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, error_handler, sleeps):
        async def missing():
            raise http_error(404, "Not Found")

        with pytest.raises(ExternalCallFailure) as exc_info:
            await error_handler.call_with_retry("google_calendar", "get_event", missing)

        assert exc_info.value.error_type == ErrorType.NOT_FOUND_ERROR
        assert exc_info.value.status_code == 404
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_not_found_is_quiet(self, error_handler, caplog):
        async def gone():
            raise http_error(410, "Resource has been deleted")

        with caplog.at_level("DEBUG", logger="fieldjob_sync.layers.data_acquisition.error_handler"):
            with pytest.raises(ExternalCallFailure):
                await error_handler.call_with_retry("google_calendar", "delete_event", gone)

        assert not [record for record in caplog.records if record.levelname == "ERROR"]
        assert "delete_event failed (not_found_error)" in caplog.text
        assert ErrorType.NOT_FOUND_ERROR not in error_handler.error_counts

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, sleeps):
        async def no_sleep(delay):
            sleeps.append(delay)

        handler = ErrorHandler(
            strategies={ErrorType.NETWORK_ERROR: ErrorStrategy(retry_attempts=1, backoff_multiplier=2.0)},
            sleep=no_sleep,
        )

        async def down():
            raise TimeoutError("read timeout")

        with pytest.raises(ExternalCallFailure) as exc_info:
            await handler.call_with_retry("google_sheets", "read_sheet", down)

        assert exc_info.value.error_type == ErrorType.NETWORK_ERROR
        assert isinstance(exc_info.value.__cause__, TimeoutError)
        assert len(sleeps) == 1
