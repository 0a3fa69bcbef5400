"""
Google Sheetsジョブストア - 1行1ジョブ、1行目がヘッダー
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from googleapiclient.discovery import build

from ...config.settings import GoogleConfig
from ...core.errors import ValidationFailure
from ...core.models import DetectionProvenance, JobRecord, JobStatus
from .base import JobStore
from .error_handler import ErrorHandler
from .google_auth import SHEETS_SCOPES, build_credentials

logger = logging.getLogger(__name__)

SERVICE_NAME = "google_sheets"

# 作成日時の書式（過去データの混在に対応）
_CREATED_AT_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y, %H:%M:%S",
    "%Y-%m-%d",
)

# JobRecord属性名 -> Sheetsヘッダー名（異なるもののみ）
_ATTRIBUTE_HEADERS = {
    "event_id": "eventId",
}


def column_letter(index: int) -> str:
    """0始まりの列番号をA1表記の列名に変換"""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord('A') + remainder) + letters
    return letters


def _parse_created_at(value: str) -> datetime:
    for fmt in _CREATED_AT_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt)
        except ValueError:
            continue
    return datetime.min


class GoogleSheetsJobStore(JobStore):
    """Google Sheets API v4 ジョブストア"""

    def __init__(self,
                 config: GoogleConfig,
                 timezone: str = "Asia/Bangkok",
                 error_handler: Optional[ErrorHandler] = None,
                 service: Any = None):
        self.config = config
        self.spreadsheet_id = config.spreadsheet_id
        self.sheet_name = config.jobs_sheet_name
        self.timezone = ZoneInfo(timezone)
        self.error_handler = error_handler or ErrorHandler()
        self.service = service

    def _get_service(self):
        """認証済みサービスを取得（未生成の場合のみ生成）"""
        if self.service is None:
            credentials = build_credentials(self.config, SHEETS_SCOPES)
            self.service = build('sheets', 'v4', credentials=credentials, cache_discovery=False)
            logger.info("Google Sheets service initialized")
        return self.service

    async def _execute(self, operation: str, make_request: Callable[[Any], Any]) -> Dict[str, Any]:
        async def call():
            request = make_request(self._get_service().spreadsheets().values())
            return await asyncio.to_thread(request.execute)

        return await self.error_handler.call_with_retry(SERVICE_NAME, operation, call)

    def _now(self) -> str:
        return datetime.now(self.timezone).strftime("%Y-%m-%d %H:%M:%S")

    async def _read_sheet(self) -> List[List[str]]:
        result = await self._execute(
            "read_sheet",
            lambda values: values.get(spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!A:Z"),
        )
        return result.get('values', [])

    async def _read_headers(self) -> List[str]:
        result = await self._execute(
            "read_headers",
            lambda values: values.get(spreadsheetId=self.spreadsheet_id, range=f"{self.sheet_name}!1:1"),
        )
        rows = result.get('values', [])
        return rows[0] if rows else []

    async def get_all_jobs(self) -> List[JobRecord]:
        rows = await self._read_sheet()
        if len(rows) <= 1:
            return []

        headers = rows[0]
        jobs = []
        for index, row in enumerate(rows[1:]):
            padded = row + [''] * (len(headers) - len(row))
            jobs.append(JobRecord.from_row(dict(zip(headers, padded)), row_number=index + 2))

        # 作成日の新しい順（解釈できない日付は末尾、同値は元の順序）
        return sorted(jobs, key=lambda job: _parse_created_at(job.created_at), reverse=True)

    async def _batch_update(self, operation: str, job: JobRecord, headers: List[str], fields: Dict[str, Any]) -> int:
        """ヘッダー名に一致する項目のみ該当行へ書き込む"""
        data = []
        for name, value in fields.items():
            header = _ATTRIBUTE_HEADERS.get(name, name)
            if header not in headers:
                continue
            cell = f"{self.sheet_name}!{column_letter(headers.index(header))}{job.row_number}"
            data.append({'range': cell, 'values': [[value]]})

        if not data:
            return 0

        await self._execute(
            operation,
            lambda values: values.batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'valueInputOption': 'USER_ENTERED', 'data': data},
            ),
        )
        return len(data)

    async def update_job_status(self,
                                job_id: str,
                                status: str,
                                notes: str = "",
                                provenance: Optional[DetectionProvenance] = None) -> JobRecord:
        job = await self.get_job(job_id)
        headers = await self._read_headers()
        timestamp = self._now()

        fields: Dict[str, Any] = {
            'status': status,
            'updated_at': timestamp,
            'status_changed_at': timestamp,
        }
        if notes:
            fields['notes'] = notes
        if provenance is not None:
            column = self.config.provenance_column
            if column and column in headers:
                fields[column] = json.dumps(provenance.to_dict(), ensure_ascii=False)
            else:
                logger.info(f"Auto-detection provenance for {job_id}: {provenance.to_dict()}")

        await self._batch_update("update_job_status", job, headers, fields)
        logger.info(f"Updated job {job_id} status to: {status}")

        changes = {'status': status, 'updated_at': timestamp}
        if notes:
            changes['notes'] = notes
        return job.replace(**changes)

    async def update_job_event_id(self, job_id: str, event_id: str) -> bool:
        job = await self.get_job(job_id)
        headers = await self._read_headers()
        written = await self._batch_update("update_job_event_id", job, headers, {'event_id': event_id})
        if not written:
            raise ValidationFailure("Jobs sheet has no eventId column", job_id=job_id, field_name="eventId")
        logger.info(f"Updated eventId for job {job_id}: {event_id}")
        return True

    async def update_job_data(self, job_id: str, fields: Dict[str, Any]) -> bool:
        job = await self.get_job(job_id)
        headers = await self._read_headers()
        written = await self._batch_update("update_job_data", job, headers, fields)
        if not written:
            raise ValidationFailure(f"No valid fields to update: {sorted(fields)}", job_id=job_id)
        logger.info(f"Updated job {job_id} with data: {fields}")
        return True

    async def create_job(self, fields: Dict[str, Any]) -> JobRecord:
        job_id = fields.get('job_id') or await self.get_next_job_id()
        timestamp = self._now()

        values = {key: ("" if value is None else str(value)) for key, value in fields.items()}
        values.update({
            'job_id': job_id,
            'status': values.get('status') or JobStatus.NEW,
            'created_at': timestamp,
            'updated_at': timestamp,
            'status_changed_at': timestamp,
        })
        job = JobRecord.from_row(values)
        row = job.to_row()

        headers = await self._read_headers()
        row_data = [row.get(header, '') for header in headers]

        await self._execute(
            "create_job",
            lambda sheet_values: sheet_values.append(
                spreadsheetId=self.spreadsheet_id,
                range=f"{self.sheet_name}!A:Z",
                valueInputOption='USER_ENTERED',
                body={'values': [row_data]},
            ),
        )
        logger.info(f"Created job: {job_id}")
        return job
