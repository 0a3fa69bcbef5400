"""
実行履歴ストレージ - ドリフトスキャン・カラム修復の実行結果をSQLiteに記録
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiosqlite

logger = logging.getLogger(__name__)


@dataclass
class RunRecord:
    """実行履歴レコード"""
    id: Optional[int]
    kind: str
    started_at: Optional[str]
    finished_at: Optional[str]
    counts: Dict[str, Any]
    details: List[Dict[str, Any]]
    recorded_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "counts": self.counts,
            "details": self.details,
            "recorded_at": self.recorded_at,
        }


class RunHistoryStore:
    """実行履歴管理"""

    def __init__(self, database_path: Union[str, Path] = "data/run_history.db"):
        self.database_path = Path(database_path)
        self._initialized = False

    async def initialize(self):
        """テーブル作成"""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

        runs_table_sql = """
        CREATE TABLE IF NOT EXISTS runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            kind TEXT NOT NULL,
            started_at TIMESTAMP,
            finished_at TIMESTAMP,
            counts TEXT NOT NULL,
            details TEXT NOT NULL,
            recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute(runs_table_sql)
            await db.execute("CREATE INDEX IF NOT EXISTS idx_runs_kind ON runs(kind)")
            await db.commit()

        self._initialized = True
        logger.info(f"Run history initialized: {self.database_path}")

    async def record_run(self, kind: str, result: Dict[str, Any]) -> int:
        """RunSummary/BatchResult の to_dict() を記録"""
        if not self._initialized:
            await self.initialize()

        details = result.get("details", [])
        counts = {
            key: value for key, value in result.items()
            if key not in ("details", "started_at", "finished_at")
        }

        sql = """
        INSERT INTO runs (kind, started_at, finished_at, counts, details, recorded_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """

        async with aiosqlite.connect(self.database_path) as db:
            cursor = await db.execute(sql, (
                kind,
                result.get("started_at"),
                result.get("finished_at"),
                json.dumps(counts, ensure_ascii=False, default=str),
                json.dumps(details, ensure_ascii=False, default=str),
                datetime.now().isoformat(),
            ))
            await db.commit()
            run_id = cursor.lastrowid

        logger.debug(f"Recorded {kind} run #{run_id}")
        return run_id

    async def recent_runs(self, limit: int = 10, kind: Optional[str] = None) -> List[RunRecord]:
        """新しい順に取得"""
        if not self._initialized:
            await self.initialize()

        if kind:
            sql = "SELECT * FROM runs WHERE kind = ? ORDER BY id DESC LIMIT ?"
            params = (kind, limit)
        else:
            sql = "SELECT * FROM runs ORDER BY id DESC LIMIT ?"
            params = (limit,)

        async with aiosqlite.connect(self.database_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        return [self._row_to_record(row) for row in rows]

    def _row_to_record(self, row: aiosqlite.Row) -> RunRecord:
        return RunRecord(
            id=row["id"],
            kind=row["kind"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            counts=json.loads(row["counts"]),
            details=json.loads(row["details"]),
            recorded_at=row["recorded_at"],
        )
