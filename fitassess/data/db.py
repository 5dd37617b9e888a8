from __future__ import annotations
import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Union

from fitassess.common.events import AssessmentType, Status
from fitassess.counter.rep_counter import SessionResult

logger = logging.getLogger(__name__)

SCHEMA = r"""
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS results (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  user_id TEXT NOT NULL,
  test_type TEXT NOT NULL,
  rep_count INTEGER NOT NULL,
  status TEXT NOT NULL,
  duration_ms REAL NOT NULL,
  started_at REAL NOT NULL,
  finished_at REAL NOT NULL,
  recorded_at REAL NOT NULL,
  form_score REAL,
  message TEXT
);

CREATE INDEX IF NOT EXISTS idx_results_score ON results (rep_count DESC);
"""

_COLUMNS = (
    "id, user_id, test_type, rep_count, status, duration_ms, "
    "started_at, finished_at, recorded_at, form_score, message"
)


class ResultStore:
    """Append-only local history of session results."""

    def __init__(self, path: Union[str, Path] = "./fitassess.db"):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.path.as_posix() != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path.as_posix(), check_same_thread=False)
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        return self._conn

    def append(self, result: SessionResult) -> bool:
        with self._lock:
            conn = self.get_conn()
            conn.execute(
                f"INSERT INTO results ({_COLUMNS}) VALUES (?,?,?,?,?,?,?,?,?,?,?)",
                (
                    result.id,
                    result.user_id,
                    result.test_type.value,
                    result.rep_count,
                    result.status.value,
                    result.duration_ms,
                    result.started_at,
                    result.finished_at,
                    result.recorded_at,
                    result.form_score,
                    result.message,
                ),
            )
            conn.commit()
        logger.debug("stored result %s (%s, %d)", result.id, result.test_type.value, result.rep_count)
        return True

    def list(self, limit: Optional[int] = None, test_type: Optional[AssessmentType] = None) -> List[SessionResult]:
        """Most recent first."""
        sql = f"SELECT {_COLUMNS} FROM results"
        args: list = []
        if test_type is not None:
            sql += " WHERE test_type=?"
            args.append(AssessmentType(test_type).value)
        sql += " ORDER BY seq DESC"
        if limit is not None:
            sql += " LIMIT ?"
            args.append(int(limit))
        with self._lock:
            rows = self.get_conn().execute(sql, args).fetchall()
        return [_row_to_result(r) for r in rows]

    def leaderboard(self, limit: int = 5, test_type: Optional[AssessmentType] = None) -> List[SessionResult]:
        """Best scores first; ties keep the most recent on top."""
        sql = f"SELECT {_COLUMNS} FROM results"
        args: list = []
        if test_type is not None:
            sql += " WHERE test_type=?"
            args.append(AssessmentType(test_type).value)
        sql += " ORDER BY rep_count DESC, seq DESC LIMIT ?"
        args.append(int(limit))
        with self._lock:
            rows = self.get_conn().execute(sql, args).fetchall()
        return [_row_to_result(r) for r in rows]

    def close(self):
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


def _row_to_result(row) -> SessionResult:
    (rid, user_id, test_type, rep_count, status, duration_ms,
     started_at, finished_at, recorded_at, form_score, message) = row
    return SessionResult(
        id=rid,
        user_id=user_id,
        test_type=AssessmentType(test_type),
        rep_count=int(rep_count),
        status=Status(status),
        duration_ms=float(duration_ms),
        started_at=float(started_at),
        finished_at=float(finished_at),
        recorded_at=float(recorded_at),
        form_score=form_score,
        message=message or "",
    )
