from __future__ import annotations

import json
import os
import sqlite3
import threading
import uuid
from datetime import datetime, timezone
from functools import lru_cache

from screener.core.config import settings
from screener.schemas.cv import (
    AnalysisCreate,
    AnalysisRecord,
    CVCreate,
    CVRecord,
    CVWithAnalysis,
    DashboardStats,
    FetchHistoryRecord,
)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS cvs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        candidate_name TEXT NOT NULL,
        candidate_email TEXT NOT NULL,
        file_name TEXT NOT NULL,
        file_type TEXT NOT NULL,
        extracted_text TEXT NOT NULL,
        file_buffer TEXT,
        date_received TEXT NOT NULL,
        source TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS analyses (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        cv_id TEXT NOT NULL REFERENCES cvs (id) ON DELETE CASCADE,
        job_description TEXT NOT NULL,
        score INTEGER NOT NULL,
        strengths_json TEXT NOT NULL,
        weaknesses_json TEXT NOT NULL,
        analyzed_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS fetch_history (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        source TEXT NOT NULL,
        cvs_count INTEGER NOT NULL,
        fetched_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_cvs_user ON cvs (user_id);",
    "CREATE INDEX IF NOT EXISTS idx_analyses_user_cv ON analyses (user_id, cv_id);",
    "CREATE INDEX IF NOT EXISTS idx_fetch_history_user ON fetch_history (user_id, fetched_at);",
)

_CV_COLUMNS = (
    "id, user_id, candidate_name, candidate_email, file_name, file_type, "
    "extracted_text, file_buffer, date_received, source"
)
_ANALYSIS_COLUMNS = (
    "id, user_id, cv_id, job_description, score, strengths_json, weaknesses_json, analyzed_at"
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _cv_from_row(row: tuple) -> CVRecord:
    return CVRecord(
        id=row[0],
        user_id=row[1],
        candidate_name=row[2],
        candidate_email=row[3],
        file_name=row[4],
        file_type=row[5],
        extracted_text=row[6],
        file_buffer=row[7],
        date_received=datetime.fromisoformat(row[8]),
        source=row[9],
    )


def _analysis_from_row(row: tuple) -> AnalysisRecord:
    return AnalysisRecord(
        id=row[0],
        user_id=row[1],
        cv_id=row[2],
        job_description=row[3],
        score=row[4],
        strengths=json.loads(row[5]),
        weaknesses=json.loads(row[6]),
        analyzed_at=datetime.fromisoformat(row[7]),
    )


def _history_from_row(row: tuple) -> FetchHistoryRecord:
    return FetchHistoryRecord(
        id=row[0],
        user_id=row[1],
        source=row[2],
        cvs_count=row[3],
        fetched_at=datetime.fromisoformat(row[4]),
    )


class CVStore:
    """SQLite-backed CV, analysis and fetch-history storage, scoped by user id."""

    def __init__(self, db_path: str):
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            timeout=5,
            isolation_level=None,
        )
        self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA busy_timeout=5000;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # CVs

    def create_cv(self, cv: CVCreate) -> CVRecord:
        record = CVRecord(id=uuid.uuid4().hex, date_received=_utc_now(), **cv.model_dump())
        with self._lock:
            self._conn.execute(
                f"INSERT INTO cvs ({_CV_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.user_id,
                    record.candidate_name,
                    record.candidate_email,
                    record.file_name,
                    record.file_type,
                    record.extracted_text,
                    record.file_buffer,
                    record.date_received.isoformat(),
                    record.source,
                ),
            )
        return record

    def get_cv(self, cv_id: str, user_id: str) -> CVRecord | None:
        with self._lock:
            row = self._conn.execute(
                f"SELECT {_CV_COLUMNS} FROM cvs WHERE id = ? AND user_id = ?",
                (cv_id, user_id),
            ).fetchone()
        return _cv_from_row(row) if row else None

    def list_cvs(self, user_id: str) -> list[CVRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_CV_COLUMNS} FROM cvs WHERE user_id = ? ORDER BY date_received DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [_cv_from_row(row) for row in rows]

    def update_extracted_text(self, cv_id: str, user_id: str, text: str) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "UPDATE cvs SET extracted_text = ? WHERE id = ? AND user_id = ?",
                (text, cv_id, user_id),
            )
        return cur.rowcount > 0

    def delete_all_cvs(self, user_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM cvs WHERE user_id = ?", (user_id,))

    # Analyses

    def create_analysis(self, analysis: AnalysisCreate) -> AnalysisRecord:
        record = AnalysisRecord(id=uuid.uuid4().hex, analyzed_at=_utc_now(), **analysis.model_dump())
        with self._lock:
            self._conn.execute(
                f"INSERT INTO analyses ({_ANALYSIS_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.user_id,
                    record.cv_id,
                    record.job_description,
                    record.score,
                    json.dumps(record.strengths, ensure_ascii=False),
                    json.dumps(record.weaknesses, ensure_ascii=False),
                    record.analyzed_at.isoformat(),
                ),
            )
        return record

    def list_analyses(self, user_id: str) -> list[AnalysisRecord]:
        with self._lock:
            rows = self._conn.execute(
                f"SELECT {_ANALYSIS_COLUMNS} FROM analyses WHERE user_id = ? "
                "ORDER BY analyzed_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [_analysis_from_row(row) for row in rows]

    def delete_all_analyses(self, user_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM analyses WHERE user_id = ?", (user_id,))

    def cvs_with_latest_analysis(self, user_id: str) -> list[CVWithAnalysis]:
        latest: dict[str, AnalysisRecord] = {}
        for analysis in self.list_analyses(user_id):
            latest.setdefault(analysis.cv_id, analysis)

        results = [
            CVWithAnalysis(
                **cv.model_dump(exclude={"user_id", "file_buffer"}),
                analysis=latest.get(cv.id),
            )
            for cv in self.list_cvs(user_id)
        ]
        # list_cvs is newest first and sort is stable, so ties keep that order.
        results.sort(key=lambda item: item.analysis.score if item.analysis else -1, reverse=True)
        return results

    def dashboard_stats(self, user_id: str) -> DashboardStats:
        with self._lock:
            total_cvs = self._conn.execute(
                "SELECT COUNT(*) FROM cvs WHERE user_id = ?", (user_id,)
            ).fetchone()[0]
            row = self._conn.execute(
                "SELECT MAX(analyzed_at), MAX(score), AVG(score) FROM analyses WHERE user_id = ?",
                (user_id,),
            ).fetchone()

        last_analysis, highest, average = row
        return DashboardStats(
            total_cvs=total_cvs,
            last_analysis_date=datetime.fromisoformat(last_analysis) if last_analysis else None,
            highest_score=highest,
            average_score=int(average + 0.5) if average is not None else None,
        )

    # Fetch history

    def create_fetch_history(self, user_id: str, source: str, cvs_count: int) -> FetchHistoryRecord:
        record = FetchHistoryRecord(
            id=uuid.uuid4().hex,
            user_id=user_id,
            source=source,
            cvs_count=cvs_count,
            fetched_at=_utc_now(),
        )
        with self._lock:
            self._conn.execute(
                "INSERT INTO fetch_history (id, user_id, source, cvs_count, fetched_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.user_id, record.source, record.cvs_count, record.fetched_at.isoformat()),
            )
        return record

    def list_fetch_history(self, user_id: str) -> list[FetchHistoryRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, user_id, source, cvs_count, fetched_at FROM fetch_history "
                "WHERE user_id = ? ORDER BY fetched_at DESC, rowid DESC",
                (user_id,),
            ).fetchall()
        return [_history_from_row(row) for row in rows]

    def latest_fetch_by_source(self, user_id: str, source: str) -> FetchHistoryRecord | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT id, user_id, source, cvs_count, fetched_at FROM fetch_history "
                "WHERE user_id = ? AND source = ? ORDER BY fetched_at DESC, rowid DESC LIMIT 1",
                (user_id, source),
            ).fetchone()
        return _history_from_row(row) if row else None

    def delete_user_data(self, user_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM analyses WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM cvs WHERE user_id = ?", (user_id,))
            self._conn.execute("DELETE FROM fetch_history WHERE user_id = ?", (user_id,))


@lru_cache(maxsize=1)
def get_store() -> CVStore:
    return CVStore(settings.database_path)
