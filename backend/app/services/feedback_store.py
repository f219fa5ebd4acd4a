import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional, Tuple

from app.config import get_settings
from app.models import AISettings, AISettingsUpdate, AIStats, FeedbackPage, FeedbackRecord, TopQuestion

FEEDBACK_TABLES = ("ai_usage_tracking", "ai_settings")

FEEDBACK_FILTERS = {
    "all": ("", ()),
    "useful": ("WHERE was_useful = ?", (1,)),
    "not_useful": ("WHERE was_useful = ?", (0,)),
}

STATS_PERIODS = {"today", "week", "month"}


class FeedbackStoreError(ValueError):
    """Base class for feedback errors surfaced to callers."""


class FeedbackStoreValidationError(FeedbackStoreError):
    pass


class FeedbackStoreNotFoundError(FeedbackStoreError):
    pass


class FeedbackStoreConflictError(FeedbackStoreError):
    pass


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    now = now or utc_now()
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    raise FeedbackStoreValidationError(f"Unknown period: {period}")


@dataclass
class FeedbackStore:
    db_path: str

    def __post_init__(self) -> None:
        self._lock = Lock()
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ai_usage_tracking (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        session_id TEXT NOT NULL,
                        client_id TEXT,
                        question TEXT NOT NULL,
                        response TEXT NOT NULL DEFAULT '',
                        sources_used_json TEXT NOT NULL DEFAULT '[]',
                        was_useful INTEGER,
                        comment TEXT,
                        tokens_input INTEGER NOT NULL DEFAULT 0,
                        tokens_output INTEGER NOT NULL DEFAULT 0,
                        cost_usd REAL NOT NULL DEFAULT 0,
                        processing_time_ms INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        voted_at TEXT
                    )
                    """
                )
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS ai_settings (
                        id INTEGER PRIMARY KEY CHECK (id = 1),
                        settings_json TEXT NOT NULL DEFAULT '{}',
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_ai_usage_client_created ON ai_usage_tracking (client_id, created_at)"
                )
                self._ensure_column(conn, "ai_usage_tracking", "voted_at", "TEXT")
                conn.commit()

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, column_type: str) -> None:
        columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}
        if column not in columns:
            conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}")

    def _row_to_record(self, row: sqlite3.Row) -> FeedbackRecord:
        try:
            sources = json.loads(row["sources_used_json"] or "[]")
        except json.JSONDecodeError:
            sources = []
        useful = row["was_useful"]
        return FeedbackRecord(
            id=row["id"],
            session_id=row["session_id"],
            client_id=row["client_id"],
            question=row["question"],
            response=row["response"] or "",
            sources_used=[str(item) for item in sources] if isinstance(sources, list) else [],
            was_useful=None if useful is None else bool(useful),
            comment=row["comment"],
            tokens_input=int(row["tokens_input"] or 0),
            tokens_output=int(row["tokens_output"] or 0),
            cost_usd=float(row["cost_usd"] or 0),
            processing_time_ms=int(row["processing_time_ms"] or 0),
            created_at=row["created_at"],
            voted_at=row["voted_at"],
        )

    def _filter_clause(self, filter_name: str) -> Tuple[str, Tuple[Any, ...]]:
        if filter_name not in FEEDBACK_FILTERS:
            raise FeedbackStoreValidationError("filter must be one of: all, useful, not_useful")
        return FEEDBACK_FILTERS[filter_name]

    # Usage log

    def log_usage(
        self,
        *,
        session_id: str,
        client_id: Optional[str],
        question: str,
        response: str,
        sources_used: List[str],
        tokens_input: int = 0,
        tokens_output: int = 0,
        cost_usd: float = 0.0,
        processing_time_ms: int = 0,
    ) -> int:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO ai_usage_tracking (
                        session_id, client_id, question, response, sources_used_json,
                        tokens_input, tokens_output, cost_usd, processing_time_ms, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        session_id,
                        client_id,
                        question,
                        response,
                        json.dumps(sources_used),
                        tokens_input,
                        tokens_output,
                        cost_usd,
                        processing_time_ms,
                        _iso(utc_now()),
                    ),
                )
                conn.commit()
                return int(cursor.lastrowid)

    def get_record(self, record_id: int) -> Optional[FeedbackRecord]:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM ai_usage_tracking WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def vote(self, record_id: int, useful: bool, comment: Optional[str] = None) -> FeedbackRecord:
        """Annotate a record with the visitor's vote.

        The first vote wins: the update only applies while ``was_useful`` is
        still NULL, so a second vote raises ``FeedbackStoreConflictError``.
        """
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    """
                    UPDATE ai_usage_tracking
                    SET was_useful = ?, comment = ?, voted_at = ?
                    WHERE id = ? AND was_useful IS NULL
                    """,
                    (1 if useful else 0, comment, _iso(utc_now()), record_id),
                )
                conn.commit()
                updated = cursor.rowcount
                row = conn.execute("SELECT * FROM ai_usage_tracking WHERE id = ?", (record_id,)).fetchone()
        if not row:
            raise FeedbackStoreNotFoundError("Feedback record not found")
        if not updated:
            raise FeedbackStoreConflictError("This answer was already rated")
        return self._row_to_record(row)

    def count_since(self, client_id: str, since: datetime, exclude_sources: Optional[List[str]] = None) -> int:
        """Count logged questions from ``client_id`` at or after ``since``.

        Rows whose only source is one of ``exclude_sources`` are ignored.
        """
        query = "SELECT COUNT(*) AS total FROM ai_usage_tracking WHERE client_id = ? AND created_at >= ?"
        params: List[Any] = [client_id, _iso(since)]
        for source in exclude_sources or []:
            query += " AND sources_used_json != ?"
            params.append(json.dumps([source]))
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(query, params).fetchone()
        return int(row["total"])

    # Admin review

    def page(self, filter_name: str = "all", page: int = 0, page_size: int = 20) -> FeedbackPage:
        if page < 0:
            raise FeedbackStoreValidationError("page must be >= 0")
        if page_size < 1:
            raise FeedbackStoreValidationError("page_size must be >= 1")
        where, params = self._filter_clause(filter_name)
        with self._lock:
            with self._connect() as conn:
                total = conn.execute(
                    f"SELECT COUNT(*) AS total FROM ai_usage_tracking {where}",
                    params,
                ).fetchone()
                rows = conn.execute(
                    f"SELECT * FROM ai_usage_tracking {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                    (*params, page_size, page * page_size),
                ).fetchall()
        return FeedbackPage(
            records=[self._row_to_record(row) for row in rows],
            total=int(total["total"]),
            page=page,
            page_size=page_size,
            filter=filter_name,
        )

    def export_records(self, filter_name: str = "all") -> List[FeedbackRecord]:
        where, params = self._filter_clause(filter_name)
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM ai_usage_tracking {where} ORDER BY created_at DESC, id DESC",
                    params,
                ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def stats(self, period: str = "today", top_limit: int = 5) -> AIStats:
        if period not in STATS_PERIODS:
            raise FeedbackStoreValidationError("period must be one of: today, week, month")
        since = _iso(period_start(period))
        with self._lock:
            with self._connect() as conn:
                totals = conn.execute(
                    """
                    SELECT
                        COUNT(*) AS total_questions,
                        COALESCE(SUM(cost_usd), 0) AS total_cost_usd,
                        COALESCE(AVG(processing_time_ms), 0) AS avg_processing_time_ms,
                        COALESCE(SUM(tokens_input), 0) AS total_tokens_input,
                        COALESCE(SUM(tokens_output), 0) AS total_tokens_output,
                        COUNT(DISTINCT client_id) AS unique_users,
                        COALESCE(SUM(CASE WHEN was_useful = 1 THEN 1 ELSE 0 END), 0) AS useful_votes,
                        COALESCE(SUM(CASE WHEN was_useful = 0 THEN 1 ELSE 0 END), 0) AS not_useful_votes
                    FROM ai_usage_tracking
                    WHERE created_at >= ?
                    """,
                    (since,),
                ).fetchone()
                top_rows = conn.execute(
                    """
                    SELECT LOWER(TRIM(question)) AS question, COUNT(*) AS frequency
                    FROM ai_usage_tracking
                    WHERE created_at >= ?
                    GROUP BY LOWER(TRIM(question))
                    ORDER BY frequency DESC, question ASC
                    LIMIT ?
                    """,
                    (since, top_limit),
                ).fetchall()
        return AIStats(
            period=period,
            total_questions=int(totals["total_questions"]),
            total_cost_usd=round(float(totals["total_cost_usd"]), 6),
            avg_processing_time_ms=round(float(totals["avg_processing_time_ms"]), 1),
            total_tokens_input=int(totals["total_tokens_input"]),
            total_tokens_output=int(totals["total_tokens_output"]),
            unique_users=int(totals["unique_users"]),
            useful_votes=int(totals["useful_votes"]),
            not_useful_votes=int(totals["not_useful_votes"]),
            top_questions=[TopQuestion(question=row["question"], frequency=row["frequency"]) for row in top_rows],
        )

    # Settings

    def load_settings(self) -> AISettings:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT settings_json FROM ai_settings WHERE id = 1").fetchone()
        if not row:
            return AISettings()
        try:
            stored: Dict[str, Any] = json.loads(row["settings_json"] or "{}")
        except json.JSONDecodeError:
            stored = {}
        return AISettings(**stored) if isinstance(stored, dict) else AISettings()

    def update_settings(self, update: AISettingsUpdate) -> AISettings:
        merged = self.load_settings().model_copy(update=update.model_dump(exclude_unset=True, exclude_none=True))
        if not merged.welcome_message.strip():
            raise FeedbackStoreValidationError("welcome_message cannot be empty")
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO ai_settings (id, settings_json, updated_at) VALUES (1, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET settings_json = excluded.settings_json, updated_at = excluded.updated_at
                    """,
                    (merged.model_dump_json(), _iso(utc_now())),
                )
                conn.commit()
        return merged


feedback_store = FeedbackStore(db_path=get_settings().database_path)


def get_feedback_store() -> FeedbackStore:
    return feedback_store
