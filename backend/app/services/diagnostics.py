import sqlite3
from datetime import datetime, timezone
from typing import Dict, Iterable

from app.config import Settings
from app.models import DiagnosticsReport, TableDiagnostic
from app.services.blog_store import BLOG_TABLES
from app.services.directory_store import DIRECTORY_TABLES
from app.services.feedback_store import FEEDBACK_TABLES

KNOWN_TABLES = (*DIRECTORY_TABLES, *BLOG_TABLES, *FEEDBACK_TABLES)


def inspect_tables(db_path: str, tables: Iterable[str] = KNOWN_TABLES) -> Dict[str, TableDiagnostic]:
    report: Dict[str, TableDiagnostic] = {}
    try:
        conn = sqlite3.connect(db_path, check_same_thread=False)
    except sqlite3.Error as exc:
        return {table: TableDiagnostic(exists=False, error=str(exc)) for table in tables}
    try:
        for table in tables:
            try:
                found = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                    (table,),
                ).fetchone()
                if not found:
                    report[table] = TableDiagnostic(exists=False)
                    continue
                columns = [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]
                count = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                report[table] = TableDiagnostic(exists=True, count=int(count), columns=columns)
            except sqlite3.Error as exc:
                report[table] = TableDiagnostic(exists=False, error=str(exc))
    finally:
        conn.close()
    return report


def build_report(settings: Settings, llm_configured: bool) -> DiagnosticsReport:
    return DiagnosticsReport(
        tables=inspect_tables(settings.database_path),
        configuration=settings.configuration_status(),
        llm_configured=llm_configured,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )
