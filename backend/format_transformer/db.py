"""Conversion history. SQLite by default; set DATABASE_URL to use another SQLite file.
Startup ensures the table exists; on failure logs verbosely and falls back to in-memory SQLite so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from format_transformer import config as app_config

logger = logging.getLogger("transformer.db")

_engine: Optional[Engine] = None

REQUIRED_TABLES = ("conversion_history",)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in app_config.DATABASE_URL:
            # One shared connection, otherwise every thread sees its own empty database
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(app_config.DATABASE_URL, **kwargs)
        logger.info("Database engine created (%s)", app_config.DATABASE_URL)
    return _engine


def _create_tables(conn) -> None:
    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS conversion_history (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id TEXT NOT NULL UNIQUE,
            file_name TEXT,
            category TEXT NOT NULL,
            target_format TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            output_path TEXT,
            input_bytes INTEGER,
            output_bytes INTEGER,
            created_at TEXT NOT NULL,
            completed_at TEXT,
            duration_seconds REAL
        )
    """))
    conn.commit()


def init_db() -> None:
    """Prepare the database at startup. On failure fall back to in-memory SQLite."""
    global _engine
    logger.info("Database init: preparing %s (tables: %s)", app_config.DATABASE_URL, ", ".join(REQUIRED_TABLES))
    try:
        with get_engine().connect() as conn:
            _create_tables(conn)
        logger.info("Database ready")
        return
    except SQLAlchemyError as e:
        logger.warning("Database unavailable (%s): %s. Using in-memory SQLite.", app_config.DATABASE_URL, e, exc_info=True)

    # History will not persist across restarts
    app_config.DATABASE_URL = "sqlite:///:memory:"
    _engine = None
    with get_engine().connect() as conn:
        _create_tables(conn)


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _iso(ts: Optional[float] = None) -> str:
    if ts is None:
        return datetime.now(timezone.utc).isoformat()
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


def record_conversion(
    task_id: str,
    file_name: str,
    category: str,
    target_format: str,
    status: str,
    *,
    message: Optional[str] = None,
    output_path: Optional[str] = None,
    input_bytes: Optional[int] = None,
    output_bytes: Optional[int] = None,
    started_at: Optional[float] = None,
    finished_at: Optional[float] = None,
) -> None:
    duration = None
    if started_at is not None and finished_at is not None:
        duration = round(finished_at - started_at, 3)
    params = {
        "task_id": task_id,
        "file_name": file_name,
        "category": category,
        "target_format": target_format,
        "status": status,
        "message": message,
        "output_path": output_path,
        "input_bytes": input_bytes,
        "output_bytes": output_bytes,
        "created_at": _iso(started_at),
        "completed_at": _iso(finished_at),
        "duration_seconds": duration,
    }
    with session() as conn:
        conn.execute(
            text("""
                INSERT OR REPLACE INTO conversion_history (task_id, file_name, category, target_format, status, message, output_path, input_bytes, output_bytes, created_at, completed_at, duration_seconds)
                VALUES (:task_id, :file_name, :category, :target_format, :status, :message, :output_path, :input_bytes, :output_bytes, :created_at, :completed_at, :duration_seconds)
            """),
            params,
        )


def get_history(limit: int = 100) -> list[dict]:
    """Recent conversions, newest first."""
    with get_engine().connect() as conn:
        rows = conn.execute(
            text("""
                SELECT task_id, file_name, category, target_format, status, message, output_path, input_bytes, output_bytes, created_at, completed_at, duration_seconds
                FROM conversion_history ORDER BY id DESC LIMIT :lim
            """),
            {"lim": limit},
        ).fetchall()
    return [
        {
            "task_id": r[0],
            "file_name": r[1],
            "category": r[2],
            "target_format": r[3],
            "status": r[4],
            "message": r[5],
            "output_path": r[6],
            "input_bytes": r[7],
            "output_bytes": r[8],
            "created_at": r[9],
            "completed_at": r[10],
            "duration_seconds": r[11],
        }
        for r in rows
    ]


def get_history_stats() -> dict:
    """Aggregate counts: total, completed, failed, per-category counts, time spent."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("""
                SELECT
                    COUNT(*),
                    COALESCE(SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0),
                    COALESCE(SUM(duration_seconds), 0)
                FROM conversion_history
            """)
        ).fetchone()
        by_category = conn.execute(
            text("SELECT category, COUNT(*) FROM conversion_history GROUP BY category")
        ).fetchall()
    return {
        "total": int(row[0]),
        "completed": int(row[1]),
        "failed": int(row[2]),
        "time_spent_seconds": float(row[3]),
        "by_category": {r[0]: int(r[1]) for r in by_category},
    }


def clear_history() -> int:
    """Delete all history rows. Returns how many were removed."""
    with session() as conn:
        result = conn.execute(text("DELETE FROM conversion_history"))
    return result.rowcount
