import json
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from db.sqlite_db import get_conn


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_run(kind: str, source_path: str) -> str:
    run_id = str(uuid.uuid4())
    now = _utc_now_iso()
    with get_conn() as conn:
        conn.execute(
            """
            INSERT INTO import_run (
              run_id, kind, status, source_path, encoding,
              rows_read, rows_processed, message, summary_json,
              created_at, updated_at, started_at, finished_at
            ) VALUES (?, ?, 'running', ?, NULL, NULL, 0, NULL, NULL, ?, ?, ?, NULL)
            """,
            (run_id, kind, source_path, now, now, now),
        )
    return run_id


def _update_run(conn: sqlite3.Connection, run_id: str, status: str, message: Optional[str], **metrics) -> None:
    now = _utc_now_iso()

    cols = ["status=?", "updated_at=?"]
    vals: List[Any] = [status, now]

    if message is not None:
        cols.append("message=?")
        vals.append(message)

    for k, v in metrics.items():
        cols.append(f"{k}=?")
        vals.append(v)

    if status in ("completed", "failed"):
        cols.append("finished_at=COALESCE(finished_at, ?)")
        vals.append(now)

    vals.append(run_id)
    conn.execute(f"UPDATE import_run SET {', '.join(cols)} WHERE run_id=?", vals)


def set_run_status(run_id: str, status: str, message: Optional[str] = None, **metrics) -> None:
    with get_conn() as conn:
        _update_run(conn, run_id, status, message, **metrics)


def record_progress(conn: sqlite3.Connection, run_id: str, processed: int, total: int) -> None:
    """Progress goes through the run's own connection; it becomes visible with the next commit."""
    _update_run(conn, run_id, "running", f"processed={processed} total={total}", rows_processed=processed)


def finish_run(run_id: str, summary: Dict[str, Any]) -> None:
    stats = summary.get("statistics") or {}
    set_run_status(
        run_id,
        "completed",
        summary.get("message"),
        encoding=summary.get("encoding"),
        rows_read=stats.get("rows_read"),
        rows_processed=stats.get("rows_processed"),
        summary_json=json.dumps(summary, default=str),
    )


def fail_run(run_id: str, message: str) -> None:
    set_run_status(run_id, "failed", message)


def _row_to_run(row: sqlite3.Row) -> Dict[str, Any]:
    out = dict(row)
    raw = out.pop("summary_json", None)
    out["summary"] = json.loads(raw) if raw else None
    return out


def get_run(run_id: str) -> Optional[Dict[str, Any]]:
    with get_conn() as conn:
        row = conn.execute("SELECT * FROM import_run WHERE run_id=?", (run_id,)).fetchone()
    return _row_to_run(row) if row else None


def list_runs(limit: int = 50) -> List[Dict[str, Any]]:
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT run_id, kind, status, source_path, encoding, rows_read, rows_processed,
                   message, created_at, updated_at, started_at, finished_at
            FROM import_run
            ORDER BY created_at DESC
            LIMIT ?
            """,
            (int(limit),),
        ).fetchall()
    return [dict(r) for r in rows]
