import sqlite3

from flask import Blueprint, jsonify

from db.sqlite_db import db_path, get_conn


bp = Blueprint("system_api", __name__, url_prefix="/api")


@bp.get("/health")
def health():
    """Liveness plus a trivial query against the configured database."""
    try:
        with get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        return jsonify({"ok": False, "db_path": db_path(), "error": str(e)}), 503
    return jsonify({"ok": True, "db_path": db_path()})
