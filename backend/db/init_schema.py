# backend/db/init_schema.py
import os
import sys

from . import sqlite_db


def main(argv=None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        os.environ["DB_PATH"] = argv[0]

    sqlite_db.init_all_tables()
    with sqlite_db.get_conn() as conn:
        tables = [
            r["name"]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            ).fetchall()
        ]
    print(f"OK: release tracking schema is ready at {sqlite_db.db_path()} ({', '.join(tables)})")


if __name__ == "__main__":
    main()
