from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable, Iterator

import pytest

from db.sqlite_db import get_conn, init_all_tables

LEGACY_HEADER = "date;FC;X200;X010;LiveStream;Asanetwork;Android;EOL Connect;by;released for;notes;status"
FIRMWARE_HEADER = (
    "CONTRY;DATE;USER;CCPU;CCPU changes;DCPU;DCPU changes;RCPU;RCPU changes;"
    "X010;X010 changes;X200 flash/turbo;X200 changes"
)


def write_log(path: Path, header: str, rows: Iterable[str], encoding: str = "utf-8") -> Path:
    text = "\r\n".join([header, *rows]) + "\r\n"
    path.write_bytes(text.encode(encoding))
    return path


def count(table: str) -> int:
    with get_conn() as conn:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])


@pytest.fixture()
def db_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    db_path = tmp_path / "release.db"
    monkeypatch.setenv("DB_PATH", str(db_path))
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "storage"))
    monkeypatch.setenv("IMPORT_DATA_DIR", str(tmp_path / "ImportData"))
    monkeypatch.delenv("LEGACY_LOG_PATH", raising=False)
    monkeypatch.delenv("FIRMWARE_LOG_PATH", raising=False)
    init_all_tables()
    return db_path


@pytest.fixture()
def conn(db_file: Path) -> Iterator[sqlite3.Connection]:
    with get_conn() as c:
        yield c


@pytest.fixture()
def legacy_log(tmp_path: Path):
    def _write(*rows: str, name: str = "legacy.csv", encoding: str = "utf-8") -> Path:
        return write_log(tmp_path / name, LEGACY_HEADER, rows, encoding)

    return _write


@pytest.fixture()
def firmware_log(tmp_path: Path):
    def _write(*rows: str, name: str = "firmware.csv", encoding: str = "utf-8") -> Path:
        return write_log(tmp_path / name, FIRMWARE_HEADER, rows, encoding)

    return _write
