from __future__ import annotations

import sqlite3

import pytest

from db.sqlite_db import get_conn
from services.services import (
    ImportFailedError,
    ValidationError,
    get_import_run,
    import_legacy_log,
    list_import_runs,
)

from conftest import LEGACY_HEADER, count, write_log

TABLES = (
    "software",
    "users",
    "country",
    "customer",
    "version_history",
    "version_history_customer",
    "history_note",
    "history_note_customer",
)


def _snapshot():
    return {t: count(t) for t in TABLES}


def test_first_import_builds_entity_graph(db_file, legacy_log) -> None:
    path = legacy_log("01-02-2020;1.0.0;P14.100;;;;;;JUC/PN;Acme;Initial release;Released")

    summary = import_legacy_log(str(path))
    stats = summary["statistics"]

    assert summary["ok"] is True
    assert summary["kind"] == "legacy"
    assert stats["software_created"] == 4
    assert stats["users_created"] == 2
    assert stats["countries_created"] == 1
    assert stats["customers_created"] == 1
    assert stats["versions_created"] == 2
    assert stats["version_customers_created"] == 2
    assert stats["notes_created"] == 2
    assert stats["note_customers_created"] == 2

    with get_conn() as conn:
        customer = conn.execute(
            "SELECT c.name, co.name AS country FROM customer c JOIN country co ON co.id = c.country_id"
        ).fetchone()
        authors = dict(
            conn.execute(
                """
                SELECT s.name, u.name
                FROM version_history vh
                JOIN software s ON s.id = vh.software_id
                JOIN users u ON u.id = vh.released_by_id
                """
            ).fetchall()
        )

    assert (customer["name"], customer["country"]) == ("Acme", "Default")
    assert authors == {"BM FlexCheck": "JUC", "X200 Flash": "PN"}


def test_single_author_covers_both_categories(db_file, legacy_log) -> None:
    path = legacy_log("01-02-2020;1.0.0;;X2;;;;;JUC;Acme;n;Released")

    import_legacy_log(str(path))

    with get_conn() as conn:
        names = {r[0] for r in conn.execute(
            "SELECT u.name FROM version_history vh JOIN users u ON u.id = vh.released_by_id"
        ).fetchall()}
    assert names == {"JUC"}


def test_second_run_creates_nothing(db_file, legacy_log) -> None:
    path = legacy_log(
        "01-02-2020;1.0.0;P14.100;;;;;;JUC/PN;Acme;Initial release;Released",
        "03-02-2020;1.0.1;;X9;;;;2.0;JUC;Beta;Fixes;PreRelease",
    )

    import_legacy_log(str(path))
    before = _snapshot()
    summary = import_legacy_log(str(path))
    stats = summary["statistics"]

    assert _snapshot() == before
    for key in (
        "software_created",
        "users_created",
        "countries_created",
        "customers_created",
        "versions_created",
        "version_customers_created",
        "notes_created",
        "note_customers_created",
    ):
        assert stats[key] == 0, key
    assert stats["versions_updated"] == 5
    assert stats["version_customers_refreshed"] == 5


def test_first_row_date_wins(db_file, legacy_log) -> None:
    path = legacy_log(
        "01-02-2020;1.0.0;;;;;;;JUC;Acme;first;Released",
        "05-03-2020;1.0.0;;;;;;;JUC;Beta;second;Released",
    )

    stats = import_legacy_log(str(path))["statistics"]

    assert stats["versions_created"] == 1
    assert stats["versions_updated"] == 1
    with get_conn() as conn:
        rows = conn.execute("SELECT release_date FROM version_history").fetchall()
        links = conn.execute("SELECT COUNT(*) FROM version_history_customer").fetchone()[0]
        notes = conn.execute("SELECT COUNT(*) FROM history_note").fetchone()[0]
    assert [r["release_date"] for r in rows] == ["2020-02-01T00:00:00+00:00"]
    assert links == 2
    assert notes == 2


def test_identical_note_under_two_versions(db_file, legacy_log) -> None:
    path = legacy_log(
        "01-02-2020;1.0;;;;;;;JUC;Acme;Same text;Released",
        "02-02-2020;1.1;;;;;;;JUC;Acme;Same text;Released",
    )

    summary = import_legacy_log(str(path))

    assert summary["statistics"]["notes_created"] == 2
    assert summary["duplicate_notes"] == [
        {
            "note": "Same text",
            "software_1": "BM FlexCheck",
            "version_1": "1.1",
            "software_2": "BM FlexCheck",
            "version_2": "1.0",
            "line_number": 3,
        }
    ]


def test_stage_is_refreshed_not_duplicated(db_file, legacy_log) -> None:
    path = legacy_log(
        "01-02-2020;1.0;;;;;;;JUC;Acme;a;PreRelease",
        "02-02-2020;1.0;;;;;;;JUC;Acme;a;Released",
    )

    stats = import_legacy_log(str(path))["statistics"]

    assert stats["version_customers_created"] == 1
    assert stats["version_customers_refreshed"] == 1
    with get_conn() as conn:
        stages = [r[0] for r in conn.execute("SELECT release_stage FROM version_history_customer").fetchall()]
        status = conn.execute("SELECT release_status FROM version_history").fetchone()[0]
    assert stages == ["released"]
    assert status == "pre_release"


def test_skips_and_anomalies_are_reported(db_file, legacy_log) -> None:
    path = legacy_log(
        "01-02-2020;1.0;;;;;;;JUC;;no customer;Released",
        "02-02-2020;;;;;;;;JUC;Acme;nothing to import;Released",
        ";1.5;;;;;;;JUC;Acme;no date;Released",
        ";;;;;;;;;;;",
        "03-02-2020;2.0;;;;;;;JUC;Acme;;Released",
    )

    summary = import_legacy_log(str(path))

    assert summary["skipped"] == {"missing_customer_or_user": 1, "no_versions": 1}
    assert summary["statistics"]["rows_skipped"] == 2
    assert summary["statistics"]["rows_read"] == 5
    assert summary["statistics"]["rows_parsed"] == 3
    assert summary["statistics"]["lines_read"] == 6
    assert summary["anomalies"] == [{"line": 4, "reason": "invalid_date", "value": ""}]
    assert summary["versions_without_notes"] == [{"software": "BM FlexCheck", "version": "2.0"}]
    assert summary["versions_without_customers"] == []


def test_cp1252_log(db_file, tmp_path) -> None:
    header = LEGACY_HEADER.replace("notes", "Änderungen")
    path = write_log(
        tmp_path / "legacy_cp1252.csv",
        header,
        ["01-02-2020;1.0;;;;;;;JUC;Müller GmbH;Première;Released"],
        encoding="cp1252",
    )

    summary = import_legacy_log(str(path))

    assert summary["encoding"] == "cp1252"
    with get_conn() as conn:
        assert conn.execute("SELECT name FROM customer").fetchone()[0] == "Müller GmbH"
        assert conn.execute("SELECT note FROM history_note").fetchone()[0] == "Première"


def test_run_is_recorded(db_file, legacy_log, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMPORT_PROGRESS_EVERY", "1")
    path = legacy_log(
        "01-02-2020;1.0;;;;;;;JUC;Acme;a;Released",
        "02-02-2020;1.1;;;;;;;JUC;Acme;b;Released",
    )

    summary = import_legacy_log(str(path))
    run = get_import_run(summary["run_id"])

    assert run["status"] == "completed"
    assert run["kind"] == "legacy"
    assert run["rows_read"] == 2
    assert run["rows_processed"] == 2
    assert run["finished_at"]
    assert run["summary"]["statistics"] == summary["statistics"]
    assert [r["run_id"] for r in list_import_runs(10)] == [summary["run_id"]]


def test_configured_path_is_used(db_file, legacy_log, monkeypatch: pytest.MonkeyPatch) -> None:
    path = legacy_log("01-02-2020;1.0;;;;;;;JUC;Acme;a;Released")
    monkeypatch.setenv("LEGACY_LOG_PATH", str(path))

    assert import_legacy_log()["statistics"]["versions_created"] == 1


def test_missing_file(db_file, tmp_path) -> None:
    with pytest.raises(ValidationError):
        import_legacy_log(str(tmp_path / "nope.csv"))


def test_store_failure_marks_run_failed(db_file, legacy_log, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken(self, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr("db.release_store.ReleaseStore.create_version", broken)
    path = legacy_log("01-02-2020;1.0;;;;;;;JUC;Acme;a;Released")

    with pytest.raises(ImportFailedError) as exc_info:
        import_legacy_log(str(path))

    payload = exc_info.value.payload
    assert payload["ok"] is False
    assert payload["message"] == "Import failed: disk I/O error"
    assert "OperationalError" in payload["error"]
    assert get_import_run(payload["run_id"])["status"] == "failed"
    assert count("version_history") == 0


def test_unexpected_error_marks_run_failed(db_file, legacy_log, monkeypatch: pytest.MonkeyPatch) -> None:
    def lost(self, **kwargs):
        raise OSError("connection to store lost")

    monkeypatch.setattr("db.release_store.ReleaseStore.create_version", lost)
    path = legacy_log("01-02-2020;1.0;;;;;;;JUC;Acme;a;Released")

    with pytest.raises(ImportFailedError) as exc_info:
        import_legacy_log(str(path))

    payload = exc_info.value.payload
    assert payload["message"] == "Import failed: connection to store lost"
    assert "OSError" in payload["error"]
    run = get_import_run(payload["run_id"])
    assert run["status"] == "failed"
    assert run["finished_at"]


def test_bad_numeric_setting_fails_the_run(db_file, legacy_log, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("IMPORT_BATCH_SIZE", "lots")
    path = legacy_log("01-02-2020;1.0;;;;;;;JUC;Acme;a;Released")

    with pytest.raises(ImportFailedError) as exc_info:
        import_legacy_log(str(path))

    assert get_import_run(exc_info.value.payload["run_id"])["status"] == "failed"
