from __future__ import annotations

from db.release_store import ReleaseStore
from db.sqlite_db import get_conn
from services.services import import_firmware_countries, import_firmware_log

from conftest import count


def _versions():
    with get_conn() as conn:
        rows = conn.execute(
            """
            SELECT s.name AS software, vh.version, vh.release_status, u.name AS author
            FROM version_history vh
            JOIN software s ON s.id = vh.software_id
            JOIN users u ON u.id = vh.released_by_id
            ORDER BY vh.id
            """
        ).fetchall()
    return [tuple(r) for r in rows]


def test_firmware_import(db_file, firmware_log) -> None:
    path = firmware_log(
        "Germany;15-03-2021 10:00:00;JUC/PN;C1.0;ccpu fix;;;;;;;P14.217/P9.135 L1;x200 notes",
        "Germany;16-03-2021;JUC;;;;;;;X1.0;x010 notes;;",
        "France;;JUC;C2.0;;;;;;;;;",
        ";;;;;;;;;;;;",
    )

    summary = import_firmware_log(str(path))
    stats = summary["statistics"]

    assert summary["kind"] == "firmware"
    assert stats["software_created"] == 6
    assert stats["users_created"] == 1
    assert stats["countries_created"] == 1
    assert stats["customers_created"] == 1
    assert stats["versions_created"] == 4
    assert summary["anomalies"] == [{"line": 4, "reason": "invalid_date", "value": ""}]

    assert _versions() == [
        ("CCPU", "C1.0", "production_ready", "JUC"),
        ("X200 Flash", "P14.217 L1", "production_ready", "JUC"),
        ("X200 Turbo", "P9.135 L1", "production_ready", "JUC"),
        ("X010", "X1.0", "production_ready", "JUC"),
    ]
    with get_conn() as conn:
        customer = conn.execute("SELECT name FROM customer").fetchone()[0]
        stages = {r[0] for r in conn.execute("SELECT release_stage FROM version_history_customer").fetchall()}
        pn = conn.execute("SELECT COUNT(*) FROM users WHERE name = 'PN'").fetchone()[0]
    assert customer == "Germany (Default)"
    assert stages == {"production_ready"}
    assert pn == 0

    assert [(d["version_1"], d["version_2"]) for d in summary["duplicate_notes"]] == [("P9.135 L1", "P14.217 L1")]


def test_versions_link_every_customer_of_the_country(db_file, firmware_log) -> None:
    with get_conn() as conn:
        store = ReleaseStore(conn)
        country_id = store.create_country("Germany")
        store.create_customer("Alpha", country_id)
        store.create_customer("Beta", country_id)

    path = firmware_log("germany;1-4-2021;JUC;C1.0;first;;;;;;;;")
    stats = import_firmware_log(str(path))["statistics"]

    assert stats["customers_created"] == 0
    assert stats["countries_created"] == 0
    assert stats["version_customers_created"] == 2
    assert stats["note_customers_created"] == 2
    assert count("history_note") == 1


def test_firmware_second_run_creates_nothing(db_file, firmware_log) -> None:
    path = firmware_log(
        "Germany;15-03-2021;JUC;C1.0;ccpu fix;D1;;;;;;P14.217/P9.135 L1;x200 notes",
        "Austria;16-03-2021;PN;C1.1;;;;;;;;M2;",
    )

    import_firmware_log(str(path))
    before = {t: count(t) for t in ("country", "customer", "users", "version_history", "history_note")}
    stats = import_firmware_log(str(path))["statistics"]

    assert {t: count(t) for t in before} == before
    assert stats["versions_created"] == 0
    assert stats["customers_created"] == 0
    assert stats["version_customers_created"] == 0
    assert stats["notes_created"] == 0
    assert stats["versions_updated"] == 6


def test_rows_without_country_or_user_are_skipped(db_file, firmware_log) -> None:
    path = firmware_log(
        ";15-03-2021;JUC;C1.0;;;;;;;;;",
        "Germany;15-03-2021;;C1.1;;;;;;;;;",
        "Germany;15-03-2021;JUC;;;;;;;;;;",
    )

    summary = import_firmware_log(str(path))

    assert summary["skipped"] == {"missing_country_or_user": 2, "no_versions": 1}
    assert count("version_history") == 0


def test_countries_prepass(db_file, firmware_log) -> None:
    with get_conn() as conn:
        ReleaseStore(conn).create_country("France")

    path = firmware_log(
        "Germany;15-03-2021;JUC;C1.0;;;;;;;;;",
        "germany;16-03-2021;JUC;C1.1;;;;;;;;;",
        "FRANCE;16-03-2021;JUC;C1.2;;;;;;;;;",
    )

    summary = import_firmware_countries(str(path))

    assert summary["ok"] is True
    assert summary["statistics"] == {"total": 2, "created": 1, "existing": 1}
    assert [c["name"] for c in summary["created"]] == ["Germany"]
    assert [c["name"] for c in summary["existing"]] == ["France"]
    assert count("customer") == 0
    assert count("version_history") == 0

    again = import_firmware_countries(str(path))
    assert again["statistics"] == {"total": 2, "created": 0, "existing": 2}
