from __future__ import annotations

import json

import pytest

from importer import cli


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli, "setup_logging", lambda: None)


def test_legacy_command_prints_summary(db_file, legacy_log, capsys: pytest.CaptureFixture[str]) -> None:
    path = legacy_log("01-02-2020;1.0;;;;;;;JUC;Acme;first;Released")

    assert cli.main(["legacy", str(path), "--brief"]) == 0

    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["statistics"]["versions_created"] == 1


def test_countries_command(db_file, firmware_log, capsys: pytest.CaptureFixture[str]) -> None:
    path = firmware_log("Germany;15-03-2021;JUC;C1.0;;;;;;;;;")

    assert cli.main(["countries", str(path)]) == 0
    assert json.loads(capsys.readouterr().out)["statistics"]["created"] == 1


def test_missing_file_exits_non_zero(db_file, tmp_path, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["firmware", str(tmp_path / "missing.csv")]) == 1
    assert json.loads(capsys.readouterr().err)["ok"] is False
