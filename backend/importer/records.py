"""
Typed records for the two release log layouts.

Legacy software log (12 columns):
    date; FlexCheck; X200; X010; LiveStream; Asanetwork; Android app; EOL Connect;
    by; released for; notes; status

Firmware log (13 columns):
    country; date; user; CCPU; CCPU changes; DCPU; DCPU changes; RCPU; RCPU changes;
    X010; X010 changes; X200 flash/turbo; X200 changes
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from importer.encoding import detect_file_encoding
from importer.tokenizer import iter_rows, pad_fields

logger = logging.getLogger(__name__)

LEGACY_COLUMNS = 12
FIRMWARE_COLUMNS = 13

# strptime accepts one or two digit day/month for %d/%m, which covers
# d-M-yyyy, dd-M-yyyy, d-MM-yyyy and dd-MM-yyyy
LEGACY_DATE_FORMATS = ("%d-%m-%Y",)
FIRMWARE_DATE_FORMATS = ("%d-%m-%Y", "%d-%m-%Y %H:%M:%S")

STATUS_PRE_RELEASE = "pre_release"
STATUS_RELEASED = "released"
STATUS_PRODUCTION_READY = "production_ready"

_STATUS_SYNONYMS = {
    "prerelease": STATUS_PRE_RELEASE,
    "pre-release": STATUS_PRE_RELEASE,
    "pre release": STATUS_PRE_RELEASE,
    "released": STATUS_RELEASED,
    "productionready": STATUS_PRODUCTION_READY,
    "production ready": STATUS_PRODUCTION_READY,
    "production": STATUS_PRODUCTION_READY,
}

X200_FLASH = "X200 Flash"
X200_TURBO = "X200 Turbo"

_L_SUFFIX_RE = re.compile(r"\s+(L\d+)$")
_L_SUFFIX_ANY_CASE_RE = re.compile(r"\s+L\d+$", re.IGNORECASE)
_TURBO_PREFIXES = ("p9.", "p12.", "m")


class ImportFileError(ValueError):
    """The input file cannot be used at all (empty, wrong header)."""


@dataclass
class LegacyRecord:
    line_number: int
    release_date: datetime
    fc_version: str = ""
    x200_version: str = ""
    x010_version: str = ""
    livestream_version: str = ""
    asanetwork_version: str = ""
    android_app_version: str = ""
    eol_connect_version: str = ""
    by: str = ""
    released_for: str = ""
    notes: str = ""
    release_status: str = ""


@dataclass
class FirmwareRecord:
    line_number: int
    release_date: datetime
    country: str = ""
    user: str = ""
    ccpu_version: str = ""
    ccpu_changes: str = ""
    dcpu_version: str = ""
    dcpu_changes: str = ""
    rcpu_version: str = ""
    rcpu_changes: str = ""
    x010_version: str = ""
    x010_changes: str = ""
    x200_version: str = ""
    x200_changes: str = ""
    x200_releases: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class ParsedLog:
    records: List[Any]
    anomalies: List[Dict[str, Any]]
    encoding: str
    # data rows after the header, blank lines excluded
    rows_read: int
    # physical line number of the last row
    lines_read: int


def progress_every() -> int:
    return max(1, int(os.environ.get("IMPORT_PROGRESS_EVERY", "1000")))


def parse_date(text: str, formats: Sequence[str] = LEGACY_DATE_FORMATS) -> Optional[datetime]:
    value = (text or "").strip()
    if not value:
        return None
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def normalize_status(text: str) -> str:
    key = (text or "").strip().lower()
    return _STATUS_SYNONYMS.get(key, STATUS_PRE_RELEASE)


def x200_target(version: str) -> str:
    base = _L_SUFFIX_ANY_CASE_RE.sub("", version.strip()).lower()
    if base.startswith(_TURBO_PREFIXES):
        return X200_TURBO
    return X200_FLASH


def split_x200_versions(text: str) -> Optional[List[Tuple[str, str]]]:
    """
    Split the compound X200 column into (version, software) pairs.

    "P14.217/P9.135 L1" -> [("P14.217 L1", "X200 Flash"), ("P9.135 L1", "X200 Turbo")]

    Returns None when the value has a shape we do not understand (more than two
    releases), an empty list when there is nothing to import.
    """
    value = (text or "").strip()
    if not value:
        return []
    if "/" not in value:
        return [(value, x200_target(value))]

    parts = [p.strip() for p in value.split("/") if p.strip()]
    if len(parts) > 2:
        return None
    if not parts:
        return []

    suffix = ""
    m = _L_SUFFIX_RE.search(parts[-1])
    if m:
        suffix = m.group(1)
        parts[-1] = parts[-1][: m.start()].strip()

    out: List[Tuple[str, str]] = []
    for part in parts:
        if not part:
            continue
        version = part
        if suffix and not version.endswith(suffix):
            version = f"{version} {suffix}"
        out.append((version, x200_target(version)))
    return out


def _note_bad_date(
    fields: List[str], date_index: int, line_number: int, anomalies: List[Dict[str, Any]]
) -> None:
    has_data = any(v for i, v in enumerate(fields) if i != date_index)
    if not has_data:
        return
    raw = fields[date_index]
    logger.warning("skipping line=%s reason=invalid_date value=%r", line_number, raw)
    anomalies.append({"line": line_number, "reason": "invalid_date", "value": raw})


def parse_legacy_row(
    fields: List[str], line_number: int, anomalies: List[Dict[str, Any]]
) -> Optional[LegacyRecord]:
    parts = [f.strip() for f in pad_fields(fields, LEGACY_COLUMNS)]

    release_date = parse_date(parts[0], LEGACY_DATE_FORMATS)
    if release_date is None:
        _note_bad_date(parts, 0, line_number, anomalies)
        return None

    return LegacyRecord(
        line_number=line_number,
        release_date=release_date,
        fc_version=parts[1],
        x200_version=parts[2],
        x010_version=parts[3],
        livestream_version=parts[4],
        asanetwork_version=parts[5],
        android_app_version=parts[6],
        eol_connect_version=parts[7],
        by=parts[8],
        released_for=parts[9],
        notes=parts[10],
        release_status=parts[11],
    )


def parse_firmware_row(
    fields: List[str], line_number: int, anomalies: List[Dict[str, Any]]
) -> Optional[FirmwareRecord]:
    parts = [f.strip() for f in pad_fields(fields, FIRMWARE_COLUMNS)]

    release_date = parse_date(parts[1], FIRMWARE_DATE_FORMATS)
    if release_date is None:
        _note_bad_date(parts, 1, line_number, anomalies)
        return None

    x200_releases = split_x200_versions(parts[11])
    if x200_releases is None:
        logger.warning(
            "could not parse X200 version=%r line=%s country=%r", parts[11], line_number, parts[0]
        )
        anomalies.append(
            {"line": line_number, "reason": "unknown_compound_version", "value": parts[11]}
        )
        x200_releases = []
    elif parts[11] and not x200_releases:
        anomalies.append(
            {"line": line_number, "reason": "unknown_compound_version", "value": parts[11]}
        )

    return FirmwareRecord(
        line_number=line_number,
        release_date=release_date,
        country=parts[0],
        user=parts[2],
        ccpu_version=parts[3],
        ccpu_changes=parts[4],
        dcpu_version=parts[5],
        dcpu_changes=parts[6],
        rcpu_version=parts[7],
        rcpu_changes=parts[8],
        x010_version=parts[9],
        x010_changes=parts[10],
        x200_version=parts[11],
        x200_changes=parts[12],
        x200_releases=x200_releases,
    )


def _read_log(
    path: str,
    *,
    label: str,
    min_header_columns: int,
    parse_row: Callable[[List[str], int, List[Dict[str, Any]]], Any],
) -> ParsedLog:
    encoding = detect_file_encoding(path)
    records: List[Any] = []
    anomalies: List[Dict[str, Any]] = []
    every = progress_every()
    rows_read = 0
    last_line = 0

    with open(path, "r", encoding=encoding, errors="replace", newline="") as fh:
        rows = iter_rows(fh)
        header = next(rows, None)
        if header is None:
            raise ImportFileError(f"{label} file is empty: {path}")
        if len(header.fields) < min_header_columns:
            raise ImportFileError(
                f"{label} file has an invalid header: expected {min_header_columns} columns, "
                f"got {len(header.fields)}"
            )
        last_line = header.line_number

        for row in rows:
            rows_read += 1
            last_line = row.line_number
            record = parse_row(row.fields, row.line_number, anomalies)
            if record is None:
                continue
            records.append(record)
            if len(records) % every == 0:
                logger.info("read %s valid rows so far (at line %s)", len(records), row.line_number)

    logger.info(
        "read %s valid rows of %s from %s (last line %s, anomalies=%s)",
        len(records),
        rows_read,
        label,
        last_line,
        len(anomalies),
    )
    return ParsedLog(
        records=records, anomalies=anomalies, encoding=encoding, rows_read=rows_read, lines_read=last_line
    )


def read_legacy_log(path: str) -> ParsedLog:
    return _read_log(path, label="legacy log", min_header_columns=1, parse_row=parse_legacy_row)


def read_firmware_log(path: str) -> ParsedLog:
    return _read_log(
        path, label="firmware log", min_header_columns=FIRMWARE_COLUMNS, parse_row=parse_firmware_row
    )
