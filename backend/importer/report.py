from __future__ import annotations

import traceback
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ImportStats:
    software_created: int = 0
    users_created: int = 0
    countries_created: int = 0
    customers_created: int = 0
    versions_created: int = 0
    versions_updated: int = 0
    version_customers_created: int = 0
    version_customers_refreshed: int = 0
    notes_created: int = 0
    note_customers_created: int = 0
    rows_read: int = 0
    rows_parsed: int = 0
    lines_read: int = 0
    rows_processed: int = 0
    rows_skipped: int = 0
    contributions_skipped: int = 0
    skipped: Counter = field(default_factory=Counter)
    anomalies: List[Dict[str, Any]] = field(default_factory=list)
    duplicate_notes: List[Dict[str, Any]] = field(default_factory=list)
    versions_without_customers: List[Dict[str, str]] = field(default_factory=list)
    versions_without_notes: List[Dict[str, str]] = field(default_factory=list)

    def skip_row(self, reason: str) -> None:
        self.rows_skipped += 1
        self.skipped[reason] += 1

    def skip_contribution(self, reason: str) -> None:
        self.contributions_skipped += 1
        self.skipped[reason] += 1

    def add_duplicate_note(
        self,
        *,
        note: str,
        software_1: str,
        version_1: str,
        software_2: str,
        version_2: str,
        line_number: int,
    ) -> None:
        self.duplicate_notes.append(
            {
                "note": note,
                "software_1": software_1,
                "version_1": version_1,
                "software_2": software_2,
                "version_2": version_2,
                "line_number": line_number,
            }
        )

    def statistics(self) -> Dict[str, int]:
        return {
            "software_created": self.software_created,
            "users_created": self.users_created,
            "countries_created": self.countries_created,
            "customers_created": self.customers_created,
            "versions_created": self.versions_created,
            "versions_updated": self.versions_updated,
            "version_customers_created": self.version_customers_created,
            "version_customers_refreshed": self.version_customers_refreshed,
            "notes_created": self.notes_created,
            "note_customers_created": self.note_customers_created,
            "duplicate_notes": len(self.duplicate_notes),
            "rows_read": self.rows_read,
            "rows_parsed": self.rows_parsed,
            "lines_read": self.lines_read,
            "rows_processed": self.rows_processed,
            "rows_skipped": self.rows_skipped,
            "contributions_skipped": self.contributions_skipped,
            "anomalies": len(self.anomalies),
        }


def build_summary(
    kind: str,
    stats: ImportStats,
    *,
    run_id: Optional[str] = None,
    encoding: Optional[str] = None,
    message: str = "Import completed successfully",
) -> Dict[str, Any]:
    return {
        "ok": True,
        "kind": kind,
        "message": message,
        "run_id": run_id,
        "encoding": encoding,
        "statistics": stats.statistics(),
        "skipped": dict(sorted(stats.skipped.items())),
        "anomalies": list(stats.anomalies),
        "duplicate_notes": list(stats.duplicate_notes),
        "versions_without_customers": list(stats.versions_without_customers),
        "versions_without_notes": list(stats.versions_without_notes),
    }


def build_countries_summary(
    created: List[Dict[str, Any]],
    existing: List[Dict[str, Any]],
    *,
    run_id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "ok": True,
        "kind": "firmware_countries",
        "message": "Countries import completed successfully",
        "run_id": run_id,
        "statistics": {
            "total": len(created) + len(existing),
            "created": len(created),
            "existing": len(existing),
        },
        "created": list(created),
        "existing": list(existing),
    }


def build_failure(message: str, exc: BaseException, *, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ok": False,
        "message": f"Import failed: {message}",
        "run_id": run_id,
        "error": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
