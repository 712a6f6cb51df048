"""
Import pipeline: one sequential pass per run.

    read log -> resolve references -> reconcile rows -> summary

The legacy and firmware variants share every stage and differ only in the
policy entry picked from POLICIES.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from db.release_store import DEFAULT_BATCH_SIZE, ReleaseStore
from importer.cache import RunCache, ci
from importer.records import ParsedLog, read_firmware_log, read_legacy_log
from importer.reconcile import (
    ProgressCallback,
    Reconciler,
    reconcile_firmware_row,
    reconcile_legacy_row,
    run_reconciliation,
)
from importer.report import ImportStats, build_countries_summary, build_summary
from importer.resolver import ensure_countries, resolve_firmware_references, resolve_legacy_references

logger = logging.getLogger(__name__)

KIND_LEGACY = "legacy"
KIND_FIRMWARE = "firmware"
KIND_FIRMWARE_COUNTRIES = "firmware_countries"


@dataclass(frozen=True)
class ImportPolicy:
    reader: Callable[[str], ParsedLog]
    resolve: Callable[[ReleaseStore, RunCache, Sequence[Any], ImportStats], None]
    reconcile_row: Callable[[Reconciler, Any], None]
    require_notes: bool


POLICIES: Dict[str, ImportPolicy] = {
    KIND_LEGACY: ImportPolicy(
        reader=read_legacy_log,
        resolve=resolve_legacy_references,
        reconcile_row=reconcile_legacy_row,
        require_notes=True,
    ),
    KIND_FIRMWARE: ImportPolicy(
        reader=read_firmware_log,
        resolve=resolve_firmware_references,
        reconcile_row=reconcile_firmware_row,
        require_notes=False,
    ),
}


def batch_size() -> int:
    return max(1, int(os.environ.get("IMPORT_BATCH_SIZE", str(DEFAULT_BATCH_SIZE))))


def run_import(
    kind: str,
    path: str,
    conn: sqlite3.Connection,
    *,
    batch: Optional[int] = None,
    on_progress: Optional[ProgressCallback] = None,
    run_id: Optional[str] = None,
) -> Dict[str, Any]:
    policy = POLICIES.get(kind)
    if policy is None:
        raise ValueError(f"unknown import kind: {kind}")

    logger.info("starting %s import path=%s run_id=%s", kind, path, run_id)
    parsed = policy.reader(path)

    stats = ImportStats()
    stats.rows_read = parsed.rows_read
    stats.rows_parsed = len(parsed.records)
    stats.lines_read = parsed.lines_read
    stats.anomalies.extend(parsed.anomalies)

    store = ReleaseStore(conn, batch_size=batch or batch_size())
    cache = RunCache()

    policy.resolve(store, cache, parsed.records, stats)
    store.flush()

    reconciler = Reconciler(store, cache, stats)
    run_reconciliation(
        reconciler,
        parsed.records,
        policy.reconcile_row,
        require_notes=policy.require_notes,
        on_progress=on_progress,
    )

    logger.info(
        "%s import completed rows=%s versions_created=%s versions_updated=%s notes_created=%s "
        "duplicate_notes=%s skipped=%s flushes=%s",
        kind,
        stats.rows_processed,
        stats.versions_created,
        stats.versions_updated,
        stats.notes_created,
        len(stats.duplicate_notes),
        stats.rows_skipped,
        store.flush_count,
    )
    return build_summary(kind, stats, run_id=run_id, encoding=parsed.encoding)


def run_firmware_countries(path: str, conn: sqlite3.Connection, *, run_id: Optional[str] = None) -> Dict[str, Any]:
    """Materialize the distinct countries named by a firmware log; nothing else."""
    logger.info("starting firmware countries import path=%s run_id=%s", path, run_id)
    parsed = read_firmware_log(path)

    # first spelling of each country wins
    first_seen: Dict[str, str] = {}
    for r in parsed.records:
        name = r.country.strip()
        if name:
            first_seen.setdefault(ci(name), name)
    names = [first_seen[k] for k in sorted(first_seen)]

    store = ReleaseStore(conn, batch_size=batch_size())
    created, existing = ensure_countries(store, RunCache(), names, ImportStats())
    store.flush()

    logger.info("countries import completed created=%s existing=%s", len(created), len(existing))
    return build_countries_summary(created, existing, run_id=run_id)
