"""
Reconciliation of parsed log rows onto version history.

Every (software, version) found in a row is one unit of work:

1. find the version through the run cache, then the store; create it when missing
2. link the row's customers at the row's release stage (insert or refresh, never duplicate)
3. attach the row's note once per version, linked to the row's customers
4. report the same note text under another version as a cross-duplicate

Warnings for missing references skip the row or the single column; store errors
propagate and abort the run.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from db.release_store import ReleaseStore
from importer.cache import CachedVersion, RunCache
from importer.records import STATUS_PRODUCTION_READY, FirmwareRecord, LegacyRecord, normalize_status, progress_every
from importer.report import ImportStats
from importer.resolver import (
    CATEGORY_DESKTOP,
    CATEGORY_FIRMWARE,
    CCPU,
    DCPU,
    EOL_CONNECT,
    FLEXCHECK,
    RCPU,
    X010,
    X200_FLASH,
    customers_for_country,
    firmware_author,
    legacy_author_roles,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]

# (software, record attribute, category)
LEGACY_VERSION_COLUMNS = (
    (FLEXCHECK, "fc_version", CATEGORY_DESKTOP),
    (X200_FLASH, "x200_version", CATEGORY_FIRMWARE),
    (X010, "x010_version", CATEGORY_FIRMWARE),
    (EOL_CONNECT, "eol_connect_version", CATEGORY_DESKTOP),
)

# (software, version attribute, notes attribute)
FIRMWARE_VERSION_COLUMNS = (
    (CCPU, "ccpu_version", "ccpu_changes"),
    (DCPU, "dcpu_version", "dcpu_changes"),
    (RCPU, "rcpu_version", "rcpu_changes"),
    (X010, "x010_version", "x010_changes"),
)


class Reconciler:
    def __init__(self, store: ReleaseStore, cache: RunCache, stats: ImportStats):
        self.store = store
        self.cache = cache
        self.stats = stats

    def _load_version(self, software_id: int, software_name: str, version: str) -> Optional[CachedVersion]:
        row = self.store.find_version(software_id, version)
        if not row:
            return None
        version_id = int(row["id"])
        return CachedVersion(
            id=version_id,
            software_id=software_id,
            software_name=software_name,
            version=version,
            customer_stages=self.store.version_customer_stages(version_id),
            notes=self.store.version_notes(version_id),
            note_customers=self.store.version_note_customers(version_id),
        )

    def _version(
        self,
        *,
        software_id: int,
        software_name: str,
        version: str,
        release_date: datetime,
        released_by_id: int,
        release_status: str,
    ) -> CachedVersion:
        key = (software_id, version)
        cached = self.cache.versions.get(key)
        if cached is None:
            cached = self._load_version(software_id, software_name, version)
            if cached is not None:
                self.cache.versions[key] = cached
                self.cache.touched.append(key)

        if cached is not None:
            self.stats.versions_updated += 1
            return cached

        version_id = self.store.create_version(
            software_id=software_id,
            version=version,
            release_date=release_date.isoformat(),
            released_by_id=released_by_id,
            release_status=release_status,
        )
        cached = CachedVersion(id=version_id, software_id=software_id, software_name=software_name, version=version)
        self.cache.versions[key] = cached
        self.cache.touched.append(key)
        self.stats.versions_created += 1
        logger.debug("created version software=%s version=%s id=%s", software_name, version, version_id)
        return cached

    def _link_customers(self, cached: CachedVersion, customer_ids: Sequence[int], stage: str) -> None:
        for customer_id in customer_ids:
            current = cached.customer_stages.get(customer_id)
            if current is None:
                self.store.queue_version_customer(cached.id, customer_id, stage)
                self.stats.version_customers_created += 1
            else:
                if current != stage:
                    self.store.queue_stage_update(cached.id, customer_id, stage)
                self.stats.version_customers_refreshed += 1
            cached.customer_stages[customer_id] = stage

    def _attach_note(self, cached: CachedVersion, note: str, customer_ids: Sequence[int], line_number: int) -> None:
        note_id = cached.notes.get(note)
        if note_id is None:
            note_id = self.store.create_note(cached.id, note)
            cached.notes[note] = note_id
            self.stats.notes_created += 1

        linked = cached.note_customers.setdefault(note_id, set())
        for customer_id in customer_ids:
            if customer_id in linked:
                continue
            self.store.queue_note_customer(note_id, customer_id)
            linked.add(customer_id)
            self.stats.note_customers_created += 1

        other = self.store.find_note_elsewhere(note, cached.id)
        if other is not None:
            self.stats.add_duplicate_note(
                note=note,
                software_1=cached.software_name,
                version_1=cached.version,
                software_2=str(other["software_name"]),
                version_2=str(other["version"]),
                line_number=line_number,
            )

    def apply(
        self,
        *,
        software_name: str,
        version: str,
        release_date: datetime,
        released_by_id: int,
        release_status: str,
        stage: str,
        customer_ids: Sequence[int],
        note: str,
        line_number: int,
    ) -> Optional[CachedVersion]:
        software_id = self.cache.software_id(software_name)
        if software_id is None:
            logger.warning("software not found software=%s line=%s", software_name, line_number)
            self.stats.skip_contribution("software_not_found")
            return None

        cached = self._version(
            software_id=software_id,
            software_name=software_name,
            version=version,
            release_date=release_date,
            released_by_id=released_by_id,
            release_status=release_status,
        )
        self._link_customers(cached, customer_ids, stage)
        if note:
            self._attach_note(cached, note, customer_ids, line_number)
        return cached


def reconcile_legacy_row(reconciler: Reconciler, record: LegacyRecord) -> None:
    cache, stats = reconciler.cache, reconciler.stats
    line = record.line_number

    if not record.released_for or not record.by:
        logger.warning("skipping line=%s reason=missing_customer_or_user", line)
        stats.skip_row("missing_customer_or_user")
        return

    customer_id = cache.customer_id(record.released_for)
    if customer_id is None:
        logger.warning("customer not found customer=%s line=%s", record.released_for, line)
        stats.skip_row("customer_not_found")
        return

    desktop_user, firmware_user = legacy_author_roles(record.by)
    status = normalize_status(record.release_status)

    contributed = False
    for software_name, attr, category in LEGACY_VERSION_COLUMNS:
        version = getattr(record, attr)
        if not version:
            continue
        contributed = True

        author = desktop_user if category == CATEGORY_DESKTOP else firmware_user
        if not author:
            logger.warning("no user for category=%s line=%s", category, line)
            stats.skip_contribution("missing_user")
            continue
        user_id = cache.user_id(author)
        if user_id is None:
            logger.warning("user not found user=%s line=%s", author, line)
            stats.skip_contribution("user_not_found")
            continue

        reconciler.apply(
            software_name=software_name,
            version=version,
            release_date=record.release_date,
            released_by_id=user_id,
            release_status=status,
            stage=status,
            customer_ids=[customer_id],
            note=record.notes,
            line_number=line,
        )

    if not contributed:
        logger.warning("skipping line=%s reason=no_versions", line)
        stats.skip_row("no_versions")


def reconcile_firmware_row(reconciler: Reconciler, record: FirmwareRecord) -> None:
    store, cache, stats = reconciler.store, reconciler.cache, reconciler.stats
    line = record.line_number

    if not record.country or not record.user:
        logger.warning("skipping line=%s reason=missing_country_or_user", line)
        stats.skip_row("missing_country_or_user")
        return

    customer_ids = customers_for_country(store, cache, record.country, stats)
    if not customer_ids:
        logger.warning("no customers for country=%r line=%s", record.country, line)
        stats.skip_row("customer_not_found")
        return

    author = firmware_author(record.user)
    user_id = cache.user_id(author)
    if user_id is None:
        logger.warning("user not found user=%s line=%s", author, line)
        stats.skip_row("user_not_found")
        return

    units = [
        (software_name, getattr(record, version_attr), getattr(record, notes_attr))
        for software_name, version_attr, notes_attr in FIRMWARE_VERSION_COLUMNS
    ]
    units.extend((software_name, version, record.x200_changes) for version, software_name in record.x200_releases)

    contributed = False
    for software_name, version, note in units:
        if not version:
            continue
        contributed = True
        reconciler.apply(
            software_name=software_name,
            version=version,
            release_date=record.release_date,
            released_by_id=user_id,
            release_status=STATUS_PRODUCTION_READY,
            stage=STATUS_PRODUCTION_READY,
            customer_ids=customer_ids,
            note=note,
            line_number=line,
        )

    if not contributed:
        logger.warning("skipping line=%s reason=no_versions", line)
        stats.skip_row("no_versions")


def check_coverage(cache: RunCache, stats: ImportStats, *, require_notes: bool) -> None:
    for key in cache.touched:
        cached = cache.versions[key]
        where = {"software": cached.software_name, "version": cached.version}
        if not cached.customer_stages:
            stats.versions_without_customers.append(where)
        if require_notes and not cached.notes:
            stats.versions_without_notes.append(where)

    if stats.versions_without_customers:
        logger.warning("versions without customers count=%s", len(stats.versions_without_customers))
    if stats.versions_without_notes:
        logger.warning("versions without notes count=%s", len(stats.versions_without_notes))


def run_reconciliation(
    reconciler: Reconciler,
    records: Sequence[Any],
    reconcile_row: Callable[[Reconciler, Any], None],
    *,
    require_notes: bool,
    on_progress: Optional[ProgressCallback] = None,
) -> ImportStats:
    stats = reconciler.stats
    total = len(records)
    every = progress_every()
    logger.info("processing rows total=%s", total)

    for record in records:
        reconcile_row(reconciler, record)
        stats.rows_processed += 1
        if stats.rows_processed % every == 0:
            logger.info(
                "progress processed=%s total=%s versions_created=%s notes_created=%s",
                stats.rows_processed,
                total,
                stats.versions_created,
                stats.notes_created,
            )
            if on_progress is not None:
                on_progress(stats.rows_processed, total)

    reconciler.store.flush()
    check_coverage(reconciler.cache, stats, require_notes=require_notes)
    return stats
