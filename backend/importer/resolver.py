"""
Reference resolution: materialize (or reuse) the software, users, countries and
customers a parsed log refers to, and fill the run cache's name -> id maps.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from werkzeug.security import generate_password_hash

from db.release_store import ReleaseStore
from importer.cache import RunCache, ci
from importer.records import X200_FLASH, X200_TURBO, FirmwareRecord, LegacyRecord
from importer.report import ImportStats

logger = logging.getLogger(__name__)

CATEGORY_FIRMWARE = "firmware"
CATEGORY_DESKTOP = "desktop"

FLEXCHECK = "BM FlexCheck"
X010 = "X010"
EOL_CONNECT = "BM EOL Connect"
CCPU = "CCPU"
DCPU = "DCPU"
RCPU = "RCPU"

LEGACY_SOFTWARE: Tuple[Tuple[str, str], ...] = (
    (FLEXCHECK, CATEGORY_DESKTOP),
    (X200_FLASH, CATEGORY_FIRMWARE),
    (X010, CATEGORY_FIRMWARE),
    (EOL_CONNECT, CATEGORY_DESKTOP),
)

FIRMWARE_SOFTWARE: Tuple[Tuple[str, str], ...] = (
    (X200_FLASH, CATEGORY_FIRMWARE),
    (X200_TURBO, CATEGORY_FIRMWARE),
    (X010, CATEGORY_FIRMWARE),
    (CCPU, CATEGORY_FIRMWARE),
    (DCPU, CATEGORY_FIRMWARE),
    (RCPU, CATEGORY_FIRMWARE),
)

DEFAULT_COUNTRY = "Default"
IMPORTED_USER_PASSWORD = "imported"


# ----------------------------
# author column
# ----------------------------

def split_authors(text: str) -> List[str]:
    """'JUC / PN' and 'JUC/PN' both name two collaborators."""
    value = (text or "").strip()
    if not value:
        return []
    if " / " in value:
        parts = value.split(" / ")
    elif "/" in value:
        parts = value.split("/")
    else:
        parts = [value]
    return [p.strip() for p in parts if p.strip()]


def legacy_author_roles(text: str) -> Tuple[Optional[str], Optional[str]]:
    """(desktop author, firmware author); a single name covers both."""
    names = split_authors(text)
    if len(names) >= 2:
        return names[0], names[1]
    if len(names) == 1:
        return names[0], names[0]
    return None, None


def firmware_author(text: str) -> str:
    parts = [p.strip() for p in (text or "").split("/") if p.strip()]
    return parts[0] if parts else ""


def _distinct(names: Iterable[str]) -> List[str]:
    seen = set()
    out: List[str] = []
    for name in names:
        name = (name or "").strip()
        key = ci(name)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(name)
    return out


# ----------------------------
# entity materialization
# ----------------------------

def ensure_software(
    store: ReleaseStore, cache: RunCache, catalog: Sequence[Tuple[str, str]], stats: ImportStats
) -> None:
    for name, category in catalog:
        row = store.find_software(name)
        if row:
            software_id = int(row["id"])
        else:
            software_id = store.create_software(name, category)
            stats.software_created += 1
            logger.info("created software name=%s id=%s category=%s", name, software_id, category)
        cache.software[ci(name)] = software_id


def ensure_users(store: ReleaseStore, cache: RunCache, names: Iterable[str], stats: ImportStats) -> None:
    password_hash = None
    for name in _distinct(names):
        row = store.find_user(name)
        if row:
            user_id = int(row["id"])
        else:
            if password_hash is None:
                password_hash = generate_password_hash(IMPORTED_USER_PASSWORD)
            user_id = store.create_user(name, password_hash, imported=True)
            stats.users_created += 1
            logger.info("created user name=%s id=%s", name, user_id)
        cache.users[ci(name)] = user_id


def ensure_countries(
    store: ReleaseStore, cache: RunCache, names: Iterable[str], stats: ImportStats
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Find-or-create countries by case-insensitive name; returns (created, existing)."""
    created: List[Dict[str, Any]] = []
    existing: List[Dict[str, Any]] = []
    for name in _distinct(names):
        row = store.find_country(name)
        if row:
            country_id = int(row["id"])
            existing.append({"id": country_id, "name": row["name"]})
        else:
            country_id = store.create_country(name)
            stats.countries_created += 1
            created.append({"id": country_id, "name": name})
            logger.info("created country name=%s id=%s", name, country_id)
        cache.countries[ci(name)] = country_id
    return created, existing


def ensure_customers(
    store: ReleaseStore, cache: RunCache, names: Iterable[str], country_id: int, stats: ImportStats
) -> None:
    for name in _distinct(names):
        row = store.find_customer(country_id, name)
        if row:
            customer_id = int(row["id"])
        else:
            customer_id = store.create_customer(name, country_id, requires_validation=False)
            stats.customers_created += 1
            logger.info("created customer name=%s id=%s country_id=%s", name, customer_id, country_id)
        cache.customers[ci(name)] = customer_id


def load_country_customers(store: ReleaseStore, cache: RunCache) -> None:
    cache.country_customers = {}
    for row in store.list_active_customers():
        country = str(row["country_name"] or "").strip()
        if not country:
            continue
        cache.country_customers.setdefault(ci(country), []).append(int(row["id"]))


def customers_for_country(
    store: ReleaseStore, cache: RunCache, country: str, stats: ImportStats
) -> List[int]:
    key = ci(country)
    if not key:
        return []
    ids = cache.country_customers.get(key)
    if ids:
        return ids

    logger.warning("no customers for country=%s, creating default customer", country)
    country_id = cache.countries.get(key)
    if country_id is None:
        row = store.find_country(country)
        if row:
            country_id = int(row["id"])
        else:
            country_id = store.create_country(country)
            stats.countries_created += 1
            logger.info("created country name=%s id=%s", country, country_id)
        cache.countries[key] = country_id

    default_name = f"{country.strip()} (Default)"
    row = store.find_customer(country_id, default_name)
    if row:
        customer_id = int(row["id"])
    else:
        customer_id = store.create_customer(default_name, country_id, requires_validation=False)
        stats.customers_created += 1
        logger.info("created customer name=%s id=%s country_id=%s", default_name, customer_id, country_id)

    ids = [customer_id]
    cache.country_customers[key] = ids
    return ids


# ----------------------------
# per-layout resolution
# ----------------------------

def resolve_legacy_references(
    store: ReleaseStore, cache: RunCache, records: Sequence[LegacyRecord], stats: ImportStats
) -> None:
    ensure_software(store, cache, LEGACY_SOFTWARE, stats)

    authors: List[str] = []
    for r in records:
        authors.extend(split_authors(r.by))
    ensure_users(store, cache, authors, stats)

    ensure_countries(store, cache, [DEFAULT_COUNTRY], stats)
    country_id = cache.countries[ci(DEFAULT_COUNTRY)]
    ensure_customers(store, cache, (r.released_for for r in records), country_id, stats)

    logger.info(
        "legacy references resolved software=%s users=%s customers=%s",
        len(cache.software),
        len(cache.users),
        len(cache.customers),
    )


def resolve_firmware_references(
    store: ReleaseStore, cache: RunCache, records: Sequence[FirmwareRecord], stats: ImportStats
) -> None:
    ensure_software(store, cache, FIRMWARE_SOFTWARE, stats)
    ensure_users(store, cache, (firmware_author(r.user) for r in records), stats)
    ensure_countries(store, cache, (r.country for r in records), stats)
    load_country_customers(store, cache)

    logger.info(
        "firmware references resolved software=%s users=%s countries=%s",
        len(cache.software),
        len(cache.users),
        len(cache.countries),
    )
