from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple


def ci(name: str) -> str:
    """Key for case-insensitive name lookups."""
    return (name or "").strip().lower()


@dataclass
class CachedVersion:
    id: int
    software_id: int
    software_name: str
    version: str
    # customer_id -> release stage
    customer_stages: Dict[int, str] = field(default_factory=dict)
    # note text -> note id
    notes: Dict[str, int] = field(default_factory=dict)
    # note id -> linked customer ids
    note_customers: Dict[int, Set[int]] = field(default_factory=dict)


@dataclass
class RunCache:
    """
    Identity cache owned by a single import run.

    Built by the resolver, extended by the reconciler and dropped when the run
    ends. Name maps are keyed by `ci(name)`.
    """

    software: Dict[str, int] = field(default_factory=dict)
    users: Dict[str, int] = field(default_factory=dict)
    countries: Dict[str, int] = field(default_factory=dict)
    customers: Dict[str, int] = field(default_factory=dict)
    # country key -> active customer ids
    country_customers: Dict[str, List[int]] = field(default_factory=dict)
    versions: Dict[Tuple[int, str], CachedVersion] = field(default_factory=dict)
    # version keys touched by this run, first-seen order
    touched: List[Tuple[int, str]] = field(default_factory=list)

    def software_id(self, name: str) -> Optional[int]:
        return self.software.get(ci(name))

    def user_id(self, name: str) -> Optional[int]:
        return self.users.get(ci(name))

    def customer_id(self, name: str) -> Optional[int]:
        return self.customers.get(ci(name))
