from __future__ import annotations

import threading
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel

from reconciler.errors import ExcludedAddressError
from reconciler.models.types import EthereumAddress, Source, normalize_address


class ResolvedBalance(BaseModel):
    """
    Balance attributed to one address from every source.
    :param `amount`: smallest token unit
    :param `sources`: provenance tags in the order they were first seen
    """

    address: EthereumAddress
    amount: int = 0
    sources: list[Source] = []


class BalanceLedger:
    """
    Address -> ResolvedBalance. Only grows through `credit`; the single removal path is
    `remove`, used when a pool's own balance is replaced by its providers' shares.
    """

    def __init__(self, exclusion_set: Iterable[EthereumAddress]):
        self._exclusion_set = frozenset(normalize_address(a) for a in exclusion_set)
        self._entries: dict[EthereumAddress, ResolvedBalance] = {}
        self._lock = threading.Lock()

    def credit(self, address: str, amount: int, source: Source) -> Optional[ResolvedBalance]:
        """Zero amounts leave the ledger untouched and return the current entry, if any"""
        address = normalize_address(address)
        if address in self._exclusion_set:
            raise ExcludedAddressError(f"{address} is excluded from the distribution")
        if amount < 0:
            raise ValueError(f"Cannot credit a negative amount to {address}: {amount}")
        if amount == 0:
            return self.get(address)

        with self._lock:
            entry = self._entries.get(address)
            if entry is None:
                entry = ResolvedBalance(address=address)
                self._entries[address] = entry
            entry.amount += amount
            if source not in entry.sources:
                entry.sources.append(source)
            return entry

    def remove(self, address: str) -> Optional[ResolvedBalance]:
        with self._lock:
            return self._entries.pop(normalize_address(address), None)

    def is_excluded(self, address: str) -> bool:
        return normalize_address(address) in self._exclusion_set

    def get(self, address: str) -> Optional[ResolvedBalance]:
        address = normalize_address(address)
        with self._lock:
            return self._entries.get(address)

    def amount_of(self, address: str) -> int:
        entry = self.get(address)
        return entry.amount if entry else 0

    def total(self) -> int:
        with self._lock:
            return sum(e.amount for e in self._entries.values())

    def sorted_entries(self) -> list[ResolvedBalance]:
        """Entries ordered by address, which fixes claim indices across runs"""
        with self._lock:
            return [self._entries[a] for a in sorted(self._entries)]

    def __contains__(self, address: str) -> bool:
        address = normalize_address(address)
        with self._lock:
            return address in self._entries

    def __iter__(self) -> Iterator[ResolvedBalance]:
        return iter(self.sorted_entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
