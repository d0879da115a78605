import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional

from reconciler.models import (
    BalanceLedger,
    Config,
    EthereumAddress,
    PoolDescriptor,
    RunReport,
    normalize_address,
)


@dataclass
class RunContext:
    """
    Everything that is mutable for the length of one run, thrown away afterwards.
    The claim_* methods are atomic check-and-set so the unwinders stay idempotent
    even if pools are ever processed from several threads.
    """

    config: Config
    ledger: BalanceLedger
    report: RunReport = field(default_factory=RunReport)
    classifications: dict[EthereumAddress, PoolDescriptor] = field(default_factory=dict)
    processed_pools: set[EthereumAddress] = field(default_factory=set)
    processed_positions: set[int] = field(default_factory=set)
    # positions credited per concentrated pool, through either unwinding path
    credited_positions: dict[EthereumAddress, int] = field(
        default_factory=lambda: defaultdict(int)
    )
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def create(cls, config: Config) -> "RunContext":
        return cls(config=config, ledger=BalanceLedger(config.exclusion_set))

    def claim_pool(self, address: EthereumAddress) -> bool:
        """True the first time a pool is seen, False for every later attempt"""
        address = normalize_address(address)
        with self._lock:
            if address in self.processed_pools:
                return False
            self.processed_pools.add(address)
            return True

    def claim_position(self, token_id: int) -> bool:
        with self._lock:
            if token_id in self.processed_positions:
                return False
            self.processed_positions.add(token_id)
            return True

    def note_position_credit(self, pool: EthereumAddress) -> None:
        with self._lock:
            self.credited_positions[normalize_address(pool)] += 1

    def cached_classification(self, address: EthereumAddress) -> Optional[PoolDescriptor]:
        return self.classifications.get(normalize_address(address))

    def cache_classification(self, descriptor: PoolDescriptor) -> PoolDescriptor:
        with self._lock:
            return self.classifications.setdefault(descriptor.address, descriptor)
