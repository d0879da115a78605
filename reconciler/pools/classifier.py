import logging
from typing import NamedTuple, Optional

from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from reconciler.context import RunContext
from reconciler.models import (
    EthereumAddress,
    PoolDescriptor,
    PoolKind,
    PoolVariant,
    Stage,
    normalize_address,
)
from reconciler.queries.abis import (
    CLASSIC_POOL_ABI,
    CONCENTRATED_POOL_ABI,
    POSITION_MANAGER_ABI,
    STABLE_POOL_ABI,
)

logger = logging.getLogger(__name__)

# what a probe call raises when the contract simply does not have the function
REVERT_ERRORS = (ContractLogicError, BadFunctionCallOutput)


class Probe(NamedTuple):
    kind: PoolKind
    variant: Optional[PoolVariant]
    abi: list[dict]
    functions: tuple[str, ...]


"""
Probes are tried in this order and the first one that answers decides the kind.
A contract answering to several shapes is classified by position in this list, not by
best fit, so the order must not change: a stable pool also answers `token0` like every other
shape, and bytecode alone cannot tell them apart.
"""
PROBES: tuple[Probe, ...] = (
    Probe(
        PoolKind.CONSTANT_PRODUCT, PoolVariant.STABLE, STABLE_POOL_ABI, ("token0", "reserve0")
    ),
    Probe(
        PoolKind.CONSTANT_PRODUCT, PoolVariant.CLASSIC, CLASSIC_POOL_ABI, ("token0", "getReserves")
    ),
    Probe(PoolKind.CONCENTRATED, None, CONCENTRATED_POOL_ABI, ("token0", "token1", "fee")),
    Probe(PoolKind.POSITION_MANAGER, None, POSITION_MANAGER_ABI, ("factory", "WETH9")),
)


class PoolClassifier:
    def __init__(self, chain, context: RunContext):
        self.chain = chain
        self.context = context

    def _answers(self, address: EthereumAddress, probe: Probe) -> bool:
        try:
            for fn in probe.functions:
                self.chain.call(address, probe.abi, fn)
        except REVERT_ERRORS:
            return False
        return True

    def _probe(self, address: EthereumAddress) -> PoolDescriptor:
        code = self.chain.code_at(address)
        if not code or code in (b"", "0x"):
            return PoolDescriptor(address=address, kind=PoolKind.EOA)

        for probe in PROBES:
            if self._answers(address, probe):
                return PoolDescriptor(address=address, kind=probe.kind, variant=probe.variant)

        return PoolDescriptor(address=address, kind=PoolKind.UNKNOWN)

    def classify(self, address: str) -> PoolDescriptor:
        """
        Classify once per run. Reverting probes are expected; any other failure
        (transport, decoding of a broken node response) gives up on the address,
        which is then credited directly as an unknown contract.
        """
        address = normalize_address(address)
        cached = self.context.cached_classification(address)
        if cached is not None:
            return cached

        try:
            descriptor = self._probe(address)
        except Exception as e:
            logger.warning(f"Classification of {address} failed, treating as unknown: {e}")
            self.context.report.skip(Stage.CLASSIFY, address, e)
            descriptor = PoolDescriptor(address=address, kind=PoolKind.UNKNOWN)

        logger.info(f"{address} | Type: {descriptor.kind.value}")
        return self.context.cache_classification(descriptor)
