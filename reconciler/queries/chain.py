import logging
from typing import Any, Iterable, Optional

from eth_utils import to_checksum_address
from multicall import Call, Multicall  # type: ignore
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed
from tenacity.before_sleep import before_sleep_log
from web3 import Web3

from reconciler.models import EthereumAddress, normalize_address
from reconciler.queries.abis import DISTRIBUTOR_ABI, ERC20_ABI
from reconciler.queries.common import is_transient

logger = logging.getLogger(__name__)

MULTICALL_BATCH = 500


class ChainReader:
    """
    Read-only access to the chain, every call pinned to `block`.
    Single calls are retried on transport errors; reverts surface unchanged
    so the classifier can treat them as a failed probe.
    """

    def __init__(self, w3: Web3, block: int, retries: int = 3, wait_seconds: float = 2.0):
        self.w3 = w3
        self.block = block
        self._retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(retries),
            wait=wait_fixed(wait_seconds),
            retry=retry_if_exception(is_transient),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    def _contract(self, address: EthereumAddress, abi: list[dict]):
        return self.w3.eth.contract(address=to_checksum_address(address), abi=abi)

    def code_at(self, address: EthereumAddress) -> bytes:
        return self._retrying(
            self.w3.eth.get_code, to_checksum_address(address), block_identifier=self.block
        )

    def call(self, address: EthereumAddress, abi: list[dict], fn: str, *args: Any) -> Any:
        args = tuple(to_checksum_address(a) if _looks_like_address(a) else a for a in args)
        function = self._contract(address, abi).functions[fn](*args)
        result = self._retrying(function.call, block_identifier=self.block)
        return _lower_addresses(result)

    def event(self, address: EthereumAddress, abi: list[dict], name: str):
        """Returns the web3 event class used by the querier to fetch logs"""
        return getattr(self._contract(address, abi).events, name)

    def balances_of(
        self, token: EthereumAddress, holders: Iterable[EthereumAddress]
    ) -> dict[EthereumAddress, Optional[int]]:
        """
        Multicall out to `balanceOf` for each holder at the pinned block.
        A failed read comes back as None so the caller can skip that holder alone.
        """
        holders = list(holders)
        results: dict[EthereumAddress, Optional[int]] = {}
        for i in range(0, len(holders), MULTICALL_BATCH):
            batch = holders[i : i + MULTICALL_BATCH]
            calls = [
                Call(
                    # address to call:
                    to_checksum_address(token),
                    # signature + return value, with argument:
                    ["balanceOf(address)(uint256)", to_checksum_address(h)],
                    # return in a format of {[address]: uint}:
                    [[normalize_address(h), None]],
                )
                for h in batch
            ]
            multi = Multicall(calls, _w3=self.w3, block_id=self.block, require_success=False)
            results.update(self._retrying(multi))
        return results

    def total_supply(self, token: EthereumAddress) -> int:
        return self.call(token, ERC20_ABI, "totalSupply")

    def reward_rate(self, distributor: EthereumAddress) -> int:
        """Reward per whole token, the second value of `getCurrentDistributionInfo`"""
        _, reward_per_token = self.call(distributor, DISTRIBUTOR_ABI, "getCurrentDistributionInfo")
        return reward_per_token


def _looks_like_address(value: Any) -> bool:
    return isinstance(value, str) and Web3.is_address(value)


def _lower_addresses(value: Any) -> Any:
    """web3 returns checksummed addresses, the ledger keys on lower case"""
    if isinstance(value, str) and Web3.is_address(value):
        return value.lower()
    if isinstance(value, list):
        return [_lower_addresses(v) for v in value]
    if isinstance(value, tuple):
        return tuple(_lower_addresses(v) for v in value)
    return value
