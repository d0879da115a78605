from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Union

import pytest
import requests
from web3.exceptions import ContractLogicError

from reconciler.context import RunContext
from reconciler.errors import HolderDiscoveryError
from reconciler.models import Config
from reconciler.queries import EventQuerier

STUBS = Path(__file__).parent / "stubs"


def addr(n: int) -> str:
    """Deterministic lower case address for tests, eg addr(1) -> 0x000...0001"""
    return "0x" + hex(n)[2:].rjust(40, "0")


TOKEN = addr(0x70C)
DISTRIBUTOR = addr(0xD15)
POSITION_MANAGER = addr(0x9A9)
FACTORY = addr(0xFAC)
OTHER_TOKEN = addr(0x0E7)


@pytest.fixture
def config() -> Config:
    return Config(
        block_snapshot=1_000_000,
        token=TOKEN,
        decimals=8,
        distributor=DISTRIBUTOR,
        position_manager=POSITION_MANAGER,
        reward_rate="1000000",
        holder_sources=["covalent"],
    )


@pytest.fixture
def context(config) -> RunContext:
    return RunContext.create(config)


@pytest.fixture
def no_sleep() -> list[float]:
    """Collects the backoff sleeps instead of waiting"""
    return []


@pytest.fixture
def querier(context, no_sleep) -> EventQuerier:
    return EventQuerier(max_chunk_size=1000, report=context.report, sleep=no_sleep.append)


FunctionStub = Union[Any, Callable[..., Any]]


class FakeChain:
    """
    In-memory chain pinned to one block.
    :param `contracts`: address -> {function name: value, or callable taking the call args}
    Calling a function the contract does not have reverts, like a real probe would.
    """

    def __init__(
        self,
        contracts: Optional[dict[str, dict[str, FunctionStub]]] = None,
        balances: Optional[dict[str, dict[str, Optional[int]]]] = None,
        events: Optional[dict[tuple[str, str], Any]] = None,
        total_supply: int = 0,
        reward_rate: int = 0,
    ):
        self.contracts = contracts or {}
        self.balances = balances or {}
        self.events = events or {}
        self._total_supply = total_supply
        self._reward_rate = reward_rate
        self.calls: list[tuple[str, str]] = []

    def code_at(self, address: str) -> bytes:
        return b"\x60\x80" if address in self.contracts else b""

    def call(self, address: str, abi, fn: str, *args):
        self.calls.append((address, fn))
        functions = self.contracts.get(address, {})
        if fn not in functions:
            raise ContractLogicError("execution reverted")
        value = functions[fn]
        if isinstance(value, BaseException):
            raise value
        return value(*args) if callable(value) else value

    def event(self, address: str, abi, name: str):
        return self.events[(address, name)]

    def balances_of(self, token: str, holders) -> dict[str, Optional[int]]:
        token_balances = self.balances.get(token, {})
        return {h: token_balances.get(h, 0) for h in holders}

    def total_supply(self, token: str) -> int:
        return self._total_supply

    def reward_rate(self, distributor: str) -> int:
        return self._reward_rate


@dataclass
class FakeEvent:
    """
    Stands in for a web3 contract event. `errors` is consumed one per `get_logs` call
    before any logs are served, None entries let the call through.
    """

    logs: list[dict] = field(default_factory=list)
    errors: list[Optional[Exception]] = field(default_factory=list)
    requests: list[tuple[int, int]] = field(default_factory=list)

    def get_logs(self, from_block: int, to_block: int, argument_filters=None) -> list[dict]:
        self.requests.append((from_block, to_block))
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return [l for l in self.logs if from_block <= l["blockNumber"] <= to_block]


def transfer_log(block: int, sender: str, receiver: str, **args) -> dict:
    return {"blockNumber": block, "args": {"from": sender, "to": receiver, **args}}


class FakeHolderIndex:
    """token -> holders; a missing token behaves like every holder source failing"""

    def __init__(self, holders: dict[str, list[str]]):
        self._holders = holders

    def holders(self, token: str) -> list[str]:
        if token not in self._holders:
            raise HolderDiscoveryError(f"Failed to fetch holders of {token}")
        return sorted(self._holders[token])


@dataclass
class MockResponse:
    res: dict[str, Any]
    status_code: int = 200

    def json(self):
        return self.res

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class MockSession:
    """Serves queued responses per url prefix and records every request"""

    def __init__(self, responses: dict[str, list[MockResponse]]):
        self.responses = responses
        self.requests: list[tuple[str, dict]] = []

    def get(self, url: str, timeout=None, params=None, headers=None) -> MockResponse:
        self.requests.append((url, params or {}))
        for prefix, queue in self.responses.items():
            if url.startswith(prefix):
                if not queue:
                    raise requests.ConnectionError(f"no more responses for {url}")
                return queue.pop(0)
        raise requests.ConnectionError(f"unreachable {url}")
