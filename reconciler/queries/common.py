from copy import deepcopy
from typing import Any, Callable, Optional, TypeVar

import requests
from web3 import Web3

from reconciler.env import rpc_url
from reconciler.errors import EmptyQueryError, TooManyLoopsError

# python insantiates generics separate to function definition
T = TypeVar("T")

_w3: Optional[Web3] = None


def get_w3() -> Web3:
    """Cached Web3 instance, created on first use so tests never need an RPC_URL"""
    global _w3
    if _w3 is None:
        _w3 = Web3(Web3.HTTPProvider(rpc_url(), request_kwargs={"timeout": 30}))
    return _w3


RANGE_TOO_LARGE_MARKERS = (
    "block range",
    "range too large",
    "query returned more than",
    "exceed maximum block range",
    "response size exceeded",
)
RATE_LIMIT_MARKERS = ("rate limit", "429", "too many requests", "compute units")
TRANSIENT_MARKERS = ("timeout", "timed out", "connection reset", "temporarily unavailable")


def _message(error: BaseException) -> str:
    return str(error).lower()


def is_range_too_large(error: BaseException) -> bool:
    return any(m in _message(error) for m in RANGE_TOO_LARGE_MARKERS)


def is_rate_limited(error: BaseException) -> bool:
    return any(m in _message(error) for m in RATE_LIMIT_MARKERS)


def is_transient(error: BaseException) -> bool:
    """Errors worth retrying a single call for: the provider, not the call, is at fault"""
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        return True
    return is_rate_limited(error) or any(m in _message(error) for m in TRANSIENT_MARKERS)


def extract_nested(res: dict[str, Any], access_path: list[str]) -> Any:
    """
    This function walks through a dictionary until it finds the data you want.

    :param `access_path`: in the format ['first_key', 'nested_key_level0', 'nested_key_level1', ....]
    :param `res`: json response from a holder index
    """
    deepcopy_access_path = deepcopy(access_path)
    current = res
    while len(deepcopy_access_path) > 0:
        current = current[deepcopy_access_path.pop(0)]
    return current


def iterate_pages(
    fetch_page: Callable[[Any], dict[str, Any]],
    access_path: list[str],
    next_cursor: Callable[[dict[str, Any], Any], Any],
    first_cursor: Any = 0,
    max_loops: int = 1000,
) -> list[T]:
    """
    Holder indexes cap the number of results per page.
    This function keeps asking for the next page until the index says there are none left.
    :param `fetch_page`: returns the decoded json for a given cursor
    :param `access_path`: eg ['data', 'items'] - set of keys to reach the page results
    :param `next_cursor`: returns the cursor of the following page, or None when done
    """
    all_results: list[T] = []
    cursor = first_cursor
    loops = 0
    while cursor is not None:
        if loops > max_loops:
            raise TooManyLoopsError("iterate_pages")
        response = fetch_page(cursor)
        if not response:
            raise EmptyQueryError("Empty response from holder index")
        all_results += extract_nested(response, access_path) or []
        cursor = next_cursor(response, cursor)
        loops += 1
    return all_results
