import logging
from typing import Any, Callable, Optional

import requests

from reconciler.env import API_KEYS
from reconciler.errors import EmptyQueryError, HolderDiscoveryError, TooManyLoopsError
from reconciler.models import ZERO_ADDRESS, Config, EthereumAddress, normalize_address
from reconciler.queries.abis import ERC20_ABI
from reconciler.queries.common import iterate_pages

logger = logging.getLogger(__name__)

"""
The holder index only seeds the universe of candidate addresses.
Every balance that ends up in the ledger is read on-chain at the pinned block,
so a stale index can only add or miss addresses, never change an amount.

Covalent is asked for the pinned block height directly. The other indexes are "current"
snapshots: an address that sold out after the pinned block is still found through its
non-zero balance on the index only if it holds today, which is why the reconciliation
against total supply runs on every distribution.
"""

COVALENT_URL = "https://api.covalenthq.com/v1/{chain}/tokens/{token}/token_holders_v2/"
MORALIS_URL = "https://deep-index.moralis.io/api/v2.2/erc20/{token}/owners"
PAGE_SIZE = 1000
REQUEST_TIMEOUT = 60

Holders = list[EthereumAddress]


def _positive(balance: Any) -> bool:
    try:
        return int(balance) > 0
    except (TypeError, ValueError):
        return False


def _addresses(items: list[dict[str, Any]], address_key: str, balance_key: str) -> Holders:
    holders = set()
    for item in items:
        addr = item.get(address_key)
        if not addr or not _positive(item.get(balance_key)):
            continue
        try:
            holders.add(normalize_address(addr))
        except ValueError:
            logger.warning(f"Ignoring malformed holder address {addr}")
    return sorted(holders)


class HolderIndex:
    """
    Bulk holder discovery over an ordered chain of sources. The first source that answers wins.
    If every source fails the run cannot know its universe, so it stops.
    """

    def __init__(self, config: Config, chain=None, querier=None, session=requests):
        self.config = config
        self.chain = chain
        self.querier = querier
        self.session = session
        self._fetchers: dict[str, Callable[[EthereumAddress], Optional[Holders]]] = {
            "covalent": self.from_covalent,
            "moralis": self.from_moralis,
            "blockscout": self.from_blockscout,
            "transfer_logs": self.from_transfer_logs,
        }

    def holders(self, token: EthereumAddress) -> Holders:
        token = normalize_address(token)
        for source in self.config.holder_sources:
            try:
                result = self._fetchers[source](token)
            except (
                requests.RequestException,
                EmptyQueryError,
                TooManyLoopsError,
                KeyError,
                ValueError,
            ) as e:
                logger.warning(f"{source} holder fetch failed for {token}: {e}")
                continue
            if result is None:
                continue
            logger.info(f"Fetched {len(result)} holders of {token} from {source}")
            return result

        raise HolderDiscoveryError(
            f"Failed to fetch holders of {token} from {', '.join(self.config.holder_sources)}"
        )

    def _get(self, url: str, **kwargs) -> dict[str, Any]:
        response = self.session.get(url, timeout=REQUEST_TIMEOUT, **kwargs)
        response.raise_for_status()
        return response.json()

    def from_covalent(self, token: EthereumAddress) -> Optional[Holders]:
        api_key = API_KEYS.covalent()
        if not api_key:
            logger.warning("Covalent API key not found")
            return None

        url = COVALENT_URL.format(chain=self.config.chain, token=token)

        def fetch_page(page: int) -> dict[str, Any]:
            data = self._get(
                url,
                params={
                    "key": api_key,
                    "page-size": PAGE_SIZE,
                    "page-number": page,
                    "block-height": self.config.block_snapshot,
                },
            )
            if data.get("error") or data.get("error_code"):
                raise EmptyQueryError(f"Covalent error: {data.get('error_message')}")
            return data

        def next_page(data: dict[str, Any], page: int) -> Optional[int]:
            pagination = data["data"].get("pagination") or {}
            return page + 1 if pagination.get("has_more") else None

        items = iterate_pages(fetch_page, ["data", "items"], next_page, first_cursor=0)
        return _addresses(items, "address", "balance")

    def from_moralis(self, token: EthereumAddress) -> Optional[Holders]:
        api_key = API_KEYS.moralis()
        if not api_key:
            logger.warning("Moralis API key not found")
            return None

        url = MORALIS_URL.format(token=token)

        def fetch_page(cursor: str) -> dict[str, Any]:
            params: dict[str, Any] = {"chain": hex(self.config.chain_id), "limit": 100}
            if cursor:
                params["cursor"] = cursor
            return self._get(url, params=params, headers={"X-API-Key": api_key})

        def next_page(data: dict[str, Any], _cursor: str) -> Optional[str]:
            return data.get("cursor") or None

        items = iterate_pages(fetch_page, ["result"], next_page, first_cursor="")
        return _addresses(items, "owner_address", "balance")

    def from_blockscout(self, token: EthereumAddress) -> Optional[Holders]:
        api_key = API_KEYS.blockscout() or ""

        def fetch_page(page: int) -> dict[str, Any]:
            data = self._get(
                self.config.blockscout_url,
                params={
                    "module": "token",
                    "action": "tokenholderlist",
                    "contractaddress": token,
                    "page": page,
                    "offset": PAGE_SIZE,
                    "apikey": api_key,
                },
            )
            if data.get("status") != "1":
                # an empty page past the end is reported as an error by etherscan-style APIs
                if page > 1 and not data.get("result"):
                    return {"result": []}
                raise EmptyQueryError(f"Blockscout error: {data.get('message')}")
            return data

        def next_page(data: dict[str, Any], page: int) -> Optional[int]:
            return page + 1 if len(data["result"]) >= PAGE_SIZE else None

        items = iterate_pages(fetch_page, ["result"], next_page, first_cursor=1)
        return _addresses(items, "TokenHolderAddress", "TokenHolderQuantity")

    def from_transfer_logs(self, token: EthereumAddress) -> Optional[Holders]:
        """
        Every address that ever sent or received the token since deployment.
        Any skipped block range makes the universe incomplete, so that counts as a failure.
        """
        if self.chain is None or self.querier is None or self.config.token_deploy_block is None:
            return None

        gaps_before = len(self.querier.gaps)
        event = self.chain.event(token, ERC20_ABI, "Transfer")
        logs = self.querier.query_events(
            event, self.config.token_deploy_block, self.config.block_snapshot
        )
        if len(self.querier.gaps) > gaps_before:
            raise EmptyQueryError("Transfer log scan has gaps, holder set would be incomplete")

        holders = set()
        for log in logs:
            for key in ("from", "to"):
                addr = normalize_address(log["args"][key])
                if addr != ZERO_ADDRESS:
                    holders.add(addr)
        return sorted(holders)
