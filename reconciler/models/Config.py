from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, field_validator, model_validator

from reconciler.errors import BadConfigException
from reconciler.models.types import (
    BURN_ADDRESS,
    ZERO_ADDRESS,
    BigNumber,
    EthereumAddress,
    normalize_address,
)

HolderSource = Literal["covalent", "moralis", "blockscout", "transfer_logs"]

# Base produces a block roughly every 2 seconds
BLOCKS_PER_DAY = 43_200


class Config(BaseModel):
    """
    Everything a single run needs, pinned to one block.
    :param `block_snapshot`: all balances, reserves and positions are read at this height
    :param `token`: the tracked reward-bearing token
    :param `distributor`: the distribution contract exposing `getCurrentDistributionInfo`
    :param `position_manager`: canonical concentrated-liquidity position manager
    :param `reward_rate`: optional override for the on-chain reward per whole token
    :param `lookback_blocks`: window scanned backwards for position NFT transfers
    :param `holder_sources`: holder indexes tried in order, the first success wins
    :param `token_deploy_block`: start block for transfer-log holder discovery
    """

    chain: str = "base-mainnet"
    chain_id: int = 8453
    block_snapshot: int
    token: EthereumAddress
    decimals: int
    distributor: EthereumAddress
    position_manager: EthereumAddress
    excluded: list[EthereumAddress] = []
    reward_rate: Optional[BigNumber] = None

    lookback_blocks: int = BLOCKS_PER_DAY * 7
    max_chunk_size: int = 1000
    backoff_seconds: float = 2.0
    max_retries: Optional[int] = None
    call_retries: int = 3

    holder_sources: list[HolderSource] = ["covalent", "moralis", "blockscout"]
    token_deploy_block: Optional[int] = None
    blockscout_url: str = "https://api.basescan.org/api"

    output_dir: str = "reports"

    @field_validator("token", "distributor", "position_manager")
    @classmethod
    def lower_address(cls, addr: str) -> EthereumAddress:
        return normalize_address(addr)

    @field_validator("excluded")
    @classmethod
    def lower_addresses(cls, addrs: list[str]) -> list[EthereumAddress]:
        return [normalize_address(a) for a in addrs]

    @field_validator("reward_rate", mode="before")
    @classmethod
    def rate_to_string(cls, rate):
        # JSON configs may give the rate as a plain number
        if isinstance(rate, int) and not isinstance(rate, bool):
            return str(rate)
        return rate

    @field_validator("reward_rate")
    @classmethod
    def integer_rate(cls, rate: Optional[str]) -> Optional[str]:
        if rate is not None and (not str(rate).isdigit()):
            raise ValueError(f"reward_rate must be an integer string, got {rate}")
        return rate

    @model_validator(mode="after")
    def check_sources(self) -> Config:
        if not self.holder_sources:
            raise BadConfigException("At least one holder source is required")
        if "transfer_logs" in self.holder_sources and self.token_deploy_block is None:
            raise BadConfigException(
                "transfer_logs holder discovery needs `token_deploy_block` to scan full history"
            )
        if self.decimals < 0 or self.block_snapshot <= 0:
            raise BadConfigException("decimals and block_snapshot must be positive")
        return self

    @property
    def exclusion_set(self) -> frozenset[EthereumAddress]:
        return frozenset(
            [ZERO_ADDRESS, BURN_ADDRESS, self.token, self.distributor, *self.excluded]
        )

    @property
    def lookback_start(self) -> int:
        return max(0, self.block_snapshot - self.lookback_blocks)
