from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel

from reconciler.models.types import EthereumAddress


class PoolKind(str, Enum):
    """
    :kind EOA: no bytecode at the pinned block
    :kind CONSTANT_PRODUCT: fungible LP token over two reserves (stable or classic)
    :kind CONCENTRATED: range liquidity held as position NFTs
    :kind POSITION_MANAGER: the NFT contract that owns concentrated positions
    :kind UNKNOWN: any other contract, credited directly
    """

    EOA = "eoa"
    CONSTANT_PRODUCT = "constant-product"
    CONCENTRATED = "concentrated"
    POSITION_MANAGER = "position-manager"
    UNKNOWN = "unknown"


class PoolVariant(str, Enum):
    STABLE = "stable"
    CLASSIC = "classic"


class PoolDescriptor(BaseModel):
    """
    Result of classifying one address. Created once per address and cached for the run.
    Token and supply fields are only filled by the unwinder once pool state is read.
    """

    address: EthereumAddress
    kind: PoolKind
    variant: Optional[PoolVariant] = None
    token0: Optional[EthereumAddress] = None
    token1: Optional[EthereumAddress] = None
    fee: Optional[int] = None
    total_lp_supply: Optional[int] = None

    @property
    def is_pool(self) -> bool:
        return self.kind in (
            PoolKind.CONSTANT_PRODUCT,
            PoolKind.CONCENTRATED,
            PoolKind.POSITION_MANAGER,
        )
