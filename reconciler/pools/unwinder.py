import logging
from typing import Any, Callable, Optional

from web3.exceptions import ContractLogicError

from reconciler.context import RunContext
from reconciler.errors import HolderDiscoveryError
from reconciler.models import (
    ZERO_ADDRESS,
    EthereumAddress,
    PoolDescriptor,
    PoolKind,
    PoolVariant,
    Source,
    Stage,
    normalize_address,
)
from reconciler.pools.liquidity import amounts_for_liquidity
from reconciler.queries.abis import (
    CLASSIC_POOL_ABI,
    CONCENTRATED_POOL_ABI,
    FACTORY_ABI,
    POSITION_MANAGER_ABI,
    STABLE_POOL_ABI,
)
from reconciler.utils import format_units

logger = logging.getLogger(__name__)

# a list of (provider, amount of tracked token) or None when the pool cannot be unwound
Shares = Optional[list[tuple[EthereumAddress, int]]]

# indices into the `positions(uint256)` return tuple
POS_TOKEN0, POS_TOKEN1, POS_FEE = 2, 3, 4
POS_TICK_LOWER, POS_TICK_UPPER, POS_LIQUIDITY = 5, 6, 7
POS_OWED0, POS_OWED1 = 10, 11


class PoolUnwinder:
    """
    Replaces a pool's own balance of the tracked token with the shares of whoever provided it.

    Each strategy only reads: it returns the list of shares without touching the ledger.
    `_apply` then removes the pool's direct credit and credits every share in one step,
    so the ledger is never seen with the pool half unwound.
    """

    def __init__(self, chain, context: RunContext, holder_index, querier):
        self.chain = chain
        self.context = context
        self.holder_index = holder_index
        self.querier = querier
        self._pool_prices: dict[tuple, tuple[EthereumAddress, int]] = {}
        self._strategies: dict[PoolKind, Callable[[PoolDescriptor], Shares]] = {
            PoolKind.CONSTANT_PRODUCT: self.constant_product_shares,
            PoolKind.CONCENTRATED: self.concentrated_pool_shares,
            PoolKind.POSITION_MANAGER: self.position_manager_shares,
        }

    @property
    def tracked(self) -> EthereumAddress:
        return self.context.config.token

    @property
    def ledger(self):
        return self.context.ledger

    def _fmt(self, amount: int) -> str:
        return format_units(amount, self.context.config.decimals)

    def unwind(self, descriptor: PoolDescriptor) -> bool:
        """
        Unwind a classified pool at most once per run.
        Returns True if the ledger was changed in favour of liquidity providers.
        """
        strategy = self._strategies.get(descriptor.kind)
        if strategy is None:
            return False
        if not self.context.claim_pool(descriptor.address):
            logger.debug(f"{descriptor.address} already unwound")
            return False

        logger.info(f"Unwrapping {descriptor.kind.value} pool {descriptor.address}")
        credited_pools = self._credited_pools()
        try:
            shares = strategy(descriptor)
        except HolderDiscoveryError:
            raise
        except Exception as e:
            logger.warning(
                f"Could not read pool state of {descriptor.address}, "
                f"keeping it as a direct holder: {e}"
            )
            self.context.report.skip(Stage.UNWIND, descriptor.address, e)
            return False

        if shares is None:
            return False

        if descriptor.kind == PoolKind.POSITION_MANAGER:
            # positions hold their tokens in the pools, not in the manager
            self._release_pools(self._credited_pools() - credited_pools)
            return self._credit(shares, "pool-v3")

        source: Source = "pool-v2" if descriptor.kind == PoolKind.CONSTANT_PRODUCT else "pool-v3"
        return self._apply(descriptor, shares, source)

    def _credited_pools(self) -> set[EthereumAddress]:
        return {p for p, n in self.context.credited_positions.items() if n > 0}

    def _release_pools(self, pools: set[EthereumAddress]) -> None:
        """
        Pools whose first positions were just credited through the manager give up
        their direct balance, whether or not they were unwound already.
        """
        for pool in sorted(pools):
            removed = self.ledger.remove(pool)
            if removed is not None:
                logger.info(f"Removing direct balance of {pool}: {self._fmt(removed.amount)}")

    def _credit(self, shares: list[tuple[EthereumAddress, int]], source: Source) -> bool:
        for provider, amount in shares:
            self.ledger.credit(provider, amount, source)
        return bool(shares)

    def _apply(
        self, descriptor: PoolDescriptor, shares: list[tuple[EthereumAddress, int]], source: Source
    ) -> bool:
        pool = descriptor.address
        removed = self.ledger.remove(pool)
        if removed is not None:
            logger.info(f"Removing pool's direct balance: {self._fmt(removed.amount)}")

        if not shares:
            if self.context.credited_positions.get(pool, 0) > 0:
                logger.info(f"Positions of {pool} were already credited through the manager")
                return False
            logger.warning(
                f"No liquidity providers found for {pool}, restoring pool as direct holder"
            )
            if removed is not None:
                self.ledger.credit(pool, removed.amount, "direct")
            return False

        self._credit(shares, source)
        logger.info(
            f"Credited {self._fmt(sum(a for _, a in shares))} to {len(shares)} providers of {pool}"
        )
        return True

    # --- constant product ------------------------------------------------------

    def constant_product_shares(self, descriptor: PoolDescriptor) -> Shares:
        """share = floor(lpBalance * trackedReserve / totalLPSupply) for every LP holder"""
        pool = descriptor.address
        stable = descriptor.variant == PoolVariant.STABLE
        abi = STABLE_POOL_ABI if stable else CLASSIC_POOL_ABI

        token0 = self.chain.call(pool, abi, "token0")
        token1 = self.chain.call(pool, abi, "token1")
        if stable:
            reserve0 = self.chain.call(pool, abi, "reserve0")
            reserve1 = self.chain.call(pool, abi, "reserve1")
        else:
            reserve0, reserve1, _ = self.chain.call(pool, abi, "getReserves")
        total_lp = self.chain.call(pool, abi, "totalSupply")

        descriptor.token0, descriptor.token1 = token0, token1
        descriptor.total_lp_supply = total_lp

        if token0 == self.tracked:
            reserve = reserve0
        elif token1 == self.tracked:
            reserve = reserve1
        else:
            logger.warning(f"{pool} does not pair the tracked token, keeping it as a direct holder")
            return None

        if total_lp == 0:
            logger.warning(f"{pool} has zero total supply")
            return None

        logger.info(
            f"Tracked reserve: {self._fmt(reserve)} | "
            f"LP total supply: {format_units(total_lp, 18)}"
        )

        lp_holders = [
            h
            for h in self.holder_index.holders(pool)
            if h != pool and not self.ledger.is_excluded(h)
        ]
        lp_balances = self.chain.balances_of(pool, lp_holders)

        shares = []
        for holder in lp_holders:
            lp_balance = lp_balances.get(holder)
            if lp_balance is None:
                self.context.report.skip(
                    Stage.LP_HOLDER, holder, f"LP balance read failed on {pool}"
                )
                continue
            share = (lp_balance * reserve) // total_lp
            if share > 0:
                shares.append((holder, share))
        return shares

    # --- concentrated liquidity ------------------------------------------------

    def _position_events(self, manager: EthereumAddress) -> list[Any]:
        """Position NFT transfers over the lookback window only, not full history"""
        config = self.context.config
        event = self.chain.event(manager, POSITION_MANAGER_ABI, "Transfer")
        return self.querier.query_events(event, config.lookback_start, config.block_snapshot)

    def _tracked_amount(self, position: tuple, sqrt_price_x96: int) -> int:
        amount0, amount1 = amounts_for_liquidity(
            position[POS_LIQUIDITY],
            sqrt_price_x96,
            position[POS_TICK_LOWER],
            position[POS_TICK_UPPER],
        )
        if position[POS_TOKEN0] == self.tracked:
            return amount0 + position[POS_OWED0]
        return amount1 + position[POS_OWED1]

    def _holds_tracked(self, position: tuple) -> bool:
        tokens = (position[POS_TOKEN0], position[POS_TOKEN1])
        return self.tracked in tokens and position[POS_LIQUIDITY] > 0

    def concentrated_pool_shares(self, descriptor: PoolDescriptor) -> Shares:
        pool = descriptor.address
        manager = self.context.config.position_manager

        token0 = self.chain.call(pool, CONCENTRATED_POOL_ABI, "token0")
        token1 = self.chain.call(pool, CONCENTRATED_POOL_ABI, "token1")
        fee = self.chain.call(pool, CONCENTRATED_POOL_ABI, "fee")
        sqrt_price_x96 = self.chain.call(pool, CONCENTRATED_POOL_ABI, "slot0")[0]
        descriptor.token0, descriptor.token1, descriptor.fee = token0, token1, fee

        if self.tracked not in (token0, token1):
            logger.warning(f"{pool} does not pair the tracked token, keeping it as a direct holder")
            return None

        token_ids = sorted({int(log["args"]["tokenId"]) for log in self._position_events(manager)})
        logger.info(f"Found {len(token_ids)} position NFTs")

        shares = []
        for token_id in token_ids:
            try:
                position = self.chain.call(manager, POSITION_MANAGER_ABI, "positions", token_id)
            except ContractLogicError:
                # burned positions revert
                continue
            except Exception as e:
                self.context.report.skip(Stage.POSITION, token_id, e)
                continue

            key = (position[POS_TOKEN0], position[POS_TOKEN1], position[POS_FEE])
            if key != (token0, token1, fee):
                continue
            if not self._holds_tracked(position):
                continue

            try:
                owner = self.chain.call(manager, POSITION_MANAGER_ABI, "ownerOf", token_id)
            except Exception as e:
                self.context.report.skip(Stage.POSITION, token_id, e)
                continue

            amount = self._tracked_amount(position, sqrt_price_x96)
            if amount <= 0 or self.ledger.is_excluded(owner):
                continue
            if not self.context.claim_position(token_id):
                continue
            shares.append((owner, amount))
            self.context.note_position_credit(pool)

        logger.info(f"Processed {len(shares)} concentrated positions")
        return shares

    def _pool_price(self, factory: EthereumAddress, position: tuple) -> tuple[EthereumAddress, int]:
        """The pool a position lives in and its current sqrt price, cached per pool key"""
        key = (position[POS_TOKEN0], position[POS_TOKEN1], position[POS_FEE])
        if key not in self._pool_prices:
            pool = self.chain.call(factory, FACTORY_ABI, "getPool", *key)
            sqrt_price_x96 = self.chain.call(pool, CONCENTRATED_POOL_ABI, "slot0")[0]
            self._pool_prices[key] = (normalize_address(pool), sqrt_price_x96)
        return self._pool_prices[key]

    def position_manager_shares(self, descriptor: PoolDescriptor) -> Shares:
        manager = descriptor.address
        logs = self._position_events(manager)
        holders = sorted(
            {
                normalize_address(log["args"]["to"])
                for log in logs
                if normalize_address(log["args"]["to"]) != ZERO_ADDRESS
            }
        )
        logger.info(f"Found {len(holders)} position holders")

        factory = self.chain.call(manager, POSITION_MANAGER_ABI, "factory")

        shares = []
        for holder in holders:
            if self.ledger.is_excluded(holder):
                continue
            try:
                count = self.chain.call(manager, POSITION_MANAGER_ABI, "balanceOf", holder)
            except Exception as e:
                self.context.report.skip(Stage.LP_HOLDER, holder, e)
                continue

            for i in range(count):
                try:
                    token_id = self.chain.call(
                        manager, POSITION_MANAGER_ABI, "tokenOfOwnerByIndex", holder, i
                    )
                    position = self.chain.call(manager, POSITION_MANAGER_ABI, "positions", token_id)
                    if not self._holds_tracked(position):
                        continue
                    pool, sqrt_price_x96 = self._pool_price(factory, position)
                    amount = self._tracked_amount(position, sqrt_price_x96)
                except Exception as e:
                    self.context.report.skip(Stage.POSITION, f"{holder}#{i}", e)
                    continue

                if amount <= 0 or not self.context.claim_position(token_id):
                    continue
                shares.append((holder, amount))
                self.context.note_position_credit(pool)

        logger.info(f"Processed {len(shares)} positions from manager")
        return shares
