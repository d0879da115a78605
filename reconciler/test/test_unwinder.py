from typing import Optional

import pytest
from web3.exceptions import ContractLogicError

from reconciler.errors import HolderDiscoveryError
from reconciler.models import (
    ZERO_ADDRESS,
    PoolDescriptor,
    PoolKind,
    PoolVariant,
    Stage,
)
from reconciler.pools import PoolUnwinder
from reconciler.test.conftest import (
    DISTRIBUTOR,
    FACTORY,
    OTHER_TOKEN,
    POSITION_MANAGER,
    TOKEN,
    FakeChain,
    FakeEvent,
    FakeHolderIndex,
    addr,
    transfer_log,
)

POOL = addr(0x9001)
X, Y, Z = addr(0xA), addr(0xB), addr(0xC)


def classic_pool(reserves=(1000, 5000, 0), total_supply=100, token0=TOKEN, token1=OTHER_TOKEN):
    return {
        "token0": token0,
        "token1": token1,
        "getReserves": reserves,
        "totalSupply": total_supply,
    }


def classic(address=POOL) -> PoolDescriptor:
    return PoolDescriptor(address=address, kind=PoolKind.CONSTANT_PRODUCT, variant=PoolVariant.CLASSIC)


def make_unwinder(context, querier, chain, lp_holders=None) -> PoolUnwinder:
    holder_index = FakeHolderIndex(lp_holders if lp_holders is not None else {})
    return PoolUnwinder(chain, context, holder_index, querier)


def test_constant_product_share(context, querier):
    """25 of 100 LP tokens on a 1000 reserve is worth 250"""
    chain = FakeChain(
        contracts={POOL: classic_pool()},
        balances={POOL: {X: 25, Y: 75}},
    )
    context.ledger.credit(POOL, 1000, "direct")
    unwinder = make_unwinder(context, querier, chain, {POOL: [X, Y, POOL]})

    assert unwinder.unwind(classic())

    assert context.ledger.amount_of(X) == 250
    assert context.ledger.amount_of(Y) == 750
    assert POOL not in context.ledger
    assert context.ledger.get(X).sources == ["pool-v2"]
    assert context.ledger.total() == 1000


def test_share_adds_to_direct_balance(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()}, balances={POOL: {X: 25}})
    context.ledger.credit(X, 40, "direct")
    context.ledger.credit(POOL, 1000, "direct")

    make_unwinder(context, querier, chain, {POOL: [X]}).unwind(classic())

    assert context.ledger.amount_of(X) == 290
    assert context.ledger.get(X).sources == ["direct", "pool-v2"]


def test_shares_floor(context, querier):
    chain = FakeChain(
        contracts={POOL: classic_pool(reserves=(1000, 1, 0), total_supply=3)},
        balances={POOL: {X: 1, Y: 2}},
    )
    context.ledger.credit(POOL, 1000, "direct")
    make_unwinder(context, querier, chain, {POOL: [X, Y]}).unwind(classic())

    assert context.ledger.amount_of(X) == 333
    assert context.ledger.amount_of(Y) == 666
    # one unit of dust is lost to floor division
    assert context.ledger.total() == 999


def test_tracked_token1_uses_reserve1(context, querier):
    pool = {
        "token0": OTHER_TOKEN,
        "token1": TOKEN,
        "reserve0": 7,
        "reserve1": 400,
        "totalSupply": 10,
    }
    chain = FakeChain(contracts={POOL: pool}, balances={POOL: {X: 5}})
    descriptor = PoolDescriptor(address=POOL, kind=PoolKind.CONSTANT_PRODUCT, variant=PoolVariant.STABLE)

    make_unwinder(context, querier, chain, {POOL: [X]}).unwind(descriptor)

    assert context.ledger.amount_of(X) == 200
    assert descriptor.token1 == TOKEN
    assert descriptor.total_lp_supply == 10


def test_no_lp_holders_restores_pool(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()})
    context.ledger.credit(POOL, 1000, "direct")

    assert not make_unwinder(context, querier, chain, {POOL: []}).unwind(classic())
    assert context.ledger.amount_of(POOL) == 1000
    assert context.ledger.get(POOL).sources == ["direct"]


@pytest.mark.parametrize(
    "pool",
    [
        classic_pool(total_supply=0),
        classic_pool(token0=OTHER_TOKEN, token1=addr(0x123)),
    ],
)
def test_unusable_pool_stays_direct(context, querier, pool):
    chain = FakeChain(contracts={POOL: pool}, balances={POOL: {X: 25}})
    context.ledger.credit(POOL, 1000, "direct")

    assert not make_unwinder(context, querier, chain, {POOL: [X]}).unwind(classic())
    assert context.ledger.amount_of(POOL) == 1000
    assert X not in context.ledger


def test_unwind_is_idempotent(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()}, balances={POOL: {X: 25, Y: 75}})
    context.ledger.credit(POOL, 1000, "direct")
    unwinder = make_unwinder(context, querier, chain, {POOL: [X, Y]})

    assert unwinder.unwind(classic())
    assert not unwinder.unwind(classic())
    assert context.ledger.amount_of(X) == 250
    assert context.ledger.total() == 1000


def test_excluded_lp_holder_is_not_credited(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()}, balances={POOL: {X: 25, DISTRIBUTOR: 75}})
    context.ledger.credit(POOL, 1000, "direct")

    make_unwinder(context, querier, chain, {POOL: [X, DISTRIBUTOR]}).unwind(classic())

    assert context.ledger.amount_of(X) == 250
    assert DISTRIBUTOR not in context.ledger


def test_failed_lp_balance_is_skipped(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()}, balances={POOL: {X: 25, Y: None}})
    context.ledger.credit(POOL, 1000, "direct")

    make_unwinder(context, querier, chain, {POOL: [X, Y]}).unwind(classic())

    assert context.ledger.amount_of(X) == 250
    assert Y not in context.ledger
    assert [s.target for s in context.report.by_stage(Stage.LP_HOLDER)] == [Y]


def test_failed_pool_read_keeps_direct_balance(context, querier):
    pool = {**classic_pool(), "getReserves": ConnectionError("node went away")}
    chain = FakeChain(contracts={POOL: pool})
    context.ledger.credit(POOL, 1000, "direct")

    assert not make_unwinder(context, querier, chain, {POOL: [X]}).unwind(classic())
    assert context.ledger.amount_of(POOL) == 1000
    assert context.report.by_stage(Stage.UNWIND)[0].target == POOL


def test_lp_holder_discovery_failure_is_fatal(context, querier):
    chain = FakeChain(contracts={POOL: classic_pool()})
    context.ledger.credit(POOL, 1000, "direct")

    with pytest.raises(HolderDiscoveryError):
        make_unwinder(context, querier, chain, {}).unwind(classic())


def test_eoa_is_not_unwound(context, querier):
    descriptor = PoolDescriptor(address=X, kind=PoolKind.EOA)
    assert not make_unwinder(context, querier, FakeChain()).unwind(descriptor)


# --- concentrated liquidity ---------------------------------------------------

BLOCK = 999_000


def position(token0=TOKEN, token1=OTHER_TOKEN, fee=3000, liquidity=400, owed0=5, owed1=0):
    return (0, ZERO_ADDRESS, token0, token1, fee, -600, 600, liquidity, 0, 0, owed0, owed1)


def revert(*args):
    raise ContractLogicError("execution reverted: Invalid token ID")


@pytest.fixture
def flat_liquidity(monkeypatch):
    """liquidity maps 1:1 onto token0 so position amounts are easy to follow"""
    monkeypatch.setattr(
        "reconciler.pools.unwinder.amounts_for_liquidity",
        lambda liquidity, price, lower, upper: (liquidity, 0),
    )


def concentrated_chain(
    positions: dict,
    owners: dict,
    owned: Optional[dict] = None,
    window: Optional[list[int]] = None,
) -> FakeChain:
    """`window` lists the token ids transferred in the lookback window, every position plus burned 99 by default"""
    owned = owned or {}
    window = sorted({*positions, 99}) if window is None else window

    def positions_fn(token_id):
        if token_id not in positions:
            revert()
        return positions[token_id]

    logs = [transfer_log(BLOCK, ZERO_ADDRESS, owners.get(t, X), tokenId=t) for t in window]
    return FakeChain(
        contracts={
            POOL: {"token0": TOKEN, "token1": OTHER_TOKEN, "fee": 3000, "slot0": (2**96, 0)},
            POSITION_MANAGER: {
                "positions": positions_fn,
                "ownerOf": lambda token_id: owners[token_id],
                "factory": FACTORY,
                "WETH9": OTHER_TOKEN,
                "balanceOf": lambda holder: len(owned.get(holder, [])),
                "tokenOfOwnerByIndex": lambda holder, i: owned[holder][i],
            },
            FACTORY: {"getPool": lambda t0, t1, fee: POOL},
        },
        events={(POSITION_MANAGER, "Transfer"): FakeEvent(logs=logs)},
    )


def concentrated() -> PoolDescriptor:
    return PoolDescriptor(address=POOL, kind=PoolKind.CONCENTRATED)


def manager() -> PoolDescriptor:
    return PoolDescriptor(address=POSITION_MANAGER, kind=PoolKind.POSITION_MANAGER)


def test_concentrated_positions(context, querier, flat_liquidity):
    chain = concentrated_chain(
        positions={
            1: position(),
            2: position(fee=500),
            3: position(liquidity=0),
            4: position(liquidity=100, owed0=0),
        },
        owners={1: X, 2: Y, 3: Y, 4: Z},
    )
    context.ledger.credit(POOL, 505, "direct")

    assert make_unwinder(context, querier, chain).unwind(concentrated())

    # position 1 carries its uncollected fees, 2 is another pool, 3 is empty, 99 is burned
    assert context.ledger.amount_of(X) == 405
    assert context.ledger.amount_of(Z) == 100
    assert Y not in context.ledger
    assert POOL not in context.ledger
    assert context.ledger.get(X).sources == ["pool-v3"]
    assert context.credited_positions[POOL] == 2
    assert context.report.by_stage(Stage.POSITION) == []


def test_concentrated_tracked_token1(context, querier, monkeypatch):
    monkeypatch.setattr(
        "reconciler.pools.unwinder.amounts_for_liquidity",
        lambda liquidity, price, lower, upper: (1, liquidity),
    )
    chain = concentrated_chain(positions={1: position(owed0=5, owed1=7)}, owners={1: X})
    chain.contracts[POOL].update({"token0": OTHER_TOKEN, "token1": TOKEN})
    chain.contracts[POSITION_MANAGER]["positions"] = lambda token_id: position(
        token0=OTHER_TOKEN, token1=TOKEN, owed0=5, owed1=7
    )

    make_unwinder(context, querier, chain).unwind(concentrated())

    assert context.ledger.amount_of(X) == 407


def test_position_manager_then_pool_does_not_double_count(context, querier, flat_liquidity):
    chain = concentrated_chain(positions={1: position()}, owners={1: X}, owned={X: [1]})
    context.ledger.credit(POOL, 405, "direct")
    unwinder = make_unwinder(context, querier, chain)

    assert unwinder.unwind(manager())
    assert context.ledger.amount_of(X) == 405

    # the pool finds the same position already credited and only drops its own balance
    assert not unwinder.unwind(concentrated())
    assert context.ledger.amount_of(X) == 405
    assert POOL not in context.ledger
    assert context.ledger.total() == 405


def test_pool_then_position_manager_does_not_double_count(context, querier, flat_liquidity):
    chain = concentrated_chain(positions={1: position()}, owners={1: X}, owned={X: [1]})
    context.ledger.credit(POOL, 405, "direct")
    unwinder = make_unwinder(context, querier, chain)

    assert unwinder.unwind(concentrated())
    assert not unwinder.unwind(manager())
    assert context.ledger.total() == 405


def test_position_outside_pool_window_found_by_manager(context, querier, flat_liquidity):
    # position 1 was minted before the window, only a since-burned token moved to X inside it
    chain = concentrated_chain(
        positions={1: position()}, owners={1: X, 99: X}, owned={X: [1]}, window=[99]
    )
    context.ledger.credit(POOL, 405, "direct")
    unwinder = make_unwinder(context, querier, chain)

    assert not unwinder.unwind(concentrated())
    assert context.ledger.amount_of(POOL) == 405

    # the manager reaches the older position, the restored pool balance gives way to it
    assert unwinder.unwind(manager())
    assert context.ledger.amount_of(X) == 405
    assert POOL not in context.ledger
    assert context.ledger.total() == 405


def test_position_read_failure_is_reported(context, querier, flat_liquidity):
    chain = concentrated_chain(positions={1: position()}, owners={1: X})
    chain.contracts[POSITION_MANAGER]["ownerOf"] = ConnectionError("timeout")
    context.ledger.credit(POOL, 405, "direct")

    assert not make_unwinder(context, querier, chain).unwind(concentrated())

    assert context.report.by_stage(Stage.POSITION)[0].target == "1"
    # nothing could be credited so the pool keeps its balance
    assert context.ledger.amount_of(POOL) == 405
