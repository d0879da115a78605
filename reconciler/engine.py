import logging
from typing import Optional

from reconciler.context import RunContext
from reconciler.errors import MissingRewardRateException
from reconciler.models import (
    Config,
    DistributionResult,
    EthereumAddress,
    PoolDescriptor,
    PoolKind,
    Stage,
    Writer,
)
from reconciler.pools import PoolClassifier, PoolUnwinder
from reconciler.reconcile import reconcile
from reconciler.rewards import build_distribution

logger = logging.getLogger(__name__)


def resolve_direct_balances(
    context: RunContext, chain, holders: list[EthereumAddress]
) -> dict[EthereumAddress, int]:
    """
    Read every candidate holder's balance at the pinned block.
    Excluded addresses never reach the ledger, failed reads are skipped individually.
    """
    config = context.config
    candidates = sorted({h for h in holders if not context.ledger.is_excluded(h)})
    balances = chain.balances_of(config.token, candidates)

    resolved = {}
    for holder in candidates:
        balance = balances.get(holder)
        if balance is None:
            context.report.skip(Stage.BALANCE, holder, "balanceOf read failed")
            continue
        if balance > 0:
            resolved[holder] = balance
    logger.info(f"{len(resolved)} of {len(candidates)} candidates hold the token")
    return resolved


def classify_and_credit(
    context: RunContext, classifier: PoolClassifier, balances: dict[EthereumAddress, int]
) -> list[PoolDescriptor]:
    """
    Credit every holder with its own balance and return the pools found among them.
    Pools start out as direct holders so the ledger always adds up to what was read;
    unwinding then swaps their balance for the providers' shares.
    """
    pools = []
    for holder, balance in sorted(balances.items()):
        descriptor = classifier.classify(holder)
        source = "direct-fallback" if descriptor.kind == PoolKind.UNKNOWN else "direct"
        context.ledger.credit(holder, balance, source)
        if descriptor.is_pool:
            pools.append(descriptor)
    return pools


def get_reward_rate(config: Config, chain) -> int:
    if config.reward_rate is not None:
        logger.info(f"Using configured reward rate {config.reward_rate}")
        return int(config.reward_rate)
    try:
        return chain.reward_rate(config.distributor)
    except Exception as e:
        raise MissingRewardRateException(
            f"Could not read the reward rate from {config.distributor}: {e}"
        ) from e


def run_engine(
    config: Config,
    chain,
    holder_index,
    querier,
    context: Optional[RunContext] = None,
    timestamp: Optional[str] = None,
) -> DistributionResult:
    """
    One pass, pinned to `config.block_snapshot`:
    holders -> balances -> classification -> unwinding -> reconciliation -> claims.
    Nothing is written here, so a failure anywhere leaves no artifact behind.
    """
    context = context or RunContext.create(config)
    classifier = PoolClassifier(chain, context)
    unwinder = PoolUnwinder(chain, context, holder_index, querier)

    logger.info(f"Generating distribution for {config.token} at block {config.block_snapshot}")

    holders = holder_index.holders(config.token)
    balances = resolve_direct_balances(context, chain, holders)
    pools = classify_and_credit(context, classifier, balances)

    logger.info(f"Unwinding {len(pools)} pools")
    for descriptor in pools:
        unwinder.unwind(descriptor)

    reconciliation = reconcile(
        context.ledger, chain.total_supply(config.token), config.decimals
    )
    reward_rate = get_reward_rate(config, chain)

    return build_distribution(
        context.ledger,
        reward_rate,
        config.decimals,
        config.block_snapshot,
        reconciliation,
        classifications=context.classifications,
        report=context.report,
        timestamp=timestamp,
    )


def generate(
    config: Config, chain, holder_index, querier, context: Optional[RunContext] = None
) -> str:
    """Runs the engine and persists the artifact, returning its path"""
    result = run_engine(config, chain, holder_index, querier, context=context)
    return Writer(config.output_dir, config.block_snapshot).to_json(result)
