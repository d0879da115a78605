import datetime
import logging
from typing import NamedTuple, Optional

from reconciler.errors import EmptyDistributionError
from reconciler.merkle import MerkleTree, leaf_hash
from reconciler.models import (
    BalanceLedger,
    Claim,
    DistributionResult,
    EthereumAddress,
    PoolDescriptor,
    ProvenanceMetadata,
    ReconciliationReport,
    RunReport,
)
from reconciler.utils import format_units

logger = logging.getLogger(__name__)


class Reward(NamedTuple):
    account: EthereumAddress
    balance: int
    amount: int


def compute_reward(balance: int, reward_rate: int, decimals: int) -> int:
    """
    :param `reward_rate`: reward, in smallest units, per whole token held
    Example: 1000000 with 8 decimals pays 0.01 per token
    """
    return (balance * reward_rate) // (10**decimals)


def compute_rewards(ledger: BalanceLedger, reward_rate: int, decimals: int) -> list[Reward]:
    """
    Rewards for every ledger entry in ascending address order.
    Entries whose reward floors to zero are dropped: they would be leaves nobody can usefully claim.
    """
    rewards = []
    for entry in ledger.sorted_entries():
        if entry.amount <= 0:
            continue
        amount = compute_reward(entry.amount, reward_rate, decimals)
        if amount > 0:
            rewards.append(Reward(entry.address, entry.amount, amount))
    return rewards


def build_claims(rewards: list[Reward]) -> tuple[MerkleTree, list[Claim]]:
    if not rewards:
        raise EmptyDistributionError("No address earns a non-zero reward")

    leaves = [leaf_hash(index, r.account, r.amount) for index, r in enumerate(rewards)]
    tree = MerkleTree(leaves)
    claims = [
        Claim(
            index=index,
            account=r.account,
            amount=str(r.amount),
            proof=tree.get_hex_proof(index),
        )
        for index, r in enumerate(rewards)
    ]
    return tree, claims


def build_metadata(
    ledger: BalanceLedger, classifications: dict[EthereumAddress, PoolDescriptor]
) -> dict[EthereumAddress, ProvenanceMetadata]:
    metadata = {}
    for entry in ledger.sorted_entries():
        descriptor = classifications.get(entry.address)
        metadata[entry.address] = ProvenanceMetadata(
            kind=descriptor.kind.value if descriptor else None,
            sources=list(entry.sources),
            balance=str(entry.amount),
        )
    return metadata


def build_distribution(
    ledger: BalanceLedger,
    reward_rate: int,
    decimals: int,
    block: int,
    reconciliation: ReconciliationReport,
    classifications: Optional[dict[EthereumAddress, PoolDescriptor]] = None,
    report: Optional[RunReport] = None,
    timestamp: Optional[str] = None,
) -> DistributionResult:
    rewards = compute_rewards(ledger, reward_rate, decimals)
    tree, claims = build_claims(rewards)
    total_rewards = sum(r.amount for r in rewards)

    logger.info(f"Merkle Root: {tree.hex_root}")
    logger.info(f"Total Rewards: {format_units(total_rewards, decimals)}")
    logger.info(f"Total Recipients: {len(claims)}")

    return DistributionResult(
        merkleRoot=tree.hex_root,
        totalRewards=str(total_rewards),
        recipientCount=len(claims),
        block=block,
        timestamp=timestamp or datetime.datetime.now(datetime.timezone.utc).isoformat(),
        rewardRate=str(reward_rate),
        claims=claims,
        metadata=build_metadata(ledger, classifications or {}),
        reconciliation=reconciliation,
        skipped=list(report.skipped) if report else [],
    )
