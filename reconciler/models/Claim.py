from typing import Optional

from pydantic import BaseModel

from reconciler.models.Reconciliation import ReconciliationReport
from reconciler.models.Report import Skipped
from reconciler.models.types import BigNumber, EthereumAddress, HexBytes32


class Claim(BaseModel):
    """
    One leaf of the tree.
    :param `index`: sequential from 0 in ascending address order.
    Used by the distributor to mark the claim as spent.
    :param `proof`: sibling hashes from leaf to root, for sorted-pair verification
    """

    index: int
    account: EthereumAddress
    amount: BigNumber
    proof: list[HexBytes32] = []


class ProvenanceMetadata(BaseModel):
    kind: Optional[str] = None
    sources: list[str]
    balance: BigNumber


class DistributionResult(BaseModel):
    """
    The only artifact a run persists. It is the handoff to the root submission
    and to anything reporting distribution status.
    """

    merkleRoot: HexBytes32
    totalRewards: BigNumber
    recipientCount: int
    block: int
    timestamp: str
    rewardRate: BigNumber
    claims: list[Claim]
    metadata: dict[EthereumAddress, ProvenanceMetadata]
    reconciliation: ReconciliationReport
    skipped: list[Skipped] = []
