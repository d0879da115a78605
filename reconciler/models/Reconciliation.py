from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from reconciler.models.types import BigNumber


class Verdict(str, Enum):
    """
    :verdict EXACT: ledger sum equals the on-chain total supply
    :verdict WITHIN_TOLERANCE: off by less than one whole token, from floor division of pool shares
    :verdict DIVERGENT: a pool was missed, double counted, or an indexing gap lost supply
    """

    EXACT = "exact"
    WITHIN_TOLERANCE = "within-tolerance"
    DIVERGENT = "divergent"


class Direction(str, Enum):
    BALANCED = "balanced"
    # more supply on-chain than we attributed: missed pools or holders
    SUPPLY_EXCEEDS_LEDGER = "supply-exceeds-ledger"
    # we attributed more than exists: something was double counted
    LEDGER_EXCEEDS_SUPPLY = "ledger-exceeds-supply"


class ReconciliationReport(BaseModel):
    onChainTotalSupply: BigNumber
    ledgerSum: BigNumber
    difference: BigNumber
    verdict: Verdict
    direction: Direction

    @property
    def is_divergent(self) -> bool:
        return self.verdict == Verdict.DIVERGENT
