import logging

from reconciler.models import (
    BalanceLedger,
    Direction,
    ReconciliationReport,
    Verdict,
)
from reconciler.utils import format_units

logger = logging.getLogger(__name__)


def reconcile(
    ledger: BalanceLedger, on_chain_total_supply: int, decimals: int
) -> ReconciliationReport:
    """
    Compare what the ledger attributes against the token's total supply at the pinned block.

    Anything under one whole token is floor-division dust from pool shares.
    Beyond that the run still completes, but the operator gets the size and the direction:
    a ledger above supply means double counting, below supply means missed pools or holders.
    """
    ledger_sum = ledger.total()
    difference = on_chain_total_supply - ledger_sum

    if difference == 0:
        verdict = Verdict.EXACT
    elif abs(difference) < 10**decimals:
        verdict = Verdict.WITHIN_TOLERANCE
    else:
        verdict = Verdict.DIVERGENT

    if difference > 0:
        direction = Direction.SUPPLY_EXCEEDS_LEDGER
    elif difference < 0:
        direction = Direction.LEDGER_EXCEEDS_SUPPLY
    else:
        direction = Direction.BALANCED

    report = ReconciliationReport(
        onChainTotalSupply=str(on_chain_total_supply),
        ledgerSum=str(ledger_sum),
        difference=str(difference),
        verdict=verdict,
        direction=direction,
    )
    log_report(report, decimals)
    return report


def log_report(report: ReconciliationReport, decimals: int) -> None:
    difference = int(report.difference)
    logger.info(f"On-chain total supply: {format_units(int(report.onChainTotalSupply), decimals)}")
    logger.info(f"Calculated total supply: {format_units(int(report.ledgerSum), decimals)}")

    if report.verdict == Verdict.EXACT:
        logger.info("Reconciliation successful: 100% match with on-chain supply")
    elif report.verdict == Verdict.WITHIN_TOLERANCE:
        logger.info(
            f"Reconciliation successful: {format_units(abs(difference), decimals)} rounding difference"
        )
    elif report.direction == Direction.LEDGER_EXCEEDS_SUPPLY:
        logger.warning(
            f"RECONCILIATION DIVERGENT: calculated supply exceeds on-chain by "
            f"{format_units(-difference, decimals)}. Something was double counted."
        )
    else:
        logger.warning(
            f"RECONCILIATION DIVERGENT: missing {format_units(difference, decimals)} from distribution. "
            "This may be due to undetected pools, contracts or event gaps. Check metadata and skipped items."
        )
