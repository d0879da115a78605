import logging

import fire

from reconciler.config import load_conf
from reconciler.context import RunContext
from reconciler.engine import run_engine
from reconciler.models import Verdict, Writer
from reconciler.queries import ChainReader, EventQuerier, HolderIndex, get_w3
from reconciler.utils import format_units


def run(config_path: str, verbose: bool = False) -> str:
    """
    Generate the distribution for the block pinned in the config and write it to
    `<output_dir>/<block>/distribution.json`.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_conf(config_path)
    context = RunContext.create(config)

    chain = ChainReader(get_w3(), config.block_snapshot, retries=config.call_retries)
    querier = EventQuerier(
        max_chunk_size=config.max_chunk_size,
        backoff_seconds=config.backoff_seconds,
        max_retries=config.max_retries,
        report=context.report,
    )
    holder_index = HolderIndex(config, chain=chain, querier=querier)

    result = run_engine(config, chain, holder_index, querier, context=context)
    path = Writer(config.output_dir, config.block_snapshot).to_json(result)

    reconciliation = result.reconciliation
    if reconciliation.verdict == Verdict.DIVERGENT:
        difference = format_units(int(reconciliation.difference), config.decimals)
        print(f"⚠️  Reconciliation divergent by {difference}")
    else:
        print(f"✅ Reconciliation {reconciliation.verdict.value}")
    print(f"🌳 Merkle root {result.merkleRoot}")
    print(f"💰 {result.totalRewards} reward units to {result.recipientCount} recipients")
    if result.skipped:
        print(f"🙈 {len(result.skipped)} items skipped, see the artifact for details")
    print(f"😃 Wrote {path}")
    return path


if __name__ == "__main__":
    fire.Fire(run)
