import json
import os

import fire

from reconciler.merkle import MerkleTree, leaf_hash, verify_proof
from reconciler.models import DistributionResult, Writer


def load_result(artifact: str) -> DistributionResult:
    with open(artifact) as j:
        return DistributionResult.model_validate(json.load(j))


def check_claims(result: DistributionResult) -> list[dict]:
    """
    Rebuild every leaf from the artifact and check it against the published root.
    Returns one entry per claim that does not verify.
    """
    failures = []
    for claim in result.claims:
        leaf = leaf_hash(claim.index, claim.account, int(claim.amount))
        if not verify_proof(leaf, claim.proof, result.merkleRoot):
            failures.append(
                {"index": claim.index, "account": claim.account, "amount": claim.amount}
            )
    return failures


def check_totals(result: DistributionResult) -> list[str]:
    problems = []
    total = sum(int(c.amount) for c in result.claims)
    if total != int(result.totalRewards):
        problems.append(f"totalRewards {result.totalRewards} != sum of claims {total}")
    if result.recipientCount != len(result.claims):
        problems.append(f"recipientCount {result.recipientCount} != {len(result.claims)} claims")
    indices = [c.index for c in result.claims]
    if indices != list(range(len(indices))):
        problems.append("claim indices are not sequential from 0")
    accounts = [c.account for c in result.claims]
    if accounts != sorted(accounts):
        problems.append("claims are not sorted by account")
    return problems


def check_root(result: DistributionResult) -> bool:
    leaves = [leaf_hash(c.index, c.account, int(c.amount)) for c in result.claims]
    return MerkleTree(leaves).hex_root == result.merkleRoot


def verify(artifact: str) -> bool:
    result = load_result(artifact)

    print(f"Claims in artifact: {len(result.claims)}")
    failures = check_claims(result)
    print(f"Invalid proofs: {len(failures)}")
    for f in failures:
        print(f)

    problems = check_totals(result)
    for p in problems:
        print(p)

    root_ok = check_root(result)
    if not root_ok:
        print(f"Root mismatch: artifact has {result.merkleRoot}")

    ok = not failures and not problems and root_ok
    print("✅ Distribution verified" if ok else "❌ Distribution failed verification")
    return ok


def to_csv(artifact: str, out: str = "") -> str:
    result = load_result(artifact)
    out = out or os.path.splitext(artifact)[0] + ".csv"
    path = Writer("", result.block).claims_to_csv(result, out)
    print(f"😃 Wrote {len(result.claims)} claims to {path}")
    return path


if __name__ == "__main__":
    fire.Fire({"verify": verify, "to_csv": to_csv})
