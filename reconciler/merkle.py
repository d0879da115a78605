from itertools import zip_longest
from typing import Optional, Union

from eth_abi.packed import encode_packed
from eth_utils import encode_hex, keccak, to_bytes, to_checksum_address

from reconciler.errors import EmptyDistributionError


def leaf_hash(index: int, account: str, amount: int) -> bytes:
    """
    keccak256(abi.encodePacked(uint256 index, address account, uint256 amount)).
    The field order is part of the on-chain contract: changing it changes every root.
    """
    return keccak(
        encode_packed(
            ["uint256", "address", "uint256"],
            [index, to_checksum_address(account), amount],
        )
    )


class MerkleTree:
    """
    Leaves stay in claim index order. Each pair of siblings is sorted before hashing, so a
    proof is just the list of siblings and the verifier never needs to know left from right.
    An unpaired node at the end of a layer moves up unchanged.
    """

    def __init__(self, leaves: list[bytes]):
        if not leaves:
            raise EmptyDistributionError("Cannot build a merkle tree without leaves")
        self.leaves = list(leaves)
        self.layers = MerkleTree.get_layers(self.leaves)

    @property
    def root(self) -> bytes:
        return self.layers[-1][0]

    @property
    def hex_root(self) -> str:
        return encode_hex(self.root)

    def get_proof(self, idx: int) -> list[bytes]:
        proof = []
        for layer in self.layers[:-1]:
            pair_idx = idx + 1 if idx % 2 == 0 else idx - 1
            if pair_idx < len(layer):
                proof.append(layer[pair_idx])
            idx //= 2
        return proof

    def get_hex_proof(self, idx: int) -> list[str]:
        return [encode_hex(p) for p in self.get_proof(idx)]

    @staticmethod
    def get_layers(elements: list[bytes]) -> list[list[bytes]]:
        layers = [elements]
        while len(layers[-1]) > 1:
            layers.append(MerkleTree.get_next_layer(layers[-1]))
        return layers

    @staticmethod
    def get_next_layer(elements: list[bytes]) -> list[bytes]:
        return [
            MerkleTree.combined_hash(a, b) for a, b in zip_longest(elements[::2], elements[1::2])
        ]

    @staticmethod
    def combined_hash(a: Optional[bytes], b: Optional[bytes]) -> bytes:
        if a is None:
            return b
        if b is None:
            return a
        return keccak(b"".join(sorted([a, b])))


def _as_bytes(value: Union[bytes, str]) -> bytes:
    return value if isinstance(value, bytes) else to_bytes(hexstr=value)


def verify_proof(
    leaf: Union[bytes, str], proof: list[Union[bytes, str]], root: Union[bytes, str]
) -> bool:
    """Walk the proof with sorted-pair hashing, as the distributor contract does"""
    computed = _as_bytes(leaf)
    for sibling in proof:
        computed = MerkleTree.combined_hash(computed, _as_bytes(sibling))
    return computed == _as_bytes(root)
