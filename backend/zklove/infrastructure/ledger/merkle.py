"""
Binary Merkle tree over ledger entry hashes.

Leaves and interior nodes are hashed under different prefixes, so an
interior node can never be passed off as a leaf.
"""

import hashlib
from typing import List

GENESIS_HASH = "0" * 64


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def _hash_leaf(entry_hash: str) -> str:
    return sha256_hex("leaf:" + entry_hash)


def _hash_pair(left: str, right: str) -> str:
    return sha256_hex("node:" + left + right)


class MerkleTree:
    """
    Merkle tree rebuilt on every append.

    Structure:
        Level 0 (leaves):  [L(e0), L(e1), L(e2), L(e3), ...]
        Level 1:           [N(L0, L1), N(L2, L3), ...]
        Level 2 (root):    [N(N0, N1)]

    An odd node at any level is paired with itself.
    """

    def __init__(self) -> None:
        self._leaves: List[str] = []
        self._root: str = GENESIS_HASH

    @property
    def root(self) -> str:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def add_leaf(self, entry_hash: str) -> str:
        """Append a leaf and return the updated root."""
        self._leaves.append(entry_hash)
        self._root = self.compute_root(self._leaves)
        return self._root

    def verify(self, entry_hashes: List[str]) -> bool:
        """True when the given ordered entry hashes reproduce the stored root."""
        return self.compute_root(entry_hashes) == self._root

    @staticmethod
    def compute_root(entry_hashes: List[str]) -> str:
        if not entry_hashes:
            return GENESIS_HASH

        level = [_hash_leaf(h) for h in entry_hashes]
        while len(level) > 1:
            next_level: List[str] = []
            for i in range(0, len(level), 2):
                left = level[i]
                right = level[i + 1] if i + 1 < len(level) else left
                next_level.append(_hash_pair(left, right))
            level = next_level
        return level[0]
