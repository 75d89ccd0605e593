"""Fixed-depth incremental Merkle tree over Poseidon.

Every node hashes `arity` children with Poseidon. Unused slots are filled
with precomputed zero subtrees, so the root is defined for any fill level
and two trees fed the same insert/update sequence always agree on their
roots and paths.

Only populated nodes are stored, which keeps deep trees cheap.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from maci_replica.crypto.poseidon import poseidon
from maci_replica.errors import IndexOutOfRange, TreeFull


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf: int
    index: int
    path_elements: list[list[int]]  # arity - 1 siblings per level, leaf level first
    path_indices: list[int]  # position of the path node among its siblings
    root: int

    def verify(self) -> bool:
        """Recompute the root from the leaf and the path."""
        node = self.leaf
        for siblings, position in zip(self.path_elements, self.path_indices):
            children = list(siblings)
            children.insert(position, node)
            node = poseidon(children)
        return node == self.root


def zero_hashes(depth: int, zero_value: int, arity: int) -> list[int]:
    """Roots of empty subtrees, indexed by height."""
    zeros = [zero_value]
    for _ in range(depth):
        zeros.append(poseidon([zeros[-1]] * arity))
    return zeros


def tree_root(
    leaves: Sequence[int],
    depth: int,
    zero_value: int,
    arity: int = 5,
) -> int:
    """Root of a full tree holding `leaves` from index 0, computed from scratch."""
    if len(leaves) > arity ** depth:
        raise TreeFull(f"{len(leaves)} leaves exceed capacity {arity ** depth}")
    zeros = zero_hashes(depth, zero_value, arity)
    level = list(leaves)
    for height in range(depth):
        if not level:
            return zeros[depth]
        while len(level) % arity:
            level.append(zeros[height])
        level = [
            poseidon(level[i:i + arity]) for i in range(0, len(level), arity)
        ]
    return level[0] if level else zeros[depth]


class IncrementalQuinTree:
    """A fixed-arity, fixed-depth append/update Merkle tree.

    Usage:
        tree = IncrementalQuinTree(depth=2, zero_value=0)
        index = tree.insert(leaf)
        tree.update(index, new_leaf)
        proof = tree.path_to(index)
        assert proof.verify()
    """

    def __init__(self, depth: int, zero_value: int, arity: int = 5) -> None:
        if depth < 0:
            raise ValueError("Tree depth must be non-negative")
        if not 2 <= arity <= 5:
            raise ValueError("Tree arity must be between 2 and 5")
        self.depth = depth
        self.arity = arity
        self.zero_value = zero_value
        self._zeros = zero_hashes(depth, zero_value, arity)
        self._nodes: list[dict[int, int]] = [{} for _ in range(depth + 1)]
        self._next_index = 0

    @property
    def capacity(self) -> int:
        return self.arity ** self.depth

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def root(self) -> int:
        return self._node(self.depth, 0)

    @property
    def leaves(self) -> list[int]:
        return [self._nodes[0][i] for i in range(self._next_index)]

    def insert(self, leaf: int) -> int:
        if self._next_index >= self.capacity:
            raise TreeFull(f"Tree of capacity {self.capacity} is full")
        index = self._next_index
        self._set_leaf(index, leaf)
        self._next_index += 1
        return index

    def update(self, index: int, leaf: int) -> None:
        self._require_index(index)
        self._set_leaf(index, leaf)

    def leaf(self, index: int) -> int:
        self._require_index(index)
        return self._nodes[0][index]

    def path_to(self, index: int) -> MerkleProof:
        self._require_index(index)
        path_elements: list[list[int]] = []
        path_indices: list[int] = []
        position = index
        for level in range(self.depth):
            offset = position % self.arity
            start = position - offset
            path_elements.append([
                self._node(level, start + i)
                for i in range(self.arity)
                if i != offset
            ])
            path_indices.append(offset)
            position //= self.arity
        return MerkleProof(
            leaf=self._nodes[0][index],
            index=index,
            path_elements=path_elements,
            path_indices=path_indices,
            root=self.root,
        )

    def compute_root_from_leaves(self) -> int:
        """Root rebuilt from the leaves alone, ignoring cached nodes."""
        return tree_root(self.leaves, self.depth, self.zero_value, self.arity)

    def copy(self) -> IncrementalQuinTree:
        clone = IncrementalQuinTree.__new__(IncrementalQuinTree)
        clone.depth = self.depth
        clone.arity = self.arity
        clone.zero_value = self.zero_value
        clone._zeros = self._zeros
        clone._nodes = [dict(level) for level in self._nodes]
        clone._next_index = self._next_index
        return clone

    def _node(self, level: int, index: int) -> int:
        return self._nodes[level].get(index, self._zeros[level])

    def _set_leaf(self, index: int, leaf: int) -> None:
        self._nodes[0][index] = leaf
        position = index
        for level in range(self.depth):
            parent = position // self.arity
            start = parent * self.arity
            children = [self._node(level, start + i) for i in range(self.arity)]
            self._nodes[level + 1][parent] = poseidon(children)
            position = parent

    def _require_index(self, index: int) -> None:
        if not 0 <= index < self._next_index:
            raise IndexOutOfRange(
                f"Index {index} outside populated range [0, {self._next_index})"
            )
