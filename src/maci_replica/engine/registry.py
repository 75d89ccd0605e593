"""Signup registry: the append-only table of state leaves.

Index 0 holds the blank leaf, so the first real voter gets index 1.
The root after every signup is recorded, which answers "what did the
registry look like when this poll opened" without replaying history.

Any disagreement with an externally supplied root halts the registry:
the replica has diverged from the chain and must be rebuilt.
"""

from __future__ import annotations

import logging

from maci_replica.crypto.keys import PubKey
from maci_replica.crypto.merkle import IncrementalQuinTree
from maci_replica.errors import (
    IndexOutOfRange,
    RegistryFull,
    ReplicaHalted,
    RootMismatch,
)
from maci_replica.models.poll import STATE_TREE_ARITY
from maci_replica.models.state_leaf import StateLeaf


logger = logging.getLogger(__name__)


class SignupRegistry:
    """Append-only signup table backed by a quinary Merkle tree.

    Usage:
        registry = SignupRegistry(state_tree_depth=10)
        index = registry.sign_up(pub_key, 100, timestamp=1700000000)
        registry.verify_root(expected_root_from_chain)
    """

    def __init__(self, state_tree_depth: int) -> None:
        self.state_tree_depth = state_tree_depth
        self._blank_hash = StateLeaf.blank().hash()
        self._tree = IncrementalQuinTree(
            state_tree_depth, self._blank_hash, STATE_TREE_ARITY
        )
        self._leaves: list[StateLeaf] = []
        self._root_history: list[int] = []
        self._halted = False
        self._append(StateLeaf.blank())

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def root(self) -> int:
        return self._tree.root

    @property
    def num_signups(self) -> int:
        """Number of real signups; the blank leaf is not counted."""
        return len(self._leaves) - 1

    @property
    def capacity(self) -> int:
        return self._tree.capacity

    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def leaves(self) -> list[StateLeaf]:
        return list(self._leaves)

    def leaf(self, index: int) -> StateLeaf:
        if not 0 <= index < len(self._leaves):
            raise IndexOutOfRange(
                f"State index {index} outside [0, {len(self._leaves)})"
            )
        return self._leaves[index]

    def root_at_signup_count(self, n: int) -> int:
        """Root as it stood after the first n signups."""
        if not 0 <= n <= self.num_signups:
            raise IndexOutOfRange(
                f"Signup count {n} outside [0, {self.num_signups}]"
            )
        return self._root_history[n]

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def sign_up(
        self,
        pub_key: PubKey,
        initial_voice_credits: int,
        timestamp: int,
        expected_root_before: int | None = None,
    ) -> int:
        """Append a leaf and return its state index."""
        self._require_live()
        if expected_root_before is not None and expected_root_before != self.root:
            self._halt(
                f"Registry root {self.root} differs from expected "
                f"{expected_root_before} at signup {self.num_signups + 1}"
            )
        if len(self._leaves) >= self.capacity:
            raise RegistryFull(
                f"Registry of capacity {self.capacity} is full"
            )
        index = self._append(
            StateLeaf(pub_key, initial_voice_credits, timestamp)
        )
        logger.debug("Signup %d registered, root %d", index, self.root)
        return index

    def verify_root(self, expected: int) -> None:
        """Cross-check against the chain's root. Halts on mismatch."""
        self._require_live()
        if expected != self.root:
            self._halt(
                f"Registry root {self.root} differs from expected {expected}"
            )
        recomputed = self._tree.compute_root_from_leaves()
        if recomputed != self.root:
            self._halt(
                f"Registry tree root {self.root} differs from recomputed "
                f"root {recomputed}"
            )

    def _append(self, leaf: StateLeaf) -> int:
        index = self._tree.insert(leaf.hash())
        self._leaves.append(leaf)
        self._root_history.append(self._tree.root)
        return index

    def _require_live(self) -> None:
        if self._halted:
            raise ReplicaHalted("Signup registry halted after an integrity failure")

    def _halt(self, message: str) -> None:
        self._halted = True
        logger.error("Signup registry halted: %s", message)
        raise RootMismatch(message)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @staticmethod
    def from_leaves(state_tree_depth: int, leaves: list[StateLeaf]) -> SignupRegistry:
        """Rebuild a registry from a full leaf list, blank leaf included."""
        registry = SignupRegistry(state_tree_depth)
        if not leaves or leaves[0] != StateLeaf.blank():
            raise ValueError("Leaf list must start with the blank leaf")
        for leaf in leaves[1:]:
            if len(registry._leaves) >= registry.capacity:
                raise RegistryFull(
                    f"Registry of capacity {registry.capacity} is full"
                )
            registry._append(leaf)
        return registry

    def copy(self) -> SignupRegistry:
        clone = SignupRegistry.__new__(SignupRegistry)
        clone.state_tree_depth = self.state_tree_depth
        clone._blank_hash = self._blank_hash
        clone._tree = self._tree.copy()
        clone._leaves = list(self._leaves)
        clone._root_history = list(self._root_history)
        clone._halted = self._halted
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SignupRegistry):
            return NotImplemented
        return (
            self.state_tree_depth == other.state_tree_depth
            and self._leaves == other._leaves
        )
