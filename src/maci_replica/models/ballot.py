"""Ballot model: a voter's per-option weights and command nonce."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from maci_replica.crypto.merkle import IncrementalQuinTree, tree_root
from maci_replica.crypto.poseidon import hash_left_right
from maci_replica.models.poll import VOTE_OPTION_TREE_ARITY


@dataclass(frozen=True)
class Ballot:
    """Per-voter vote weights, one slot per vote option.

    Ballots are immutable; applying a vote yields a new ballot with the
    slot replaced and the nonce advanced.
    """
    votes: tuple[int, ...]
    nonce: int
    vote_option_tree_depth: int

    def __post_init__(self) -> None:
        width = VOTE_OPTION_TREE_ARITY ** self.vote_option_tree_depth
        if len(self.votes) != width:
            raise ValueError(
                f"Ballot must hold {width} vote slots, got {len(self.votes)}"
            )
        if self.nonce < 0:
            raise ValueError("Ballot nonce cannot be negative")

    @staticmethod
    def blank(vote_option_tree_depth: int) -> Ballot:
        width = VOTE_OPTION_TREE_ARITY ** vote_option_tree_depth
        return Ballot(
            votes=(0,) * width,
            nonce=0,
            vote_option_tree_depth=vote_option_tree_depth,
        )

    def vote_option_root(self) -> int:
        return tree_root(
            self.votes, self.vote_option_tree_depth, 0, VOTE_OPTION_TREE_ARITY
        )

    def vote_option_tree(self) -> IncrementalQuinTree:
        tree = IncrementalQuinTree(
            self.vote_option_tree_depth, 0, VOTE_OPTION_TREE_ARITY
        )
        for weight in self.votes:
            tree.insert(weight)
        return tree

    def hash(self) -> int:
        return hash_left_right(self.nonce, self.vote_option_root())

    def with_vote(self, vote_option_index: int, weight: int) -> Ballot:
        votes = list(self.votes)
        votes[vote_option_index] = weight
        return Ballot(
            votes=tuple(votes),
            nonce=self.nonce + 1,
            vote_option_tree_depth=self.vote_option_tree_depth,
        )

    def as_circuit_inputs(self) -> list[int]:
        return [self.nonce, self.vote_option_root()]

    def to_json(self) -> dict[str, Any]:
        return {
            "votes": [str(v) for v in self.votes],
            "nonce": str(self.nonce),
            "vote_option_tree_depth": self.vote_option_tree_depth,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> Ballot:
        return Ballot(
            votes=tuple(int(v) for v in data["votes"]),
            nonce=int(data["nonce"]),
            vote_option_tree_depth=int(data["vote_option_tree_depth"]),
        )
