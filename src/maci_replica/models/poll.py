"""Poll configuration value objects and lifecycle states."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any


STATE_TREE_ARITY = 5
VOTE_OPTION_TREE_ARITY = 5


class PollState(str, enum.Enum):
    """Poll lifecycle. Transitions are strictly forward."""
    OPEN = "open"
    CLOSED = "closed"
    PROCESSING = "processing"
    PROCESSING_COMPLETE = "processing_complete"
    TALLYING = "tallying"
    FINALIZED = "finalized"


class VotingMode(str, enum.Enum):
    """How vote weights are charged and aggregated, fixed per poll."""
    QUADRATIC = "qv"
    NON_QUADRATIC = "non_qv"


@dataclass(frozen=True)
class TreeDepths:
    int_state_tree_depth: int
    vote_option_tree_depth: int

    def to_json(self) -> dict[str, Any]:
        return {
            "int_state_tree_depth": self.int_state_tree_depth,
            "vote_option_tree_depth": self.vote_option_tree_depth,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> TreeDepths:
        return TreeDepths(
            int_state_tree_depth=int(data["int_state_tree_depth"]),
            vote_option_tree_depth=int(data["vote_option_tree_depth"]),
        )


@dataclass(frozen=True)
class BatchSizes:
    message_batch_size: int
    tally_batch_size: int

    def to_json(self) -> dict[str, Any]:
        return {
            "message_batch_size": self.message_batch_size,
            "tally_batch_size": self.tally_batch_size,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> BatchSizes:
        return BatchSizes(
            message_batch_size=int(data["message_batch_size"]),
            tally_batch_size=int(data["tally_batch_size"]),
        )


@dataclass(frozen=True)
class MaxValues:
    max_messages: int
    max_vote_options: int

    def to_json(self) -> dict[str, Any]:
        return {
            "max_messages": self.max_messages,
            "max_vote_options": self.max_vote_options,
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> MaxValues:
        return MaxValues(
            max_messages=int(data["max_messages"]),
            max_vote_options=int(data["max_vote_options"]),
        )


def validate_poll_params(
    tree_depths: TreeDepths,
    batch_sizes: BatchSizes,
    max_values: MaxValues,
) -> list[str]:
    """Check a poll configuration. Returns errors (empty = OK)."""
    errors: list[str] = []
    if tree_depths.int_state_tree_depth < 0:
        errors.append("int_state_tree_depth must be non-negative")
    if tree_depths.vote_option_tree_depth < 1:
        errors.append("vote_option_tree_depth must be at least 1")
    if batch_sizes.message_batch_size < 1:
        errors.append("message_batch_size must be positive")
    if batch_sizes.tally_batch_size != STATE_TREE_ARITY ** tree_depths.int_state_tree_depth:
        errors.append(
            f"tally_batch_size must equal {STATE_TREE_ARITY}^int_state_tree_depth "
            f"({STATE_TREE_ARITY ** tree_depths.int_state_tree_depth}), "
            f"got {batch_sizes.tally_batch_size}"
        )
    max_options = VOTE_OPTION_TREE_ARITY ** tree_depths.vote_option_tree_depth
    if not 1 <= max_values.max_vote_options <= max_options:
        errors.append(
            f"max_vote_options must be in [1, {max_options}], "
            f"got {max_values.max_vote_options}"
        )
    if max_values.max_messages < 1:
        errors.append("max_messages must be positive")
    return errors
