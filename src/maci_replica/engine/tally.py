"""Tally engine: folds final ballots into results and spend totals.

Ballots are consumed in ascending state index order, one tally batch at
a time. For every vote option of every ballot:

    results[o]        += vote
    per_vo_spent[o]   += cost(vote)
    total_spent       += cost(vote)

where `cost` is fixed per poll by its voting mode: `vote * vote` for
quadratic polls and `vote` for non-quadratic ones, so per-option spend
is mode-dependent. After each batch the three running values are
re-committed with fresh salts and folded into the tally commitment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from maci_replica.crypto.commitment_builder import TallyCommitmentBuilder
from maci_replica.crypto.field import SaltSource
from maci_replica.engine.codec import cost_function
from maci_replica.models.ballot import Ballot
from maci_replica.models.commitment import TallyCommitments
from maci_replica.models.poll import VOTE_OPTION_TREE_ARITY, VotingMode


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TallyStep:
    """Outcome of one tally batch, not yet committed."""
    results: list[int]
    per_vo_spent: list[int]
    total_spent: int
    results_salt: int
    spent_salt: int
    per_vo_salt: int
    commitments: TallyCommitments


def compute_tally_commitments(
    results: Sequence[int],
    total_spent: int,
    per_vo_spent: Sequence[int],
    results_salt: int,
    spent_salt: int,
    per_vo_salt: int,
    vote_option_tree_depth: int,
) -> TallyCommitments:
    builder = TallyCommitmentBuilder(vote_option_tree_depth)
    builder.set_results(results, salt=results_salt)
    builder.set_total_spent(total_spent, salt=spent_salt)
    builder.set_per_vo_spent(per_vo_spent, salt=per_vo_salt)
    return builder.build()


def verify_tally(
    results: Sequence[int],
    total_spent: int,
    per_vo_spent: Sequence[int],
    results_salt: int,
    spent_salt: int,
    per_vo_salt: int,
    vote_option_tree_depth: int,
    expected_tally_commitment: int,
) -> bool:
    """Check published results and salts against a tally commitment."""
    width = VOTE_OPTION_TREE_ARITY ** vote_option_tree_depth
    if len(results) > width or len(per_vo_spent) > width:
        return False
    commitments = compute_tally_commitments(
        results, total_spent, per_vo_spent,
        results_salt, spent_salt, per_vo_salt,
        vote_option_tree_depth,
    )
    return commitments.tally_commitment == expected_tally_commitment


class TallyEngine:
    """Running tally accumulators and salts for one poll.

    Usage:
        engine = TallyEngine(vote_option_tree_depth=2, mode=VotingMode.QUADRATIC)
        step = engine.compute_batch(ballots, salt_source)
        engine.commit(step)
    """

    def __init__(self, vote_option_tree_depth: int, mode: VotingMode) -> None:
        width = VOTE_OPTION_TREE_ARITY ** vote_option_tree_depth
        self.vote_option_tree_depth = vote_option_tree_depth
        self.mode = VotingMode(mode)
        self._cost = cost_function(self.mode)
        self.results: list[int] = [0] * width
        self.per_vo_spent: list[int] = [0] * width
        self.total_spent = 0
        self.results_salt = 0
        self.spent_salt = 0
        self.per_vo_salt = 0
        self.tally_commitment = 0
        self.num_batches_tallied = 0

    def compute_batch(
        self, ballots: Sequence[Ballot], salt_source: SaltSource
    ) -> TallyStep:
        """Fold a batch of ballots into copies of the accumulators."""
        results = list(self.results)
        per_vo_spent = list(self.per_vo_spent)
        total_spent = self.total_spent
        cost = self._cost
        for ballot in ballots:
            for option, vote in enumerate(ballot.votes):
                if not vote:
                    continue
                spent = cost(vote)
                results[option] += vote
                per_vo_spent[option] += spent
                total_spent += spent

        results_salt = salt_source()
        spent_salt = salt_source()
        per_vo_salt = salt_source()
        commitments = compute_tally_commitments(
            results, total_spent, per_vo_spent,
            results_salt, spent_salt, per_vo_salt,
            self.vote_option_tree_depth,
        )
        return TallyStep(
            results=results,
            per_vo_spent=per_vo_spent,
            total_spent=total_spent,
            results_salt=results_salt,
            spent_salt=spent_salt,
            per_vo_salt=per_vo_salt,
            commitments=commitments,
        )

    def commit(self, step: TallyStep) -> None:
        self.results = step.results
        self.per_vo_spent = step.per_vo_spent
        self.total_spent = step.total_spent
        self.results_salt = step.results_salt
        self.spent_salt = step.spent_salt
        self.per_vo_salt = step.per_vo_salt
        self.tally_commitment = step.commitments.tally_commitment
        self.num_batches_tallied += 1
        logger.debug(
            "Tally batch %d committed, total spent %d",
            self.num_batches_tallied, self.total_spent,
        )

    def recompute_commitment(self) -> int:
        """Tally commitment rebuilt from the accumulators and salts."""
        if self.num_batches_tallied == 0:
            return 0
        return compute_tally_commitments(
            self.results, self.total_spent, self.per_vo_spent,
            self.results_salt, self.spent_salt, self.per_vo_salt,
            self.vote_option_tree_depth,
        ).tally_commitment

    def copy(self) -> TallyEngine:
        clone = TallyEngine(self.vote_option_tree_depth, self.mode)
        clone.load_json(self.to_json())
        return clone

    def to_json(self) -> dict[str, Any]:
        return {
            "results": [str(v) for v in self.results],
            "per_vo_spent_voice_credits": [str(v) for v in self.per_vo_spent],
            "total_spent_voice_credits": str(self.total_spent),
            "results_salt": str(self.results_salt),
            "spent_salt": str(self.spent_salt),
            "per_vo_salt": str(self.per_vo_salt),
            "tally_commitment": str(self.tally_commitment),
            "num_batches_tallied": self.num_batches_tallied,
        }

    def load_json(self, data: dict[str, Any]) -> None:
        width = VOTE_OPTION_TREE_ARITY ** self.vote_option_tree_depth
        results = [int(v) for v in data["results"]]
        per_vo_spent = [int(v) for v in data["per_vo_spent_voice_credits"]]
        if len(results) != width or len(per_vo_spent) != width:
            raise ValueError(f"Tally vectors must hold {width} entries")
        self.results = results
        self.per_vo_spent = per_vo_spent
        self.total_spent = int(data["total_spent_voice_credits"])
        self.results_salt = int(data["results_salt"])
        self.spent_salt = int(data["spent_salt"])
        self.per_vo_salt = int(data["per_vo_salt"])
        self.tally_commitment = int(data["tally_commitment"])
        self.num_batches_tallied = int(data["num_batches_tallied"])

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TallyEngine):
            return NotImplemented
        return (
            self.mode == other.mode
            and self.vote_option_tree_depth == other.vote_option_tree_depth
            and self.to_json() == other.to_json()
        )
