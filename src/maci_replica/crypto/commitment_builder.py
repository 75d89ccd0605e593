"""Commitment builders for state/ballot checkpoints and tally results.

Both builders are deterministic: the same inputs and salts always give the
same commitments, which is what lets the contract, the circuit and this
replica each derive the value independently.
"""

from __future__ import annotations

from typing import Sequence

from maci_replica.crypto.merkle import tree_root
from maci_replica.crypto.poseidon import hash3, hash_left_right
from maci_replica.models.commitment import StateBallotCommitment, TallyCommitments


def gen_tree_commitment(leaves: Sequence[int], salt: int, depth: int) -> int:
    """Salted commitment to the root of a zero-filled quinary tree."""
    return hash_left_right(tree_root(leaves, depth, 0), salt)


def gen_state_ballot_commitment(
    state_root: int, ballot_root: int, salt: int
) -> StateBallotCommitment:
    return StateBallotCommitment(
        state_root=state_root,
        ballot_root=ballot_root,
        salt=salt,
        commitment=hash3([state_root, ballot_root, salt]),
    )


class TallyCommitmentBuilder:
    """Builds the running tally commitment after a tally batch.

    Usage:
        builder = TallyCommitmentBuilder(vote_option_tree_depth=2)
        builder.set_results(results, salt=results_salt)
        builder.set_total_spent(total_spent, salt=spent_salt)
        builder.set_per_vo_spent(per_vo_spent, salt=per_vo_salt)
        commitments = builder.build()
    """

    def __init__(self, vote_option_tree_depth: int) -> None:
        self._depth = vote_option_tree_depth
        self._results: tuple[list[int], int] | None = None
        self._total_spent: tuple[int, int] | None = None
        self._per_vo_spent: tuple[list[int], int] | None = None

    def set_results(self, results: Sequence[int], salt: int) -> None:
        self._results = (list(results), salt)

    def set_total_spent(self, total_spent: int, salt: int) -> None:
        self._total_spent = (total_spent, salt)

    def set_per_vo_spent(self, per_vo_spent: Sequence[int], salt: int) -> None:
        self._per_vo_spent = (list(per_vo_spent), salt)

    def build(self) -> TallyCommitments:
        if self._results is None or self._total_spent is None or self._per_vo_spent is None:
            raise RuntimeError("Results, total spend and per-option spend must all be set")

        results, results_salt = self._results
        total_spent, spent_salt = self._total_spent
        per_vo_spent, per_vo_salt = self._per_vo_spent

        results_commitment = gen_tree_commitment(results, results_salt, self._depth)
        spent_commitment = hash_left_right(total_spent, spent_salt)
        per_vo_commitment = gen_tree_commitment(per_vo_spent, per_vo_salt, self._depth)

        return TallyCommitments(
            results_commitment=results_commitment,
            spent_voice_credits_commitment=spent_commitment,
            per_vo_spent_voice_credits_commitment=per_vo_commitment,
            tally_commitment=hash3(
                [results_commitment, spent_commitment, per_vo_commitment]
            ),
        )
