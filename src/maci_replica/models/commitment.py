"""Commitment record models.

A commitment binds a root or running total to a salt so the value can be
revealed later and checked against what the circuit and contract saw.
Records are immutable once constructed.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class StateBallotCommitment:
    """Commitment to the poll's state tree and ballot tree after a batch."""
    state_root: int
    ballot_root: int
    salt: int
    commitment: int


@dataclass(frozen=True)
class TallyCommitments:
    """The three salted tally commitments and the value folding them."""
    results_commitment: int
    spent_voice_credits_commitment: int
    per_vo_spent_voice_credits_commitment: int
    tally_commitment: int

    def canonical_fields(self) -> tuple[int, ...]:
        """Return all fields in canonical order for hashing."""
        return (
            self.results_commitment,
            self.spent_voice_credits_commitment,
            self.per_vo_spent_voice_credits_commitment,
            self.tally_commitment,
        )
