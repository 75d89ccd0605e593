"""Circuit input records for the message-processing and tally circuits.

The poll captures everything a batch saw into a frozen record; the
builders here project a record into the exact dict the proof system
consumes. Builders are pure, so a record can be projected again at any
time, e.g. to retry a failed proof.

Field elements are emitted as decimal strings. Merkle paths are lists of
levels, each level holding the arity - 1 sibling hashes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from maci_replica.crypto.field import sha256_hash
from maci_replica.crypto.keys import PubKey
from maci_replica.models.ballot import Ballot
from maci_replica.models.commitment import StateBallotCommitment, TallyCommitments
from maci_replica.models.message import Message
from maci_replica.models.state_leaf import StateLeaf


_SMALL_VAL_BITS = 50
_SMALL_VAL_MASK = (1 << _SMALL_VAL_BITS) - 1


# ----------------------------------------------------------------------
# Packed scalars
# ----------------------------------------------------------------------

def pack_process_message_small_vals(
    max_vote_options: int,
    num_users: int,
    batch_start_index: int,
    batch_end_index: int,
) -> int:
    values = (max_vote_options, num_users, batch_start_index, batch_end_index)
    if any(not 0 <= v <= _SMALL_VAL_MASK for v in values):
        raise ValueError(f"Packed values must fit in {_SMALL_VAL_BITS} bits")
    return (
        max_vote_options
        + (num_users << 50)
        + (batch_start_index << 100)
        + (batch_end_index << 150)
    )


def unpack_process_message_small_vals(packed: int) -> tuple[int, int, int, int]:
    """Returns (max_vote_options, num_users, batch_start_index, batch_end_index)."""
    return (
        packed & _SMALL_VAL_MASK,
        (packed >> 50) & _SMALL_VAL_MASK,
        (packed >> 100) & _SMALL_VAL_MASK,
        (packed >> 150) & _SMALL_VAL_MASK,
    )


def pack_tally_votes_small_vals(
    batch_start_index: int, batch_size: int, num_signups: int
) -> int:
    if batch_start_index % batch_size:
        raise ValueError("Tally batch start must be a multiple of the batch size")
    return batch_start_index // batch_size + (num_signups << 50)


def unpack_tally_votes_small_vals(packed: int) -> tuple[int, int]:
    """Returns (batch_number, num_signups)."""
    return packed & _SMALL_VAL_MASK, (packed >> 50) & _SMALL_VAL_MASK


# ----------------------------------------------------------------------
# Captures
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class SlotWitness:
    """State seen by one message slot just before it was applied."""
    state_leaf: StateLeaf
    state_leaf_path: list[list[int]]
    ballot: Ballot
    ballot_path: list[list[int]]
    vote_weight: int
    vote_weight_path: list[list[int]]


@dataclass(frozen=True)
class ProcessBatchCapture:
    """Everything one message batch read and produced.

    `slots` lines up with `messages`: slot i holds the witness for
    message i of the batch in log order.
    """
    poll_end_timestamp: int
    max_vote_options: int
    num_signups: int
    batch_start_index: int
    batch_end_index: int
    state_tree_depth: int
    coordinator_pub_key: PubKey
    messages: list[Message]
    enc_pub_keys: list[PubKey]
    input_batch_hash: int
    output_batch_hash: int
    current_state_root: int
    current_ballot_root: int
    current_sb: StateBallotCommitment
    new_sb: StateBallotCommitment
    slots: list[SlotWitness]


@dataclass(frozen=True)
class TallyBatchCapture:
    """Everything one tally batch read and produced."""
    batch_start_index: int
    tally_batch_size: int
    num_signups: int
    sb: StateBallotCommitment
    current_tally_commitment: int
    new_tally: TallyCommitments
    current_results: list[int]
    current_results_salt: int
    current_total_spent: int
    current_spent_salt: int
    current_per_vo_spent: list[int]
    current_per_vo_salt: int
    new_results_salt: int
    new_spent_salt: int
    new_per_vo_salt: int
    ballots: list[Ballot]  # padded with blank ballots to the batch size
    ballot_path_elements: list[list[int]]


# ----------------------------------------------------------------------
# Builders
# ----------------------------------------------------------------------

def _str(value: int) -> str:
    return str(value)


def _strs(values: Sequence[int]) -> list[str]:
    return [str(v) for v in values]


def _path(path: Sequence[Sequence[int]]) -> list[list[str]]:
    return [_strs(level) for level in path]


def process_messages_input_hash(capture: ProcessBatchCapture) -> int:
    packed_vals = pack_process_message_small_vals(
        capture.max_vote_options,
        capture.num_signups,
        capture.batch_start_index,
        capture.batch_end_index,
    )
    return sha256_hash([
        packed_vals,
        capture.coordinator_pub_key.hash(),
        capture.input_batch_hash,
        capture.output_batch_hash,
        capture.current_sb.commitment,
        capture.new_sb.commitment,
        capture.poll_end_timestamp,
        capture.state_tree_depth,
    ])


def build_process_messages_inputs(capture: ProcessBatchCapture) -> dict[str, Any]:
    """Project a message batch capture into the circuit's input record."""
    packed_vals = pack_process_message_small_vals(
        capture.max_vote_options,
        capture.num_signups,
        capture.batch_start_index,
        capture.batch_end_index,
    )
    return {
        "pollEndTimestamp": _str(capture.poll_end_timestamp),
        "packedVals": _str(packed_vals),
        "msgs": [_strs(m.as_list()) for m in capture.messages],
        "encPubKeys": [_strs(k.as_list()) for k in capture.enc_pub_keys],
        "coordPubKey": _strs(capture.coordinator_pub_key.as_list()),
        "inputBatchHash": _str(capture.input_batch_hash),
        "outputBatchHash": _str(capture.output_batch_hash),
        "currentStateRoot": _str(capture.current_state_root),
        "currentBallotRoot": _str(capture.current_ballot_root),
        "currentSbCommitment": _str(capture.current_sb.commitment),
        "currentSbSalt": _str(capture.current_sb.salt),
        "newSbCommitment": _str(capture.new_sb.commitment),
        "newSbSalt": _str(capture.new_sb.salt),
        "currentStateLeaves": [
            _strs(s.state_leaf.as_circuit_inputs()) for s in capture.slots
        ],
        "currentStateLeavesPathElements": [
            _path(s.state_leaf_path) for s in capture.slots
        ],
        "currentBallots": [
            _strs(s.ballot.as_circuit_inputs()) for s in capture.slots
        ],
        "currentBallotsPathElements": [_path(s.ballot_path) for s in capture.slots],
        "currentVoteWeights": [_str(s.vote_weight) for s in capture.slots],
        "currentVoteWeightsPathElements": [
            _path(s.vote_weight_path) for s in capture.slots
        ],
        "actualStateTreeDepth": _str(capture.state_tree_depth),
        "inputHash": _str(process_messages_input_hash(capture)),
    }


def tally_votes_input_hash(capture: TallyBatchCapture) -> int:
    packed_vals = pack_tally_votes_small_vals(
        capture.batch_start_index, capture.tally_batch_size, capture.num_signups
    )
    return sha256_hash([
        packed_vals,
        capture.sb.commitment,
        capture.current_tally_commitment,
        capture.new_tally.tally_commitment,
    ])


def build_tally_inputs(capture: TallyBatchCapture) -> dict[str, Any]:
    """Project a tally batch capture into the circuit's input record."""
    packed_vals = pack_tally_votes_small_vals(
        capture.batch_start_index, capture.tally_batch_size, capture.num_signups
    )
    return {
        "stateRoot": _str(capture.sb.state_root),
        "ballotRoot": _str(capture.sb.ballot_root),
        "sbSalt": _str(capture.sb.salt),
        "sbCommitment": _str(capture.sb.commitment),
        "currentTallyCommitment": _str(capture.current_tally_commitment),
        "newTallyCommitment": _str(capture.new_tally.tally_commitment),
        "packedVals": _str(packed_vals),
        "inputHash": _str(tally_votes_input_hash(capture)),
        "ballots": [_strs(b.as_circuit_inputs()) for b in capture.ballots],
        "ballotPathElements": _path(capture.ballot_path_elements),
        "votes": [_strs(b.votes) for b in capture.ballots],
        "currentResults": _strs(capture.current_results),
        "currentResultsRootSalt": _str(capture.current_results_salt),
        "currentSpentVoiceCreditSubtotal": _str(capture.current_total_spent),
        "currentSpentVoiceCreditSubtotalSalt": _str(capture.current_spent_salt),
        "currentPerVOSpentVoiceCredits": _strs(capture.current_per_vo_spent),
        "currentPerVOSpentVoiceCreditsRootSalt": _str(capture.current_per_vo_salt),
        "newResultsRootSalt": _str(capture.new_results_salt),
        "newPerVOSpentVoiceCreditsRootSalt": _str(capture.new_per_vo_salt),
        "newSpentVoiceCreditSubtotalSalt": _str(capture.new_spent_salt),
    }
