"""Command codec: turns a published message into a checked command.

Two pure steps, each returning a tagged result rather than raising:

    decode(message, ...)   -> Decoded | DecodeFailed
    validate(command, ...) -> Valid | Invalid

Every failure here is a normal protocol event (somebody sent a bad or
stale vote). The batch processor absorbs it: the message keeps its slot
in the batch and changes nothing.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from maci_replica.crypto.cipher import DecryptionError
from maci_replica.crypto.field import SaltSource, gen_random_salt
from maci_replica.crypto.keys import (
    Keypair,
    PubKey,
    Signature,
    gen_ecdh_shared_key,
)
from maci_replica.models.ballot import Ballot
from maci_replica.models.command import MalformedCommand, PCommand
from maci_replica.models.message import Message, is_padding
from maci_replica.models.poll import VotingMode
from maci_replica.models.state_leaf import StateLeaf


CostFunction = Callable[[int], int]


def _quadratic_cost(weight: int) -> int:
    return weight * weight


def _linear_cost(weight: int) -> int:
    return weight


_COST_FUNCTIONS: dict[VotingMode, CostFunction] = {
    VotingMode.QUADRATIC: _quadratic_cost,
    VotingMode.NON_QUADRATIC: _linear_cost,
}


def cost_function(mode: VotingMode) -> CostFunction:
    """Voice-credit cost of holding a given vote weight under a mode."""
    return _COST_FUNCTIONS[VotingMode(mode)]


# ----------------------------------------------------------------------
# Decode
# ----------------------------------------------------------------------

class DecodeFailureReason(str, enum.Enum):
    PADDING = "padding"
    INVALID_ENC_PUB_KEY = "invalid_enc_pub_key"
    BAD_CIPHERTEXT = "bad_ciphertext"
    MALFORMED = "malformed"
    WRONG_POLL = "wrong_poll"
    STATE_INDEX_OUT_OF_RANGE = "state_index_out_of_range"
    BAD_SIGNATURE = "bad_signature"


@dataclass(frozen=True)
class Decoded:
    command: PCommand
    signature: Signature


@dataclass(frozen=True)
class DecodeFailed:
    reason: DecodeFailureReason
    detail: str = ""


DecodeResult = Union[Decoded, DecodeFailed]


def decode(
    message: Message,
    enc_pub_key: PubKey,
    coordinator_keypair: Keypair,
    state_leaves: Sequence[StateLeaf],
    poll_id: int,
) -> DecodeResult:
    """Decrypt a message and check its signature. Never raises.

    The signature is checked against the target leaf's key in
    `state_leaves`, which is the poll-local view: a key rotated earlier
    in the poll is the one that must sign later commands.
    """
    if is_padding(message, enc_pub_key):
        return DecodeFailed(DecodeFailureReason.PADDING)
    if not enc_pub_key.is_valid():
        return DecodeFailed(
            DecodeFailureReason.INVALID_ENC_PUB_KEY,
            "Ephemeral key is not on the curve",
        )

    shared_key = gen_ecdh_shared_key(coordinator_keypair.priv_key, enc_pub_key)
    try:
        command, signature = PCommand.decrypt(message, shared_key)
    except DecryptionError as exc:
        return DecodeFailed(DecodeFailureReason.BAD_CIPHERTEXT, str(exc))
    except MalformedCommand as exc:
        return DecodeFailed(DecodeFailureReason.MALFORMED, str(exc))

    if command.poll_id != poll_id:
        return DecodeFailed(
            DecodeFailureReason.WRONG_POLL,
            f"Command targets poll {command.poll_id}, not {poll_id}",
        )
    # Index 0 is the blank leaf and cannot be voted from.
    if not 1 <= command.state_index < len(state_leaves):
        return DecodeFailed(
            DecodeFailureReason.STATE_INDEX_OUT_OF_RANGE,
            f"State index {command.state_index} outside [1, {len(state_leaves)})",
        )
    current_key = state_leaves[command.state_index].pub_key
    if not command.verify_signature(signature, current_key):
        return DecodeFailed(
            DecodeFailureReason.BAD_SIGNATURE,
            f"Signature does not match key of state index {command.state_index}",
        )
    return Decoded(command, signature)


# ----------------------------------------------------------------------
# Validate
# ----------------------------------------------------------------------

class ValidationFailureReason(str, enum.Enum):
    NONCE_MISMATCH = "nonce_mismatch"
    OPTION_OUT_OF_RANGE = "option_out_of_range"
    INSUFFICIENT_VOICE_CREDITS = "insufficient_voice_credits"


@dataclass(frozen=True)
class Valid:
    cost: int  # may be negative when a vote is lowered


@dataclass(frozen=True)
class Invalid:
    reason: ValidationFailureReason
    detail: str = ""


ValidationResult = Union[Valid, Invalid]


def validate(
    command: PCommand,
    ballot: Ballot,
    state_leaf: StateLeaf,
    max_vote_options: int,
    mode: VotingMode = VotingMode.QUADRATIC,
) -> ValidationResult:
    """Check a decoded command against the voter's current ballot and leaf."""
    if command.nonce != ballot.nonce + 1:
        return Invalid(
            ValidationFailureReason.NONCE_MISMATCH,
            f"Expected nonce {ballot.nonce + 1}, got {command.nonce}",
        )
    if not 0 <= command.vote_option_index < max_vote_options:
        return Invalid(
            ValidationFailureReason.OPTION_OUT_OF_RANGE,
            f"Vote option {command.vote_option_index} outside [0, {max_vote_options})",
        )
    cost = cost_function(mode)
    current_weight = ballot.votes[command.vote_option_index]
    delta = cost(command.new_vote_weight) - cost(current_weight)
    if delta > state_leaf.voice_credit_balance:
        return Invalid(
            ValidationFailureReason.INSUFFICIENT_VOICE_CREDITS,
            f"Vote costs {delta}, balance is {state_leaf.voice_credit_balance}",
        )
    return Valid(delta)


# ----------------------------------------------------------------------
# Encode (voter side)
# ----------------------------------------------------------------------

def encode_vote(
    voter_keypair: Keypair,
    coordinator_pub_key: PubKey,
    state_index: int,
    vote_option_index: int,
    new_vote_weight: int,
    nonce: int,
    poll_id: int,
    new_pub_key: Optional[PubKey] = None,
    ephemeral_keypair: Optional[Keypair] = None,
    salt_source: SaltSource = gen_random_salt,
) -> tuple[Message, PubKey]:
    """Build, sign and encrypt a command the way a voter's client does.

    Returns the message and the ephemeral public key to publish with it.
    Passing a `new_pub_key` rotates the voter's key once the command is
    applied; by default the current key is kept.
    """
    command = PCommand.create(
        state_index=state_index,
        new_pub_key=new_pub_key or voter_keypair.pub_key,
        vote_option_index=vote_option_index,
        new_vote_weight=new_vote_weight,
        nonce=nonce,
        poll_id=poll_id,
        salt_source=salt_source,
    )
    signature = command.sign(voter_keypair.priv_key)
    ephemeral = ephemeral_keypair or Keypair.generate()
    shared_key = gen_ecdh_shared_key(ephemeral.priv_key, coordinator_pub_key)
    return command.encrypt(signature, shared_key), ephemeral.pub_key
