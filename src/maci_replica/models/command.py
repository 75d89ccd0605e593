"""Vote commands: the plaintext carried inside a message.

A command is packed into one field element:

    nonce | state_index << 50 | vote_option_index << 100
          | new_vote_weight << 150 | poll_id << 200

then hashed together with the new public key and a salt; that hash is
what the voter signs. The encrypted form is seven plaintext elements
(packed, new key x/y, salt, R8x, R8y, S) which cipher into a ten-element
message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from maci_replica.crypto.babyjub import Point, in_curve
from maci_replica.crypto.cipher import poseidon_decrypt, poseidon_encrypt
from maci_replica.crypto.field import SaltSource, gen_random_salt
from maci_replica.crypto.keys import (
    PrivKey,
    PubKey,
    Signature,
    sign,
    verify_signature,
)
from maci_replica.crypto.poseidon import hash4
from maci_replica.models.constants import COMMAND_PLAINTEXT_LENGTH
from maci_replica.models.message import Message


FIELD_BITS = 50
_FIELD_MASK = (1 << FIELD_BITS) - 1
MAX_POLL_ID_BITS = 50


class MalformedCommand(ValueError):
    """Decrypted plaintext does not describe a usable command."""


def pack_command(
    nonce: int,
    state_index: int,
    vote_option_index: int,
    new_vote_weight: int,
    poll_id: int,
) -> int:
    for name, value in (
        ("nonce", nonce),
        ("state_index", state_index),
        ("vote_option_index", vote_option_index),
        ("new_vote_weight", new_vote_weight),
        ("poll_id", poll_id),
    ):
        if not 0 <= value <= _FIELD_MASK:
            raise ValueError(f"{name} must fit in {FIELD_BITS} bits")
    return (
        nonce
        | state_index << 50
        | vote_option_index << 100
        | new_vote_weight << 150
        | poll_id << 200
    )


def unpack_command(packed: int) -> tuple[int, int, int, int, int]:
    """Inverse of pack_command: (nonce, state_index, vote_option_index,
    new_vote_weight, poll_id)."""
    return (
        packed & _FIELD_MASK,
        (packed >> 50) & _FIELD_MASK,
        (packed >> 100) & _FIELD_MASK,
        (packed >> 150) & _FIELD_MASK,
        packed >> 200,
    )


@dataclass(frozen=True)
class PCommand:
    """A vote or key-change command for one poll."""
    state_index: int
    new_pub_key: PubKey
    vote_option_index: int
    new_vote_weight: int
    nonce: int
    poll_id: int
    salt: int

    @staticmethod
    def create(
        state_index: int,
        new_pub_key: PubKey,
        vote_option_index: int,
        new_vote_weight: int,
        nonce: int,
        poll_id: int,
        salt_source: SaltSource = gen_random_salt,
    ) -> PCommand:
        return PCommand(
            state_index=state_index,
            new_pub_key=new_pub_key,
            vote_option_index=vote_option_index,
            new_vote_weight=new_vote_weight,
            nonce=nonce,
            poll_id=poll_id,
            salt=salt_source(),
        )

    def packed(self) -> int:
        return pack_command(
            self.nonce,
            self.state_index,
            self.vote_option_index,
            self.new_vote_weight,
            self.poll_id,
        )

    def hash(self) -> int:
        return hash4([
            self.packed(),
            self.new_pub_key.x,
            self.new_pub_key.y,
            self.salt,
        ])

    def sign(self, priv_key: PrivKey) -> Signature:
        return sign(priv_key, self.hash())

    def verify_signature(self, signature: Signature, pub_key: PubKey) -> bool:
        return verify_signature(self.hash(), signature, pub_key)

    def plaintext(self, signature: Signature) -> list[int]:
        return [
            self.packed(),
            self.new_pub_key.x,
            self.new_pub_key.y,
            self.salt,
            *signature.as_list(),
        ]

    def encrypt(self, signature: Signature, shared_key: Point) -> Message:
        return Message.from_list(poseidon_encrypt(self.plaintext(signature), shared_key, 0))

    @staticmethod
    def from_plaintext(plaintext: Sequence[int]) -> tuple[PCommand, Signature]:
        """Parse seven decrypted elements. Raises MalformedCommand."""
        if len(plaintext) != COMMAND_PLAINTEXT_LENGTH:
            raise MalformedCommand(
                f"Expected {COMMAND_PLAINTEXT_LENGTH} plaintext elements"
            )
        packed, key_x, key_y, salt, r8x, r8y, s = plaintext
        nonce, state_index, vote_option_index, new_vote_weight, poll_id = (
            unpack_command(packed)
        )
        if poll_id >> MAX_POLL_ID_BITS:
            raise MalformedCommand("Poll id overflows its packed slot")
        new_pub_key = PubKey(key_x, key_y)
        if not new_pub_key.is_valid():
            raise MalformedCommand("New public key is not on the curve")
        command = PCommand(
            state_index=state_index,
            new_pub_key=new_pub_key,
            vote_option_index=vote_option_index,
            new_vote_weight=new_vote_weight,
            nonce=nonce,
            poll_id=poll_id,
            salt=salt,
        )
        signature = Signature(r8=(r8x, r8y), s=s)
        if not in_curve(signature.r8):
            raise MalformedCommand("Signature point is not on the curve")
        return command, signature

    @staticmethod
    def decrypt(message: Message, shared_key: Point) -> tuple[PCommand, Signature]:
        """Decrypt a message. Raises DecryptionError or MalformedCommand."""
        plaintext = poseidon_decrypt(
            message.as_list(), shared_key, 0, COMMAND_PLAINTEXT_LENGTH
        )
        return PCommand.from_plaintext(plaintext)
