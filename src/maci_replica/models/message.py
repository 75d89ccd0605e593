"""Published message model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

from maci_replica.crypto.field import is_field_element
from maci_replica.crypto.keys import PubKey
from maci_replica.crypto.poseidon import hash5, poseidon
from maci_replica.errors import MalformedMessage
from maci_replica.models.constants import MESSAGE_DATA_LENGTH, PAD_KEY


@dataclass(frozen=True)
class Message:
    """Ten ciphertext field elements, opaque until decrypted."""
    data: tuple[int, ...]

    def __post_init__(self) -> None:
        if len(self.data) != MESSAGE_DATA_LENGTH:
            raise MalformedMessage(
                f"Message must hold {MESSAGE_DATA_LENGTH} elements, "
                f"got {len(self.data)}"
            )
        if not all(is_field_element(v) for v in self.data):
            raise MalformedMessage("Message elements must be field elements")

    @staticmethod
    def from_list(data: Sequence[int]) -> Message:
        return Message(tuple(data))

    @staticmethod
    def padding() -> Message:
        return Message((0,) * MESSAGE_DATA_LENGTH)

    def as_list(self) -> list[int]:
        return list(self.data)

    def hash(self, enc_pub_key: PubKey) -> int:
        """Leaf hash folded into the message chain."""
        return poseidon([
            hash5(self.data[:5]),
            hash5(self.data[5:]),
            enc_pub_key.x,
            enc_pub_key.y,
        ])

    def to_json(self) -> list[str]:
        return [str(v) for v in self.data]

    @staticmethod
    def from_json(data: list[Any]) -> Message:
        return Message(tuple(int(v) for v in data))


def is_padding(message: Message, enc_pub_key: PubKey) -> bool:
    return enc_pub_key == PAD_KEY and not any(message.data)
