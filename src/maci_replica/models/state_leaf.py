"""State leaf model: a voter's key, voice-credit balance and signup time."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from maci_replica.crypto.keys import PubKey
from maci_replica.crypto.poseidon import hash4
from maci_replica.models.constants import PAD_KEY


@dataclass(frozen=True)
class StateLeaf:
    """A single signup record. Superseded leaves are replaced, never mutated."""
    pub_key: PubKey
    voice_credit_balance: int
    timestamp: int

    def __post_init__(self) -> None:
        if self.voice_credit_balance < 0:
            raise ValueError("Voice credit balance cannot be negative")

    @staticmethod
    def blank() -> StateLeaf:
        return StateLeaf(pub_key=PAD_KEY, voice_credit_balance=0, timestamp=0)

    def hash(self) -> int:
        return hash4([
            self.pub_key.x,
            self.pub_key.y,
            self.voice_credit_balance,
            self.timestamp,
        ])

    def as_circuit_inputs(self) -> list[int]:
        return [self.pub_key.x, self.pub_key.y, self.voice_credit_balance, self.timestamp]

    def with_balance(self, voice_credit_balance: int) -> StateLeaf:
        return replace(self, voice_credit_balance=voice_credit_balance)

    def with_pub_key(self, pub_key: PubKey) -> StateLeaf:
        return replace(self, pub_key=pub_key)

    def to_json(self) -> dict[str, Any]:
        return {
            "pub_key": self.pub_key.serialize(),
            "voice_credit_balance": str(self.voice_credit_balance),
            "timestamp": str(self.timestamp),
        }

    @staticmethod
    def from_json(data: dict[str, Any]) -> StateLeaf:
        return StateLeaf(
            pub_key=PubKey.deserialize(data["pub_key"]),
            voice_credit_balance=int(data["voice_credit_balance"]),
            timestamp=int(data["timestamp"]),
        )
