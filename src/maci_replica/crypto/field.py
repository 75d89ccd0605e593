"""Prime field constants and helpers shared by every hash and commitment.

All values handled by the replica are elements of the BN254 scalar field,
the field the proving system works in. Anything that leaves this module
as an integer is already reduced modulo SNARK_FIELD_SIZE.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Callable, Iterable

from web3 import Web3


SNARK_FIELD_SIZE = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

# keccak256("Maci") reduced into the field; seeds chain hashes and empty trees.
NOTHING_UP_MY_SLEEVE = (
    int.from_bytes(Web3.keccak(text="Maci"), "big") % SNARK_FIELD_SIZE
)

SaltSource = Callable[[], int]


def is_field_element(value: object) -> bool:
    """True if value is an int in [0, SNARK_FIELD_SIZE)."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < SNARK_FIELD_SIZE


def sha256_hash(values: Iterable[int]) -> int:
    """SHA-256 over 32-byte big-endian words, reduced into the field.

    This is the "input hash" the circuits expose as their single public
    input, computed the same way the verifier contract packs uint256 words.
    """
    packed = b"".join(int(v).to_bytes(32, "big") for v in values)
    return int.from_bytes(hashlib.sha256(packed).digest(), "big") % SNARK_FIELD_SIZE


def gen_random_salt() -> int:
    """A uniformly random field element."""
    return secrets.randbelow(SNARK_FIELD_SIZE)


class SaltGenerator:
    """Deterministic salt stream for reproducible commitments.

    Usage:
        salts = SaltGenerator(seed=42)
        salts()  # same value every run for the same seed and position
    """

    def __init__(self, seed: int) -> None:
        self._seed = seed % SNARK_FIELD_SIZE
        self._counter = 0

    def __call__(self) -> int:
        self._counter += 1
        return sha256_hash([self._seed, self._counter])

    @property
    def position(self) -> int:
        return self._counter
