"""Poseidon duplex-sponge encryption keyed by an ECDH shared point.

The sponge state is [0, key.x, key.y, nonce + length * 2^128]. Plaintext is
absorbed three elements at a time; the ciphertext is the running state
after each absorption, followed by one authentication element.
"""

from __future__ import annotations

from typing import Sequence

from maci_replica.crypto.babyjub import Point
from maci_replica.crypto.field import SNARK_FIELD_SIZE
from maci_replica.crypto.poseidon import poseidon_perm


_TWO_128 = 1 << 128
_RATE = 3


class DecryptionError(ValueError):
    """Wrong key or corrupted ciphertext."""


def _initial_state(key: Point, nonce: int, length: int) -> list[int]:
    if not 0 <= nonce < _TWO_128:
        raise ValueError("Cipher nonce must be below 2^128")
    return [0, key[0], key[1], (nonce + length * _TWO_128) % SNARK_FIELD_SIZE]


def ciphertext_length(plaintext_length: int) -> int:
    padded = -(-plaintext_length // _RATE) * _RATE
    return padded + 1


def poseidon_encrypt(plaintext: Sequence[int], key: Point, nonce: int = 0) -> list[int]:
    p = SNARK_FIELD_SIZE
    length = len(plaintext)
    message = list(plaintext)
    while len(message) % _RATE:
        message.append(0)

    state = _initial_state(key, nonce, length)
    ciphertext: list[int] = []
    for i in range(0, len(message), _RATE):
        state = poseidon_perm(state)
        for j in range(_RATE):
            state[j + 1] = (state[j + 1] + message[i + j]) % p
            ciphertext.append(state[j + 1])

    state = poseidon_perm(state)
    ciphertext.append(state[1])
    return ciphertext


def poseidon_decrypt(
    ciphertext: Sequence[int], key: Point, nonce: int, length: int
) -> list[int]:
    """Decrypt and authenticate. Raises DecryptionError on any mismatch."""
    p = SNARK_FIELD_SIZE
    if len(ciphertext) != ciphertext_length(length):
        raise DecryptionError("Ciphertext length does not match plaintext length")

    state = _initial_state(key, nonce, length)
    message: list[int] = []
    body = len(ciphertext) - 1
    for i in range(0, body, _RATE):
        state = poseidon_perm(state)
        for j in range(_RATE):
            message.append((ciphertext[i + j] - state[j + 1]) % p)
            state[j + 1] = ciphertext[i + j]

    if any(message[length:]):
        raise DecryptionError("Non-zero padding in decrypted message")

    state = poseidon_perm(state)
    if ciphertext[-1] != state[1]:
        raise DecryptionError(
            "Authentication failed: wrong key or corrupted ciphertext"
        )
    return message[:length]
