"""Poseidon hash over the BN254 scalar field.

Poseidon is the SNARK-friendly hash used for every tree node, chain hash,
signature digest and commitment in the protocol. The permutation uses the
x^5 S-box, 8 full rounds and a width-dependent number of partial rounds.

Round constants and the Cauchy MDS matrix are derived with the Grain LFSR
procedure of the Poseidon reference parameter script, so every width is
generated from its parameters alone and nothing is hard-coded here.
Parameters are derived lazily and cached per width.

Hashing n inputs uses width t = n + 1: the state is [0, *inputs] and the
digest is the first state element after the permutation.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence

from maci_replica.crypto.field import SNARK_FIELD_SIZE, is_field_element


FULL_ROUNDS = 8
# Partial rounds indexed by width, starting at t = 2.
PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)
MAX_INPUTS = 5

_FIELD_BITS = SNARK_FIELD_SIZE.bit_length()


@dataclass(frozen=True)
class PoseidonParams:
    """Permutation parameters for a single state width."""
    width: int
    full_rounds: int
    partial_rounds: int
    round_constants: tuple[int, ...]
    mds: tuple[tuple[int, ...], ...]


class _GrainLFSR:
    """80-bit self-shrinking Grain LFSR seeded with the permutation parameters."""

    def __init__(self, width: int, full_rounds: int, partial_rounds: int) -> None:
        seed: list[int] = []
        seed += _bits(1, 2)  # prime field
        seed += _bits(0, 4)  # x^alpha S-box
        seed += _bits(_FIELD_BITS, 12)
        seed += _bits(width, 12)
        seed += _bits(full_rounds, 10)
        seed += _bits(partial_rounds, 10)
        seed += [1] * 30
        self._state = deque(seed)
        for _ in range(160):
            self._clock()

    def _clock(self) -> int:
        s = self._state
        bit = s[62] ^ s[51] ^ s[38] ^ s[23] ^ s[13] ^ s[0]
        s.popleft()
        s.append(bit)
        return bit

    def next_bit(self) -> int:
        # Self-shrinking: emit the second bit of a pair only when the first is 1.
        while True:
            first = self._clock()
            second = self._clock()
            if first == 1:
                return second

    def next_int(self, num_bits: int) -> int:
        value = 0
        for _ in range(num_bits):
            value = (value << 1) | self.next_bit()
        return value

    def next_field_element(self) -> int:
        """Rejection-sampled element, as used for round constants."""
        while True:
            value = self.next_int(_FIELD_BITS)
            if value < SNARK_FIELD_SIZE:
                return value


def _bits(value: int, width: int) -> list[int]:
    return [int(b) for b in bin(value)[2:].zfill(width)]


@lru_cache(maxsize=None)
def params_for_width(width: int) -> PoseidonParams:
    """Derive (and cache) the permutation parameters for a state width."""
    if not 2 <= width < 2 + len(PARTIAL_ROUNDS):
        raise ValueError(f"Unsupported Poseidon width: {width}")

    partial_rounds = PARTIAL_ROUNDS[width - 2]
    grain = _GrainLFSR(width, FULL_ROUNDS, partial_rounds)

    num_constants = (FULL_ROUNDS + partial_rounds) * width
    constants = tuple(grain.next_field_element() for _ in range(num_constants))

    p = SNARK_FIELD_SIZE
    while True:
        draws = [grain.next_int(_FIELD_BITS) % p for _ in range(2 * width)]
        if len(set(draws)) != len(draws):
            continue
        xs, ys = draws[:width], draws[width:]
        if any((x + y) % p == 0 for x in xs for y in ys):
            continue
        mds = tuple(
            tuple(pow(x + y, -1, p) for y in ys)
            for x in xs
        )
        break

    return PoseidonParams(
        width=width,
        full_rounds=FULL_ROUNDS,
        partial_rounds=partial_rounds,
        round_constants=constants,
        mds=mds,
    )


def poseidon_perm(state: Sequence[int]) -> list[int]:
    """Apply the full Poseidon permutation to a state of field elements."""
    width = len(state)
    params = params_for_width(width)
    p = SNARK_FIELD_SIZE
    constants = params.round_constants
    mds = params.mds
    half_full = params.full_rounds // 2
    total_rounds = params.full_rounds + params.partial_rounds

    current = [int(s) % p for s in state]
    for r in range(total_rounds):
        offset = r * width
        current = [(s + constants[offset + i]) % p for i, s in enumerate(current)]
        if r < half_full or r >= half_full + params.partial_rounds:
            current = [pow(s, 5, p) for s in current]
        else:
            current[0] = pow(current[0], 5, p)
        current = [sum(m * s for m, s in zip(row, current)) % p for row in mds]
    return current


def poseidon(inputs: Sequence[int]) -> int:
    """Hash 1..MAX_INPUTS field elements to a single field element."""
    if not 1 <= len(inputs) <= MAX_INPUTS:
        raise ValueError(
            f"Poseidon accepts 1..{MAX_INPUTS} inputs, got {len(inputs)}"
        )
    for value in inputs:
        if not is_field_element(value):
            raise ValueError(f"Poseidon input is not a field element: {value!r}")
    return poseidon_perm([0, *inputs])[0]


def hash_one(value: int) -> int:
    return poseidon([value])


def hash_left_right(left: int, right: int) -> int:
    return poseidon([left, right])


def hash2(values: Sequence[int]) -> int:
    _require_length(values, 2)
    return poseidon(values)


def hash3(values: Sequence[int]) -> int:
    _require_length(values, 3)
    return poseidon(values)


def hash4(values: Sequence[int]) -> int:
    _require_length(values, 4)
    return poseidon(values)


def hash5(values: Sequence[int]) -> int:
    _require_length(values, 5)
    return poseidon(values)


def _require_length(values: Sequence[int], n: int) -> None:
    if len(values) != n:
        raise ValueError(f"Expected {n} elements, got {len(values)}")
