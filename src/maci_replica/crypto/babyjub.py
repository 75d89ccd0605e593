"""Baby Jubjub twisted Edwards curve over the BN254 scalar field.

    a*x^2 + y^2 = 1 + d*x^2*y^2,  a = 168700, d = 168696

Points are plain (x, y) tuples of field elements. BASE8 generates the
prime-order subgroup used for keys and signatures.
"""

from __future__ import annotations

from maci_replica.crypto.field import SNARK_FIELD_SIZE


Point = tuple[int, int]

A = 168700
D = 168696

IDENTITY: Point = (0, 1)

BASE8: Point = (
    5299619240641551281634865583518297030282874472190772894086521144482721001553,
    16950150798460657717958625567821834550301663161624707787222815936182638968203,
)

CURVE_ORDER = (
    21888242871839275222246405745257275088614511777268538073601725287587578984328
)
SUBGROUP_ORDER = CURVE_ORDER >> 3


def add_point(p1: Point, p2: Point) -> Point:
    p = SNARK_FIELD_SIZE
    x1, y1 = p1
    x2, y2 = p2
    k = D * x1 * x2 * y1 * y2 % p
    x3 = (x1 * y2 + y1 * x2) * pow(1 + k, -1, p) % p
    y3 = (y1 * y2 - A * x1 * x2) * pow(1 - k, -1, p) % p
    return (x3, y3)


def mul_point_escalar(base: Point, scalar: int) -> Point:
    """Double-and-add scalar multiplication."""
    if scalar < 0:
        raise ValueError("Scalar must be non-negative")
    result = IDENTITY
    addend = base
    while scalar:
        if scalar & 1:
            result = add_point(result, addend)
        addend = add_point(addend, addend)
        scalar >>= 1
    return result


def in_curve(point: Point) -> bool:
    p = SNARK_FIELD_SIZE
    x, y = point
    if not (0 <= x < p and 0 <= y < p):
        return False
    x2 = x * x % p
    y2 = y * y % p
    return (A * x2 + y2) % p == (1 + D * x2 * y2) % p
