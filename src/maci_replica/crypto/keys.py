"""Key pairs, EdDSA-Poseidon signatures and ECDH over Baby Jubjub.

A private key is a field element. Its signing scalar is derived by hashing
the key with BLAKE2b-512 and pruning the low half, so the scalar is a
multiple of 8 and the public key BASE8 * (scalar >> 3) lies in the
prime-order subgroup.

Signatures follow EdDSA with Poseidon as the challenge hash:
    R8 = BASE8 * r,  S = r + H(R8, A, msg) * s
    valid iff BASE8 * S == R8 + A * (8 * H(R8, A, msg))
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass, field

from maci_replica.crypto.babyjub import (
    BASE8,
    SUBGROUP_ORDER,
    Point,
    add_point,
    in_curve,
    mul_point_escalar,
)
from maci_replica.crypto.field import SNARK_FIELD_SIZE, is_field_element
from maci_replica.crypto.poseidon import hash_left_right, poseidon


SERIALIZED_PRIV_KEY_PREFIX = "macisk."
SERIALIZED_PUB_KEY_PREFIX = "macipk."


def _key_digest(raw: int) -> bytes:
    return hashlib.blake2b(raw.to_bytes(32, "big"), digest_size=64).digest()


def _prune(buff: bytes) -> bytes:
    pruned = bytearray(buff)
    pruned[0] &= 0xF8
    pruned[31] &= 0x7F
    pruned[31] |= 0x40
    return bytes(pruned)


def _signing_scalar(digest: bytes) -> int:
    return int.from_bytes(_prune(digest[:32]), "little")


def format_priv_key_for_babyjub(raw: int) -> int:
    """Scalar used for public key derivation and ECDH."""
    return _signing_scalar(_key_digest(raw)) >> 3


@dataclass(frozen=True)
class PubKey:
    """A Baby Jubjub public key."""
    x: int
    y: int

    def __post_init__(self) -> None:
        if not (is_field_element(self.x) and is_field_element(self.y)):
            raise ValueError("Public key coordinates must be field elements")

    @property
    def point(self) -> Point:
        return (self.x, self.y)

    def as_list(self) -> list[int]:
        return [self.x, self.y]

    def is_valid(self) -> bool:
        return in_curve(self.point)

    def hash(self) -> int:
        return hash_left_right(self.x, self.y)

    def serialize(self) -> str:
        return f"{SERIALIZED_PUB_KEY_PREFIX}{self.x:064x}{self.y:064x}"

    @staticmethod
    def deserialize(serialized: str) -> PubKey:
        if not serialized.startswith(SERIALIZED_PUB_KEY_PREFIX):
            raise ValueError(f"Not a serialized public key: {serialized!r}")
        body = serialized[len(SERIALIZED_PUB_KEY_PREFIX):]
        if len(body) != 128:
            raise ValueError("Serialized public key must hold 128 hex digits")
        return PubKey(int(body[:64], 16), int(body[64:], 16))

    @staticmethod
    def from_point(point: Point) -> PubKey:
        return PubKey(point[0], point[1])


@dataclass(frozen=True)
class PrivKey:
    """A private key: a raw field element."""
    raw: int = field(repr=False)

    def __post_init__(self) -> None:
        if not is_field_element(self.raw):
            raise ValueError("Private key must be a field element")

    @staticmethod
    def random() -> PrivKey:
        return PrivKey(secrets.randbelow(SNARK_FIELD_SIZE))

    def public_key(self) -> PubKey:
        return PubKey.from_point(
            mul_point_escalar(BASE8, format_priv_key_for_babyjub(self.raw))
        )

    def serialize(self) -> str:
        return f"{SERIALIZED_PRIV_KEY_PREFIX}{self.raw:064x}"

    @staticmethod
    def deserialize(serialized: str) -> PrivKey:
        if not serialized.startswith(SERIALIZED_PRIV_KEY_PREFIX):
            raise ValueError("Not a serialized private key")
        return PrivKey(int(serialized[len(SERIALIZED_PRIV_KEY_PREFIX):], 16))


@dataclass(frozen=True)
class Keypair:
    """A private key with its derived public key."""
    priv_key: PrivKey
    pub_key: PubKey

    @staticmethod
    def generate() -> Keypair:
        priv = PrivKey.random()
        return Keypair(priv, priv.public_key())

    @staticmethod
    def from_priv_key(priv: PrivKey) -> Keypair:
        return Keypair(priv, priv.public_key())


@dataclass(frozen=True)
class Signature:
    """EdDSA-Poseidon signature (R8, S)."""
    r8: Point
    s: int

    def as_list(self) -> list[int]:
        return [self.r8[0], self.r8[1], self.s]


def sign(priv_key: PrivKey, message: int) -> Signature:
    """Sign a field element."""
    digest = _key_digest(priv_key.raw)
    s = _signing_scalar(digest)
    a = mul_point_escalar(BASE8, s >> 3)

    nonce_digest = hashlib.blake2b(
        digest[32:] + message.to_bytes(32, "little"), digest_size=64
    ).digest()
    r = int.from_bytes(nonce_digest, "little") % SUBGROUP_ORDER
    r8 = mul_point_escalar(BASE8, r)

    hm = poseidon([r8[0], r8[1], a[0], a[1], message])
    return Signature(r8=r8, s=(r + hm * s) % SUBGROUP_ORDER)


def verify_signature(message: int, signature: Signature, pub_key: PubKey) -> bool:
    """Check an EdDSA-Poseidon signature. Never raises on bad input."""
    if not (in_curve(signature.r8) and pub_key.is_valid()):
        return False
    if not 0 <= signature.s < SUBGROUP_ORDER:
        return False
    if not is_field_element(message):
        return False

    hm = poseidon(
        [signature.r8[0], signature.r8[1], pub_key.x, pub_key.y, message]
    )
    left = mul_point_escalar(BASE8, signature.s)
    right = add_point(signature.r8, mul_point_escalar(pub_key.point, 8 * hm))
    return left == right


def gen_ecdh_shared_key(priv_key: PrivKey, pub_key: PubKey) -> Point:
    """Diffie-Hellman shared point; symmetric in the two key pairs."""
    return mul_point_escalar(pub_key.point, format_priv_key_for_babyjub(priv_key.raw))
