"""Cryptographic primitives: field, Poseidon, Baby Jubjub keys, cipher, Merkle trees, commitments."""

from maci_replica.crypto.keys import Keypair, PrivKey, PubKey, Signature
from maci_replica.crypto.merkle import IncrementalQuinTree, MerkleProof
from maci_replica.crypto.poseidon import poseidon
from maci_replica.crypto.commitment_builder import TallyCommitmentBuilder

__all__ = [
    "Keypair",
    "PrivKey",
    "PubKey",
    "Signature",
    "IncrementalQuinTree",
    "MerkleProof",
    "poseidon",
    "TallyCommitmentBuilder",
]
