"""Protocol-wide sentinel values."""

from __future__ import annotations

from maci_replica.crypto.babyjub import BASE8, SUBGROUP_ORDER, mul_point_escalar
from maci_replica.crypto.field import NOTHING_UP_MY_SLEEVE
from maci_replica.crypto.keys import PubKey


# Encryption key carried by padding messages and the blank state leaf.
# Messages bearing it are skipped before any decryption is attempted.
PAD_KEY = PubKey.from_point(
    mul_point_escalar(BASE8, NOTHING_UP_MY_SLEEVE % SUBGROUP_ORDER)
)

MESSAGE_DATA_LENGTH = 10
COMMAND_PLAINTEXT_LENGTH = 7
