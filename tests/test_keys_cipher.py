"""Tests for Baby Jubjub keys, signatures, ECDH and the Poseidon cipher."""

import pytest

from maci_replica.crypto.babyjub import BASE8, IDENTITY, SUBGROUP_ORDER, in_curve, mul_point_escalar
from maci_replica.crypto.cipher import (
    DecryptionError,
    ciphertext_length,
    poseidon_decrypt,
    poseidon_encrypt,
)
from maci_replica.crypto.keys import (
    Keypair,
    PrivKey,
    PubKey,
    Signature,
    gen_ecdh_shared_key,
    sign,
    verify_signature,
)
from maci_replica.models.constants import PAD_KEY

from conftest import make_keypair


class TestCurve:
    def test_base8_on_curve(self) -> None:
        assert in_curve(BASE8)

    def test_subgroup_order(self) -> None:
        assert mul_point_escalar(BASE8, SUBGROUP_ORDER) == IDENTITY

    def test_pad_key_on_curve(self) -> None:
        assert PAD_KEY.is_valid()


class TestKeys:
    def test_public_key_on_curve(self) -> None:
        kp = make_keypair(1)
        assert kp.pub_key.is_valid()

    def test_public_key_deterministic(self) -> None:
        assert make_keypair(5).pub_key == make_keypair(5).pub_key
        assert make_keypair(5).pub_key != make_keypair(6).pub_key

    def test_generate(self) -> None:
        kp = Keypair.generate()
        assert kp.priv_key.public_key() == kp.pub_key

    def test_pub_key_serialize_round_trip(self) -> None:
        pk = make_keypair(3).pub_key
        serialized = pk.serialize()
        assert serialized.startswith("macipk.")
        assert PubKey.deserialize(serialized) == pk

    def test_priv_key_serialize_round_trip(self) -> None:
        sk = PrivKey(123456789)
        assert PrivKey.deserialize(sk.serialize()) == sk

    def test_deserialize_rejects_wrong_prefix(self) -> None:
        with pytest.raises(ValueError, match="Not a serialized public key"):
            PubKey.deserialize("macisk." + "0" * 128)

    def test_priv_key_repr_hides_raw(self) -> None:
        assert "987654321" not in repr(PrivKey(987654321))


class TestSignatures:
    def test_sign_and_verify(self) -> None:
        kp = make_keypair(11)
        sig = sign(kp.priv_key, 12345)
        assert verify_signature(12345, sig, kp.pub_key)

    def test_wrong_message_fails(self) -> None:
        kp = make_keypair(11)
        sig = sign(kp.priv_key, 12345)
        assert not verify_signature(12346, sig, kp.pub_key)

    def test_wrong_key_fails(self) -> None:
        sig = sign(make_keypair(11).priv_key, 12345)
        assert not verify_signature(12345, sig, make_keypair(12).pub_key)

    def test_malformed_signature_does_not_raise(self) -> None:
        kp = make_keypair(11)
        assert not verify_signature(1, Signature(r8=(1, 1), s=0), kp.pub_key)
        sig = sign(kp.priv_key, 1)
        assert not verify_signature(1, Signature(r8=sig.r8, s=SUBGROUP_ORDER), kp.pub_key)


class TestEcdh:
    def test_shared_key_symmetric(self) -> None:
        a = make_keypair(21)
        b = make_keypair(22)
        assert gen_ecdh_shared_key(a.priv_key, b.pub_key) == gen_ecdh_shared_key(
            b.priv_key, a.pub_key
        )

    def test_shared_key_differs_per_pair(self) -> None:
        a, b, c = make_keypair(21), make_keypair(22), make_keypair(23)
        assert gen_ecdh_shared_key(a.priv_key, b.pub_key) != gen_ecdh_shared_key(
            a.priv_key, c.pub_key
        )


class TestCipher:
    def _key(self):
        return gen_ecdh_shared_key(make_keypair(31).priv_key, make_keypair(32).pub_key)

    def test_ciphertext_length(self) -> None:
        assert ciphertext_length(7) == 10
        assert ciphertext_length(3) == 4
        assert ciphertext_length(1) == 4

    def test_round_trip(self) -> None:
        key = self._key()
        plaintext = [1, 2, 3, 4, 5, 6, 7]
        ciphertext = poseidon_encrypt(plaintext, key, nonce=0)
        assert len(ciphertext) == 10
        assert poseidon_decrypt(ciphertext, key, 0, 7) == plaintext

    def test_wrong_key_rejected(self) -> None:
        ciphertext = poseidon_encrypt([1, 2, 3, 4, 5, 6, 7], self._key(), 0)
        other = gen_ecdh_shared_key(make_keypair(33).priv_key, make_keypair(32).pub_key)
        with pytest.raises(DecryptionError):
            poseidon_decrypt(ciphertext, other, 0, 7)

    def test_tampered_ciphertext_rejected(self) -> None:
        key = self._key()
        ciphertext = poseidon_encrypt([1, 2, 3, 4, 5, 6, 7], key, 0)
        ciphertext[2] = (ciphertext[2] + 1) % (2 ** 200)
        with pytest.raises(DecryptionError):
            poseidon_decrypt(ciphertext, key, 0, 7)

    def test_wrong_nonce_rejected(self) -> None:
        key = self._key()
        ciphertext = poseidon_encrypt([9, 8, 7], key, 5)
        with pytest.raises(DecryptionError):
            poseidon_decrypt(ciphertext, key, 6, 3)

    def test_length_mismatch_rejected(self) -> None:
        key = self._key()
        ciphertext = poseidon_encrypt([1, 2, 3], key, 0)
        with pytest.raises(DecryptionError, match="length"):
            poseidon_decrypt(ciphertext, key, 0, 7)
