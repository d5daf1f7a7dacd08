from __future__ import annotations

import base64
import hashlib

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from common.signer import AdminSigner, SignerClosedError, SignerError, sui_address


SEED = bytes(range(32))


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_keystore_and_raw_seed_encodings_give_same_address():
    raw = AdminSigner.from_encoded(_b64(SEED))
    keystore = AdminSigner.from_encoded(_b64(b"\x00" + SEED))
    legacy = AdminSigner.from_encoded(_b64(SEED + raw.public_key))

    assert raw.address == keystore.address == legacy.address
    assert raw.address.startswith("0x")
    assert len(raw.address) == 66
    assert raw.address == sui_address(raw.public_key)


def test_address_is_blake2b_of_flag_and_public_key():
    signer = AdminSigner.from_encoded(_b64(SEED))
    expected = hashlib.blake2b(b"\x00" + signer.public_key, digest_size=32).hexdigest()
    assert signer.address == "0x" + expected


def test_signature_verifies_over_intent_digest():
    signer = AdminSigner.from_encoded(_b64(SEED))
    tx_bytes = b"\x00\x01fake-bcs-transaction"

    serialized = base64.b64decode(signer.sign_transaction(_b64(tx_bytes)))

    assert len(serialized) == 1 + 64 + 32
    assert serialized[0] == 0x00
    assert serialized[65:] == signer.public_key
    digest = hashlib.blake2b(b"\x00\x00\x00" + tx_bytes, digest_size=32).digest()
    # raises InvalidSignature on mismatch
    Ed25519PublicKey.from_public_bytes(signer.public_key).verify(serialized[1:65], digest)


@pytest.mark.parametrize(
    "encoded",
    [
        "",
        "not base64!!",
        base64.b64encode(b"\x01" + SEED).decode(),  # secp256k1 flag
        base64.b64encode(b"short").decode(),
        base64.b64encode(SEED + b"\x00" * 32).decode(),  # wrong public half
    ],
)
def test_rejects_bad_key_material(encoded):
    with pytest.raises(SignerError):
        AdminSigner.from_encoded(encoded)


def test_closed_signer_refuses_to_sign_and_hides_key_in_repr():
    with AdminSigner.from_encoded(_b64(SEED)) as signer:
        assert "address=" in repr(signer)
        assert _b64(SEED) not in repr(signer)

    assert signer.closed
    with pytest.raises(SignerClosedError):
        signer.sign_transaction(b"tx")
