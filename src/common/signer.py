from __future__ import annotations

import base64
import binascii
import hashlib
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat


ED25519_FLAG = 0x00
# IntentScope.TransactionData, IntentVersion.V0, AppId.Sui
TRANSACTION_INTENT = bytes([0, 0, 0])


class SignerError(ValueError):
    """Admin key material could not be decoded or used."""


class SignerClosedError(SignerError):
    """The signer was closed and its key dropped."""


def _blake2b256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _wipe(buf: bytearray) -> None:
    for i in range(len(buf)):
        buf[i] = 0


def sui_address(public_key: bytes) -> str:
    """Sui address of an Ed25519 public key: blake2b-256(flag || pubkey)."""
    return "0x" + _blake2b256(bytes([ED25519_FLAG]) + public_key).hex()


class AdminSigner:
    """
    Ed25519 signer for the service's admin wallet.

    Accepts the base64 encodings produced by the Sui tooling:
    - 32 bytes: raw private key seed
    - 33 bytes: keystore entry (`0x00` scheme flag + seed)
    - 64 bytes: legacy seed || public key

    The decoded buffer is zeroed as soon as the key object is built, and
    `close()` drops the key; the signer is usable as a context manager.
    """

    def __init__(self, private_key: Ed25519PrivateKey) -> None:
        self._key: Optional[Ed25519PrivateKey] = private_key
        self._public_key = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        self._address = sui_address(self._public_key)

    @classmethod
    def from_encoded(cls, encoded: Union[str, bytes]) -> "AdminSigner":
        if not encoded:
            raise SignerError("admin private key is empty")
        try:
            raw = bytearray(base64.b64decode(encoded, validate=True))
        except (binascii.Error, ValueError) as exc:
            raise SignerError("admin private key is not valid base64") from exc

        seed = bytearray()
        try:
            if len(raw) == 33:
                if raw[0] != ED25519_FLAG:
                    raise SignerError(f"unsupported key scheme flag 0x{raw[0]:02x}; only Ed25519 is supported")
                seed = raw[1:]
            elif len(raw) in (32, 64):
                seed = raw[:32]
            else:
                raise SignerError(f"unexpected admin key length {len(raw)} bytes")

            key = Ed25519PrivateKey.from_private_bytes(bytes(seed))
            signer = cls(key)
            if len(raw) == 64 and bytes(raw[32:]) != signer.public_key:
                signer.close()
                raise SignerError("public key half of the admin key does not match its seed")
            return signer
        finally:
            _wipe(seed)
            _wipe(raw)

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._public_key

    @property
    def closed(self) -> bool:
        return self._key is None

    def sign_transaction(self, tx_bytes: Union[str, bytes]) -> str:
        """
        Sign BCS transaction bytes (raw, or base64 as returned by the RPC).

        Returns the serialized signature expected by
        `sui_executeTransactionBlock`: base64(flag || signature || pubkey).
        """
        if self._key is None:
            raise SignerClosedError("signer has been closed")
        if isinstance(tx_bytes, str):
            tx_bytes = base64.b64decode(tx_bytes)
        digest = _blake2b256(TRANSACTION_INTENT + tx_bytes)
        signature = self._key.sign(digest)
        return base64.b64encode(bytes([ED25519_FLAG]) + signature + self._public_key).decode("ascii")

    def close(self) -> None:
        self._key = None

    def __enter__(self) -> "AdminSigner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"AdminSigner(address={self._address!r})"


__all__ = [
    "AdminSigner",
    "SignerError",
    "SignerClosedError",
    "sui_address",
]
