"""Ed25519 keypairs with Sui addressing and the Sui intent signing scheme.

Key material, bech32 export and transaction signing are pysui's
``SuiKeyPair``. This module adds the secret key shapes a browser session
hands over and signature verification for replies.
"""

from __future__ import annotations

import hashlib
from typing import Any

import pysui_fastcrypto as pfc
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from pysui.abstracts import SignatureScheme
from pysui.sui.sui_constants import SUI_BECH32_HRP
from pysui.sui.sui_crypto import IntentScope, SuiKeyPair, create_new_keypair, keypair_from_keystring

from sign_relay.crypto.codec import b64, b64d
from sign_relay.wire.bcs import encode_byte_vector

__all__ = [
    "Ed25519Keypair",
    "IntentScope",
    "address_from_public_key",
    "decode_secret_key",
    "verify_signature",
]

SECRET_KEY_LENGTH = 32
SIGNATURE_LENGTH = 64


def intent_message(scope: IntentScope, data: bytes) -> bytes:
    """The bytes hashed for a signature: ``[scope, 0, 0] || message``."""
    # Personal messages are signed as a BCS vector<u8>.
    if scope == IntentScope.PersonalMessage:
        data = encode_byte_vector(data)
    return bytes([scope, 0, 0]) + data


def address_from_public_key(public_key: bytes) -> str:
    return "0x" + hashlib.blake2b(bytes([SignatureScheme.ED25519]) + public_key, digest_size=32).hexdigest()


def _secret_from_raw(raw: bytes) -> bytes:
    if len(raw) == SECRET_KEY_LENGTH + 1:
        if raw[0] != SignatureScheme.ED25519:
            raise ValueError(f"Unsupported key scheme flag {raw[0]:#x}; only Ed25519 is supported")
        return raw[1:]
    # 64-byte legacy form is secret || public key.
    if len(raw) in (SECRET_KEY_LENGTH, SECRET_KEY_LENGTH * 2):
        return raw[:SECRET_KEY_LENGTH]
    raise ValueError(f"Invalid secret key length {len(raw)}")


def decode_secret_key(value: Any) -> bytes:
    """Normalize a serialized secret key to its 32-byte Ed25519 seed.

    Accepts a ``suiprivkey1...`` bech32 string, a base64 string, a list of
    ints, or the ``{"0": .., "1": ..}`` object a byte array becomes once
    JSON-serialized by a browser.
    """
    if isinstance(value, str):
        if value.startswith(SUI_BECH32_HRP):
            keypair = keypair_from_keystring(value)
            if keypair.scheme is not SignatureScheme.ED25519:
                raise ValueError(f"Unsupported key scheme {keypair.scheme.as_str()}; only Ed25519 is supported")
            return keypair.private_key.key_bytes
        return _secret_from_raw(b64d(value))

    if isinstance(value, dict):
        try:
            value = [value[str(i)] for i in range(len(value))]
        except KeyError as exc:
            raise ValueError("Secret key object is not an indexed byte array") from exc

    if isinstance(value, (list, tuple, bytes, bytearray)):
        try:
            return _secret_from_raw(bytes(value))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid secret key bytes: {exc}") from exc

    raise ValueError(f"Unsupported secret key type {type(value).__name__}")


class Ed25519Keypair:
    """An Ed25519 signing identity on Sui, backed by a pysui ``SuiKeyPair``."""

    def __init__(self, keypair: SuiKeyPair) -> None:
        if keypair.scheme is not SignatureScheme.ED25519:
            raise ValueError(f"Expected an Ed25519 keypair, got {keypair.scheme.as_str()}")
        self._keypair = keypair

    @classmethod
    def generate(cls) -> Ed25519Keypair:
        _, keypair = create_new_keypair(SignatureScheme.ED25519)
        return cls(keypair)

    @classmethod
    def from_seed(cls, seed: bytes) -> Ed25519Keypair:
        if len(seed) != SECRET_KEY_LENGTH:
            raise ValueError(f"Invalid Ed25519 seed length {len(seed)}")
        return cls(SuiKeyPair.from_b64(b64(bytes([SignatureScheme.ED25519]) + seed)))

    @classmethod
    def from_secret_key(cls, value: Any) -> Ed25519Keypair:
        """Rebuild a keypair from any form accepted by :func:`decode_secret_key`."""
        return cls.from_seed(decode_secret_key(value))

    @property
    def public_key(self) -> bytes:
        return self._keypair.public_key.key_bytes

    @property
    def address(self) -> str:
        return address_from_public_key(self.public_key)

    def export_secret_key(self) -> str:
        """Export as a ``suiprivkey1...`` bech32 string."""
        return self._keypair.to_bech32()

    def sign_transaction(self, tx_bytes: bytes) -> str:
        """Sign BCS ``TransactionData``; returns the base64 serialized signature.

        Serialized form: ``flag || signature(64) || public key(32)``.
        """
        return self._keypair.new_sign_secure(b64(tx_bytes))

    def sign_personal_message(self, message: bytes) -> str:
        # SuiKeyPair.sign_personal_message re-encodes each byte as a minimal
        # int, which drops 0x00 bytes, so the vector<u8> is built here.
        signature = pfc.sign_digest(
            self._keypair.scheme,
            self._keypair.private_key.key_bytes,
            b64(encode_byte_vector(message)),
            [IntentScope.PersonalMessage, 0, 0],
        )
        return b64(bytes(signature))


def verify_signature(scope: IntentScope, data: bytes, serialized: str) -> str:
    """Verify a serialized Ed25519 signature; returns the signer's address.

    Raises ``ValueError`` if the signature is malformed or does not verify.
    """
    raw = b64d(serialized)
    if len(raw) != 1 + SIGNATURE_LENGTH + SECRET_KEY_LENGTH or raw[0] != SignatureScheme.ED25519:
        raise ValueError("Not a serialized Ed25519 signature")
    signature = raw[1:1 + SIGNATURE_LENGTH]
    public_key = raw[1 + SIGNATURE_LENGTH:]
    digest = hashlib.blake2b(intent_message(scope, data), digest_size=32).digest()
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, digest)
    except InvalidSignature as exc:
        raise ValueError("Signature does not verify") from exc
    return address_from_public_key(public_key)
