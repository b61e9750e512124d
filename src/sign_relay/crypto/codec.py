"""PIN-keyed envelope encryption (PBKDF2-SHA256 + AES-256-GCM).

Envelope layout::

    salt (16 bytes) | nonce (12 bytes) | ciphertext + GCM tag

The textual form of an envelope is standard base64.
"""

from __future__ import annotations

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sign_relay.errors import DecryptionError

SALT_LENGTH = 16
NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32
PBKDF2_ITERATIONS = 100_000


def b64(data: bytes) -> str:
    """Encode bytes to a standard base64 string."""
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    """Decode a standard base64 string, raising ``ValueError`` on bad input."""
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"Invalid base64 data: {exc}") from exc


class CryptoCodec:
    """Symmetric encryption of opaque payloads keyed by a human PIN.

    Parameters
    ----------
    iterations:
        PBKDF2 iteration count. Both ends of the relay must agree on it;
        the default is the value the deployment tooling uses.
    """

    def __init__(self, iterations: int = PBKDF2_ITERATIONS) -> None:
        self.iterations = iterations

    def derive_key(self, pin: str, salt: bytes) -> bytes:
        """Derive a 256-bit AES key from *pin* and *salt*."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self.iterations,
        )
        return kdf.derive(pin.encode("utf-8"))

    def encrypt(self, plaintext: bytes, pin: str) -> str:
        """Encrypt *plaintext* and return the base64 envelope.

        A fresh salt and nonce are drawn on every call, so encrypting the
        same payload twice never yields the same envelope.
        """
        salt = os.urandom(SALT_LENGTH)
        nonce = os.urandom(NONCE_LENGTH)
        key = self.derive_key(pin, salt)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return b64(salt + nonce + ciphertext)

    def decrypt(self, envelope: bytes | str, pin: str) -> bytes:
        """Decrypt an envelope produced by :meth:`encrypt`.

        Parameters
        ----------
        envelope:
            Raw envelope bytes, or its base64 text.
        pin:
            Candidate PIN.

        Raises
        ------
        DecryptionError
            If the envelope is malformed or the authentication tag does not
            verify. This is the only way a wrong PIN is detected.
        """
        if isinstance(envelope, str):
            try:
                envelope = b64d(envelope)
            except ValueError as exc:
                raise DecryptionError(str(exc)) from exc

        if len(envelope) < SALT_LENGTH + NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError(
                f"Envelope too short ({len(envelope)} bytes) to hold salt, nonce and tag."
            )

        salt = envelope[:SALT_LENGTH]
        nonce = envelope[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH]
        ciphertext = envelope[SALT_LENGTH + NONCE_LENGTH:]

        key = self.derive_key(pin, salt)
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("Envelope authentication failed.") from exc


_default_codec = CryptoCodec()


def derive_key(pin: str, salt: bytes) -> bytes:
    return _default_codec.derive_key(pin, salt)


def encrypt(plaintext: bytes, pin: str) -> str:
    return _default_codec.encrypt(plaintext, pin)


def decrypt(envelope: bytes | str, pin: str) -> bytes:
    return _default_codec.decrypt(envelope, pin)
