"""Envelope encryption and PIN handling for relay traffic."""

from sign_relay.crypto.codec import CryptoCodec, decrypt, derive_key, encrypt
from sign_relay.crypto.vault import PinPrompt, PinVault

__all__ = [
    "CryptoCodec",
    "PinPrompt",
    "PinVault",
    "decrypt",
    "derive_key",
    "encrypt",
]
