"""Sui CLI keystore access.

The Sui CLI keeps its keys in ``~/.sui/sui_config/sui.keystore``: a JSON
list of base64 strings, each ``flag || 32-byte secret``.
"""

from __future__ import annotations

import json
from pathlib import Path

from sign_relay.chain.keypair import Ed25519Keypair
from sign_relay.wire.bcs import normalize_address

DEFAULT_KEYSTORE_PATH = Path.home() / ".sui" / "sui_config" / "sui.keystore"


def load_keypairs(keystore_path: Path) -> dict[str, Ed25519Keypair]:
    """Load every Ed25519 key from a keystore, keyed by address.

    Keys using other signature schemes are skipped.

    Raises
    ------
    FileNotFoundError
        If no keystore file exists.
    ValueError
        If the file is not a JSON list.
    """
    if not keystore_path.exists():
        raise FileNotFoundError(f"No keystore found at {keystore_path}")

    data = json.loads(keystore_path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"Keystore {keystore_path} is not a JSON list")

    keypairs: dict[str, Ed25519Keypair] = {}
    for entry in data:
        try:
            keypair = Ed25519Keypair.from_secret_key(entry)
        except ValueError:
            continue
        keypairs[keypair.address] = keypair
    return keypairs


def list_addresses(keystore_path: Path) -> list[str]:
    """Return the addresses of the Ed25519 keys in a keystore."""
    return list(load_keypairs(keystore_path).keys())


def load_keypair(keystore_path: Path, address: str | None = None) -> Ed25519Keypair:
    """Load the key for *address*, or the only key if *address* is ``None``.

    Raises
    ------
    KeyError
        If the address is not in the keystore, or no address was given and
        the keystore does not hold exactly one key.
    """
    keypairs = load_keypairs(keystore_path)
    if address is None:
        if len(keypairs) != 1:
            raise KeyError(
                f"Keystore {keystore_path} holds {len(keypairs)} keys; "
                "choose one with --address."
            )
        return next(iter(keypairs.values()))

    normalized = normalize_address(address)
    if normalized not in keypairs:
        raise KeyError(f"Address {normalized} not found in {keystore_path}")
    return keypairs[normalized]
