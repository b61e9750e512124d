"""BCS helpers for the relay's own pure inputs: the ``bool`` flag and ``vector<u8>`` chunks.

Sui transaction structures live in ``pysui.sui.sui_bcs``; these are the two
standalone values the chunk layout needs, on top of canoser.
"""

from __future__ import annotations

from canoser import BoolT, BytesT, Cursor

from sign_relay.errors import TransactionDecodeError

ADDRESS_LENGTH = 32

# What canoser raises on malformed input. A truncated or overlong ULEB128
# length surfaces as NameError from its Uint32 parser.
BCS_DECODE_ERRORS = (OSError, TypeError, ValueError, IndexError, NameError)

_BYTE_VECTOR = BytesT()


def normalize_address(address: str) -> str:
    """Return *address* as ``0x`` followed by 64 lowercase hex characters."""
    raw = address.lower()
    if raw.startswith("0x"):
        raw = raw[2:]
    if not raw or len(raw) > ADDRESS_LENGTH * 2:
        raise ValueError(f"Invalid Sui address: {address!r}")
    try:
        int(raw, 16)
    except ValueError as exc:
        raise ValueError(f"Invalid Sui address: {address!r}") from exc
    return "0x" + raw.rjust(ADDRESS_LENGTH * 2, "0")


def decode_bool(data: bytes) -> bool:
    """Decode a standalone BCS bool; the buffer must hold exactly one byte."""
    if len(data) != 1:
        raise TransactionDecodeError(f"BCS bool must be 1 byte, got {len(data)}")
    try:
        return BoolT.decode_bytes(data)
    except TypeError as exc:
        raise TransactionDecodeError(f"Invalid BCS bool byte: {data[0]:#x}") from exc


def decode_byte_vector(data: bytes) -> bytes:
    """Decode a standalone BCS ``vector<u8>``; no trailing bytes allowed."""
    cursor = Cursor(data)
    try:
        value = _BYTE_VECTOR.decode(cursor)
    except BCS_DECODE_ERRORS as exc:
        raise TransactionDecodeError(f"Invalid BCS vector<u8>: {exc}") from exc
    if not cursor.is_finished():
        raise TransactionDecodeError("Trailing bytes after BCS vector<u8>")
    return value


def encode_bool(value: bool) -> bytes:
    return BoolT.encode(value)


def encode_byte_vector(data: bytes) -> bytes:
    return _BYTE_VECTOR.encode(bytes(data))
