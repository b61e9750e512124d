"""Pack and unpack encrypted envelopes into transaction pure inputs.

Layout of a relay transaction's inputs::

    #0      bool         always ``false``; ``true`` is reserved
    #1..N   vector<u8>   envelope chunks, concatenated in input order

Requests can carry a whole unsigned transaction, so senders split the
envelope across as many chunks as one pure input can hold. Replies are
small and always use a single chunk.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sign_relay.chain.models import TransactionInput
from sign_relay.errors import InvalidTransactionShape, TransactionDecodeError
from sign_relay.wire.bcs import decode_bool, decode_byte_vector, encode_bool, encode_byte_vector

logger = logging.getLogger("sign_relay.wire.chunks")

SENTINEL = False
# Sui caps a single pure argument at 16 KiB of BCS bytes.
MAX_PURE_ARGUMENT_SIZE = 16 * 1024
# Room for the ULEB128 length prefix of a full-size chunk.
DEFAULT_CHUNK_SIZE = MAX_PURE_ARGUMENT_SIZE - 4


def _read_flag(first: TransactionInput) -> bool:
    if not first.is_pure:
        raise InvalidTransactionShape(f"Input #0 must be a pure value, got '{first.type}'")

    raw = first.raw_bytes
    if raw is not None:
        try:
            return decode_bool(raw)
        except TransactionDecodeError as exc:
            raise InvalidTransactionShape(f"Input #0 is not a bool: {exc}") from exc

    if first.value_type == "bool" and isinstance(first.value, bool):
        return first.value

    raise InvalidTransactionShape(
        f"Input #0 is not a bool (valueType={first.value_type!r})"
    )


def _read_chunk(index: int, item: TransactionInput) -> bytes | None:
    raw = item.raw_bytes
    if raw is not None:
        try:
            return decode_byte_vector(raw)
        except TransactionDecodeError as exc:
            raise InvalidTransactionShape(
                f"Input #{index} is not a vector<u8>: {exc}"
            ) from exc

    if item.is_pure and item.value_type == "vector<u8>" and isinstance(item.value, list):
        return bytes(item.value)

    # Object inputs and node-decoded pure values (e.g. a transfer recipient)
    # are not part of the payload.
    logger.debug(f"Skipping non-payload input #{index} (type={item.type}, valueType={item.value_type})")
    return None


def unpack(inputs: Sequence[TransactionInput]) -> bytes:
    """Reassemble the envelope carried by a relay transaction.

    Raises
    ------
    InvalidTransactionShape
        If input #0 is not the ``false`` sentinel, a payload input is not a
        ``vector<u8>``, or there is no payload at all.
    """
    if not inputs:
        raise InvalidTransactionShape("Transaction has no inputs")

    if _read_flag(inputs[0]) != SENTINEL:
        raise InvalidTransactionShape("Input #0 must be false; true is reserved")

    chunks: list[bytes] = []
    for index, item in enumerate(inputs[1:], start=1):
        chunk = _read_chunk(index, item)
        if chunk is not None:
            chunks.append(chunk)

    if not chunks:
        raise InvalidTransactionShape("Transaction carries no envelope chunks")

    return b"".join(chunks)


def pack(envelope: bytes) -> list[bytes]:
    """Encode a reply envelope as exactly ``[false, vector<u8>(envelope)]``."""
    return [encode_bool(SENTINEL), encode_byte_vector(envelope)]


def split(envelope: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """Split *envelope* into consecutive slices of at most *chunk_size* bytes."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not envelope:
        return [b""]
    return [envelope[i:i + chunk_size] for i in range(0, len(envelope), chunk_size)]


def pack_chunked(envelope: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """Encode a request envelope as ``false`` followed by one or more chunks."""
    return [encode_bool(SENTINEL)] + [encode_byte_vector(c) for c in split(envelope, chunk_size)]
