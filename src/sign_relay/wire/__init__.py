"""Wire formats: relay chunk layout and Sui transaction bytes."""

from sign_relay.wire.chunks import pack, pack_chunked, unpack
from sign_relay.wire.transaction import DecodedTransaction, build_transfer_reply, decode_transaction

__all__ = [
    "DecodedTransaction",
    "build_transfer_reply",
    "decode_transaction",
    "pack",
    "pack_chunked",
    "unpack",
]
