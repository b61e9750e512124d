"""Exception types raised by the signing relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for every error raised by :mod:`sign_relay`."""


class InvalidTransactionShape(RelayError, ValueError):
    """A transaction's inputs do not follow the relay chunk layout.

    Only the offending message is dropped; the monitor loop keeps going.
    """


class DecryptionError(RelayError):
    """An envelope failed AES-GCM authentication (wrong PIN or corrupted data)."""


class PinCancelled(RelayError):
    """The operator dismissed the PIN prompt without a valid PIN."""


class WalletRejected(RelayError):
    """The operator declined a signing request."""


class ChainUnavailable(RelayError):
    """A chain query or submission failed."""


class TransactionDecodeError(RelayError, ValueError):
    """BCS bytes could not be decoded into the expected structure."""
