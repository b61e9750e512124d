"""PIN vault: turns "I need the PIN" into an interactive prompt and back.

The relay loop awaits :meth:`PinVault.request_decryption`, which opens the
prompt and suspends on a single-slot future. The UI calls :meth:`submit`
or :meth:`cancel`; a submitted candidate is only accepted once it actually
decrypts the envelope that triggered the prompt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from sign_relay.crypto.codec import CryptoCodec
from sign_relay.errors import DecryptionError, PinCancelled

logger = logging.getLogger("sign_relay.crypto.vault")

INVALID_PIN_MESSAGE = "Invalid PIN. Please try again."


class PinPrompt(Protocol):
    """The UI surface of a PIN prompt (one password field, one error slot)."""

    def open(self, vault: PinVault) -> None:
        """Show the prompt. Input is reported back via ``vault.submit`` / ``vault.cancel``."""

    def show_error(self, message: str) -> None:
        """Display an inline error while keeping the prompt open."""

    def close(self) -> None:
        """Hide the prompt."""


class PinVault:
    """Resolves and caches the session PIN.

    Parameters
    ----------
    prompt:
        UI used to ask the operator for the PIN.
    codec:
        Codec used to validate candidate PINs.
    """

    def __init__(self, prompt: PinPrompt, codec: CryptoCodec | None = None) -> None:
        self._prompt = prompt
        self._codec = codec or CryptoCodec()
        self._pin: str | None = None
        self._pending: asyncio.Future[str] | None = None
        self._envelope: bytes | None = None

    @property
    def pin(self) -> str | None:
        """The validated PIN, or ``None`` if it has not been resolved yet."""
        return self._pin

    @property
    def is_prompting(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def forget(self) -> None:
        """Drop the cached PIN so the next decryption need prompts again."""
        if self._pin is not None:
            logger.info("Cached PIN discarded")
        self._pin = None

    async def request_decryption(self, envelope: bytes) -> str:
        """Return a PIN able to decrypt *envelope*.

        Uses the cached PIN when there is one. Otherwise opens the prompt
        (only one prompt is ever open; concurrent callers share it) and
        waits for the operator.

        Raises
        ------
        PinCancelled
            If the operator dismisses the prompt.
        """
        if self._pin is not None:
            return self._pin

        if self._pending is None or self._pending.done():
            self._pending = asyncio.get_running_loop().create_future()
            self._envelope = envelope
            logger.info("PIN required; opening prompt")
            self._prompt.open(self)

        return await asyncio.shield(self._pending)

    def submit(self, candidate: str) -> bool:
        """Handle a PIN submitted from the prompt.

        Returns ``True`` if the PIN decrypted the pending envelope and was
        accepted, ``False`` otherwise (the prompt stays open).
        """
        pending = self._pending
        if pending is None or pending.done() or self._envelope is None:
            return False

        candidate = candidate.strip()
        if not candidate:
            return False

        try:
            self._codec.decrypt(self._envelope, candidate)
        except DecryptionError:
            logger.warning("PIN rejected: envelope did not decrypt")
            self._prompt.show_error(INVALID_PIN_MESSAGE)
            return False

        self._pin = candidate
        self._envelope = None
        self._prompt.close()
        pending.set_result(candidate)
        logger.info("PIN accepted")
        return True

    def cancel(self) -> None:
        """Reject the pending request (the prompt was dismissed)."""
        pending = self._pending
        self._envelope = None
        self._prompt.close()
        if pending is not None and not pending.done():
            pending.set_exception(PinCancelled("PIN prompt closed"))
            logger.info("PIN prompt cancelled")
