"""The relay session: bootstrap once, then monitor the ephemeral address.

Lifecycle::

    IDLE -> BOOTSTRAPPING -> MONITORING -> COMPLETED
                  \\              /
                   +-> ERROR <--+      (retried after the poll interval)

Bootstrapping recovers the session keypair from the first transaction the
deployment script sent and, unless a reply already exists (page reload),
acknowledges it. Monitoring then answers each new request until a
termination notice arrives or :meth:`RelaySession.stop` is called.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Sequence

from sign_relay.chain.client import ChainClient
from sign_relay.chain.keypair import Ed25519Keypair
from sign_relay.chain.models import ObjectRef
from sign_relay.crypto.codec import CryptoCodec, b64d
from sign_relay.crypto.vault import PinVault
from sign_relay.errors import (
    DecryptionError,
    InvalidTransactionShape,
    PinCancelled,
    RelayError,
    WalletRejected,
)
from sign_relay.relay.messages import Intent, RelayMessage, ReplyPayload
from sign_relay.wallet.signer import WalletSigner
from sign_relay.wire.bcs import normalize_address
from sign_relay.wire.chunks import pack, unpack
from sign_relay.wire.transaction import build_transfer_reply, decode_transaction

logger = logging.getLogger("sign_relay.relay.session")

DEFAULT_POLL_INTERVAL = 2.5
DEFAULT_GAS_BUDGET = 10_000_000
# Sui limits the number of gas payment objects per transaction.
MAX_GAS_OBJECTS = 256


class RelayState(str, Enum):
    IDLE = "idle"
    BOOTSTRAPPING = "bootstrapping"
    MONITORING = "monitoring"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class SessionState:
    """Everything the session remembers between iterations (memory only)."""

    keypair: Optional[Ed25519Keypair] = None
    last_digest: Optional[str] = None
    processed: set[str] = field(default_factory=set)
    rejected: set[str] = field(default_factory=set)
    replies: list[str] = field(default_factory=list)
    deployed_url: Optional[str] = None
    status: RelayState = RelayState.IDLE
    status_text: str = ""


StatusCallback = Callable[[RelayState, str], None]
ReplyCallback = Callable[[str, str], None]


def select_gas(coins: Sequence[ObjectRef], budget: int) -> list[ObjectRef]:
    """Pick the largest coins until they cover *budget*."""
    selected: list[ObjectRef] = []
    total = 0
    for coin in sorted(coins, key=lambda c: c.balance, reverse=True)[:MAX_GAS_OBJECTS]:
        selected.append(coin)
        total += coin.balance
        if total >= budget:
            return selected
    raise RelayError(f"Insufficient gas: {total} MIST available, budget is {budget}")


def acknowledgement_message(request_bytes: bytes) -> bytes:
    """The message signed to acknowledge the bootstrap request."""
    return base64.b64encode(hashlib.sha256(request_bytes).digest())


class RelaySession:
    """Drives one relay conversation for an ephemeral address.

    Parameters
    ----------
    ephemeral_address:
        Address the deployment script sends requests from.
    chain:
        Ledger query/submit capability.
    wallet:
        Operator wallet that signs requests.
    vault:
        Source of the session PIN.
    codec:
        Envelope codec; must match the one *vault* validates PINs with.
    poll_interval:
        Seconds to wait between polls and after a failed iteration.
    gas_budget:
        Gas budget (MIST) for reply transactions.
    finality_timeout:
        Seconds to wait for a published reply to become visible.
    on_status:
        Called with every state/status-text change.
    on_reply:
        Called with the intent and digest of every published reply.
    """

    def __init__(
        self,
        ephemeral_address: str,
        chain: ChainClient,
        wallet: WalletSigner,
        vault: PinVault,
        *,
        codec: CryptoCodec | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        gas_budget: int = DEFAULT_GAS_BUDGET,
        finality_timeout: float = 60.0,
        on_status: StatusCallback | None = None,
        on_reply: ReplyCallback | None = None,
    ) -> None:
        if wallet is None:
            raise ValueError("A wallet is required to run the relay")
        self.ephemeral_address = normalize_address(ephemeral_address)
        self.chain = chain
        self.wallet = wallet
        self.vault = vault
        self.codec = codec or CryptoCodec()
        self.poll_interval = poll_interval
        self.gas_budget = gas_budget
        self.finality_timeout = finality_timeout
        self.state = SessionState()
        self._on_status = on_status
        self._on_reply = on_reply
        self._stop = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def status(self) -> RelayState:
        return self.state.status

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self) -> None:
        """Request teardown. In-flight awaits finish; sleeps wake immediately."""
        self._stop.set()

    async def run(self) -> Optional[str]:
        """Bootstrap, then monitor until completion or :meth:`stop`.

        Returns the deployed URL from the termination notice, or ``None``
        if the session was stopped first.
        """
        await self.bootstrap()
        if self.state.keypair is not None and not self.stopped:
            await self.monitor()
        return self.state.deployed_url

    def _set_status(self, status: RelayState, text: str) -> None:
        changed = (status, text) != (self.state.status, self.state.status_text)
        self.state.status = status
        self.state.status_text = text
        if changed and self._on_status is not None:
            self._on_status(status, text)

    def _enter_error(self, exc: Exception) -> None:
        if isinstance(exc, WalletRejected):
            logger.warning(f"Signing declined, no reply sent: {exc}")
        elif isinstance(exc, PinCancelled):
            logger.warning("PIN entry cancelled; will ask again")
        elif isinstance(exc, RelayError):
            logger.warning(f"Relay iteration failed: {exc}")
        else:
            logger.exception(f"Unexpected error in relay iteration: {exc}")
        self._set_status(RelayState.ERROR, str(exc))

    async def _sleep(self) -> None:
        if self.stopped:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # Envelope handling
    # ------------------------------------------------------------------

    async def _decrypt(self, envelope: bytes) -> bytes:
        pin = self.vault.pin
        if pin is None:
            pin = await self.vault.request_decryption(envelope)
        try:
            return self.codec.decrypt(envelope, pin)
        except DecryptionError:
            # A cached PIN that stops working is never retried as-is.
            self.vault.forget()
            raise

    async def _read_plaintext(self, digest: str) -> bytes:
        tx = await self.chain.get_transaction(digest)
        envelope = unpack(tx.inputs)
        return await self._decrypt(envelope)

    async def _publish_reply(self, keypair: Ed25519Keypair, intent: str, signature: str) -> str:
        pin = self.vault.pin
        if pin is None:
            raise RelayError("Cannot encrypt a reply before the PIN is known")

        self._set_status(self.state.status, "Sending signed response...")
        plaintext = ReplyPayload(intent=intent, signature=signature).to_plaintext()
        envelope = b64d(self.codec.encrypt(plaintext, pin))

        gas_price = await self.chain.get_reference_gas_price()
        coins = await self.chain.get_gas_coins(self.ephemeral_address)
        tx_bytes = build_transfer_reply(
            sender=self.ephemeral_address,
            recipient=self.ephemeral_address,
            payload=pack(envelope),
            gas_payment=select_gas(coins, self.gas_budget),
            gas_price=gas_price,
            gas_budget=self.gas_budget,
        )

        digest = await self.chain.execute_transaction(tx_bytes, [keypair.sign_transaction(tx_bytes)])
        await self.chain.wait_for_transaction(digest, timeout=self.finality_timeout)

        self.state.replies.append(digest)
        self.state.processed.add(digest)
        logger.info(f"Published {intent} reply {digest}")
        if self._on_reply is not None:
            self._on_reply(intent, digest)
        return digest

    # ------------------------------------------------------------------
    # Bootstrapping
    # ------------------------------------------------------------------

    async def bootstrap(self) -> None:
        """Recover the session keypair; retries until it succeeds or is stopped."""
        while self.state.keypair is None and not self.stopped:
            self._set_status(RelayState.BOOTSTRAPPING, "Initializing signer...")
            try:
                if await self._bootstrap_once():
                    break
            except Exception as exc:
                self._enter_error(exc)
            await self._sleep()

        if self.state.keypair is not None:
            self._set_status(RelayState.MONITORING, "Waiting for signing requests...")

    async def _bootstrap_once(self) -> bool:
        history = await self.chain.query_transactions_from(
            self.ephemeral_address, descending=False, limit=2
        )
        if not history:
            logger.debug(f"No transactions from {self.ephemeral_address} yet")
            return False

        first = history[0]
        message = RelayMessage.from_plaintext(await self._read_plaintext(first.digest))
        try:
            keypair = Ed25519Keypair.from_secret_key(message.secret_key())
        except ValueError as exc:
            raise RelayError(f"Bootstrap secret key is invalid: {exc}") from exc

        if keypair.address != self.ephemeral_address:
            logger.warning(
                f"Session key address {keypair.address} does not match "
                f"ephemeral address {self.ephemeral_address}"
            )

        if len(history) == 1:
            ack = acknowledgement_message(message.payload_bytes)
            signature = await self.wallet.sign_personal_message(ack, message.network)
            cursor = await self._publish_reply(keypair, message.intent, signature)
            logger.info(f"Bootstrap acknowledged with {cursor}")
        else:
            # Reloaded after the acknowledgement was already sent.
            cursor = history[1].digest
            logger.info(f"Bootstrap resumed; skipping acknowledgement, cursor at {cursor}")

        self.state.keypair = keypair
        self.state.last_digest = cursor
        self.state.processed.update({first.digest, cursor})
        return True

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def monitor(self) -> None:
        """Answer requests until a termination notice arrives or the session stops."""
        while not self.stopped:
            try:
                if await self.step():
                    return
            except Exception as exc:
                self._enter_error(exc)
            await self._sleep()

    async def step(self) -> bool:
        """Run one monitor iteration. Returns ``True`` once the relay is complete."""
        if self.state.keypair is None:
            raise RuntimeError("RelaySession.step() called before bootstrap")

        self._set_status(RelayState.MONITORING, "Waiting for signing requests...")
        latest = await self.chain.query_transactions_from(
            self.ephemeral_address, descending=True, limit=1
        )
        if not latest:
            return False

        digest = latest[0].digest
        if (
            digest == self.state.last_digest
            or digest in self.state.processed
            or digest in self.state.rejected
        ):
            return False

        self._set_status(RelayState.MONITORING, "Signing request...")
        try:
            plaintext = await self._read_plaintext(digest)
        except InvalidTransactionShape:
            self.state.rejected.add(digest)
            raise

        self.state.last_digest = digest
        self.state.processed.add(digest)
        return await self._dispatch(RelayMessage.from_plaintext(plaintext))

    async def _dispatch(self, message: RelayMessage) -> bool:
        kind = message.kind

        if kind is Intent.TRANSACTION_DATA:
            tx_bytes = message.payload_bytes
            decode_transaction(tx_bytes)
            signature = await self.wallet.sign_transaction(tx_bytes, message.network)
            await self._reply(message.intent, signature)
        elif kind is Intent.PERSONAL_MESSAGE:
            url = message.termination_url()
            if url is not None:
                self._complete(url)
                return True
            signature = await self.wallet.sign_personal_message(message.payload_bytes, message.network)
            await self._reply(message.intent, signature)
        else:
            logger.info(f"Ignoring relay message with unknown intent {message.intent!r}")
        return False

    async def _reply(self, intent: str, signature: str) -> None:
        assert self.state.keypair is not None
        self.state.last_digest = await self._publish_reply(self.state.keypair, intent, signature)

    def _complete(self, url: str) -> None:
        self.state.deployed_url = url
        self._set_status(RelayState.COMPLETED, "Deployment complete.")
        logger.info(f"Deployment complete: {url}")
        self._stop.set()
