"""Shared fixtures for sign-relay: an in-memory ledger, a scripted PIN prompt
and a recording wallet."""

from __future__ import annotations

import base64
import json
from typing import Any, Iterable, Optional, Sequence

import base58
import pytest
from pysui.sui.sui_bcs import bcs

from sign_relay.chain.keypair import Ed25519Keypair
from sign_relay.chain.models import ObjectRef, TransactionInput, TransactionRecord
from sign_relay.crypto.codec import CryptoCodec, b64d
from sign_relay.crypto.vault import PinVault
from sign_relay.errors import ChainUnavailable, WalletRejected
from sign_relay.wire.chunks import pack_chunked
from sign_relay.wire.transaction import decode_transaction

PIN = "482913"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _pure_inputs(tx_bytes: bytes) -> list[bytes]:
    """Pull the pure input values out of a reply transaction."""
    data = bcs.TransactionData.deserialize(tx_bytes).value
    values = []
    for arg in data.TransactionKind.value.Inputs:
        assert arg.enum_name == "Pure", "reply inputs are all pure"
        values.append(bytes(arg.value))
    return values


def as_inputs(values: Iterable[bytes]) -> list[TransactionInput]:
    """Wrap BCS values as undecoded pure inputs (as a node reports them)."""
    return [TransactionInput.pure(v) for v in values]


class FakeChain:
    """In-memory ledger holding transactions in execution order."""

    def __init__(self) -> None:
        self.transactions: list[TransactionRecord] = []
        self.executed: list[tuple[bytes, list[str]]] = []
        self.gas_price = 1000
        self.coins: dict[str, list[ObjectRef]] = {}
        self.fail_queries = 0
        self._counter = 0

    def _next_digest(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def add(self, sender: str, inputs: list[TransactionInput], digest: Optional[str] = None) -> str:
        digest = digest or self._next_digest("tx")
        self.transactions.append(TransactionRecord(digest=digest, sender=sender, inputs=inputs))
        return digest

    def fund(self, owner: str, balance: int = 5_000_000_000) -> None:
        self.coins.setdefault(owner, []).append(
            ObjectRef(
                object_id="0x" + f"{len(self.coins) + 1:064x}",
                version=7,
                digest=base58.b58encode(bytes(range(32))).decode("ascii"),
                balance=balance,
            )
        )

    def replies(self) -> list[TransactionRecord]:
        return [tx for tx in self.transactions if tx.digest.startswith("reply-")]

    # ChainClient --------------------------------------------------------

    async def query_transactions_from(
        self, address: str, *, descending: bool = False, limit: int = 50
    ) -> list[TransactionRecord]:
        if self.fail_queries:
            self.fail_queries -= 1
            raise ChainUnavailable("node unreachable")
        sent = [tx for tx in self.transactions if tx.sender == address]
        if descending:
            sent = list(reversed(sent))
        return sent[:limit]

    async def get_transaction(self, digest: str) -> TransactionRecord:
        for tx in self.transactions:
            if tx.digest == digest:
                return tx
        raise ChainUnavailable(f"Transaction {digest} not found")

    async def get_reference_gas_price(self) -> int:
        return self.gas_price

    async def get_gas_coins(self, owner: str) -> list[ObjectRef]:
        return list(self.coins.get(owner, []))

    async def execute_transaction(self, tx_bytes: bytes, signatures: Sequence[str]) -> str:
        decoded = decode_transaction(tx_bytes)
        values = _pure_inputs(tx_bytes)
        # The node reports the consumed recipient decoded, the rest raw.
        inputs = as_inputs(values[:-1]) + [
            TransactionInput(type="pure", value_type="address", value="0x" + values[-1].hex())
        ]
        self.executed.append((tx_bytes, list(signatures)))
        return self.add(decoded.sender, inputs, digest=self._next_digest("reply"))

    async def wait_for_transaction(self, digest: str, timeout: float = 60.0) -> None:
        await self.get_transaction(digest)


class ScriptedPrompt:
    """PIN prompt that answers with queued entries as soon as it opens.

    ``None`` in the queue dismisses the prompt.
    """

    def __init__(self, entries: Sequence[Optional[str]] = ()) -> None:
        self.entries = list(entries)
        self.opened = 0
        self.closed = 0
        self.errors: list[str] = []

    def open(self, vault: PinVault) -> None:
        self.opened += 1
        while self.entries:
            entry = self.entries.pop(0)
            if entry is None:
                vault.cancel()
                return
            if vault.submit(entry):
                return

    def show_error(self, message: str) -> None:
        self.errors.append(message)

    def close(self) -> None:
        self.closed += 1


class RecordingWallet:
    """Wallet that signs with a real key and remembers every request."""

    def __init__(self, keypair: Optional[Ed25519Keypair] = None, approve: bool = True) -> None:
        self.keypair = keypair or Ed25519Keypair.generate()
        self.approve = approve
        self.transactions: list[tuple[bytes, str]] = []
        self.messages: list[tuple[bytes, str]] = []

    @property
    def address(self) -> str:
        return self.keypair.address

    async def sign_transaction(self, tx_bytes: bytes, network: str) -> str:
        if not self.approve:
            raise WalletRejected("declined")
        self.transactions.append((tx_bytes, network))
        return self.keypair.sign_transaction(tx_bytes)

    async def sign_personal_message(self, message: bytes, network: str) -> str:
        if not self.approve:
            raise WalletRejected("declined")
        self.messages.append((message, network))
        return self.keypair.sign_personal_message(message)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def relay_message(intent: str, payload: bytes | Any, network: str = "testnet") -> bytes:
    """Plaintext of a request; non-bytes payloads are JSON-encoded first."""
    if not isinstance(payload, bytes):
        payload = json.dumps(payload).encode("utf-8")
    return json.dumps(
        {
            "intent": intent,
            "network": network,
            "address": "",
            "bytes": base64.b64encode(payload).decode("ascii"),
        }
    ).encode("utf-8")


def post_request(
    chain: FakeChain,
    sender: str,
    plaintext: bytes,
    codec: CryptoCodec,
    pin: str = PIN,
    chunk_size: int = 64,
) -> str:
    """Encrypt *plaintext* and post it the way the deployment script does."""
    envelope = b64d(codec.encrypt(plaintext, pin))
    return chain.add(sender, as_inputs(pack_chunked(envelope, chunk_size)))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def codec() -> CryptoCodec:
    """A codec with a low iteration count to keep tests fast."""
    return CryptoCodec(iterations=1_000)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def session_keypair() -> Ed25519Keypair:
    return Ed25519Keypair.from_seed(bytes(range(1, 33)))


@pytest.fixture
def ephemeral(session_keypair: Ed25519Keypair, chain: FakeChain) -> str:
    """The ephemeral address, funded for replies."""
    chain.fund(session_keypair.address)
    return session_keypair.address


@pytest.fixture
def wallet() -> RecordingWallet:
    return RecordingWallet(Ed25519Keypair.from_seed(bytes(range(100, 132))))


@pytest.fixture
def prompt() -> ScriptedPrompt:
    return ScriptedPrompt([PIN])


@pytest.fixture
def vault(prompt: ScriptedPrompt, codec: CryptoCodec) -> PinVault:
    return PinVault(prompt, codec=codec)
