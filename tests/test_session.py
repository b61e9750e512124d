"""Tests for the relay session state machine against an in-memory ledger."""

from __future__ import annotations

import asyncio
import json

import pytest

from conftest import PIN, FakeChain, ScriptedPrompt, as_inputs, post_request, relay_message
from sign_relay.chain.keypair import Ed25519Keypair, IntentScope, verify_signature
from sign_relay.chain.models import ObjectRef
from sign_relay.crypto.codec import CryptoCodec
from sign_relay.crypto.vault import PinVault
from sign_relay.errors import (
    DecryptionError,
    InvalidTransactionShape,
    RelayError,
    WalletRejected,
)
from sign_relay.relay.messages import ReplyPayload
from sign_relay.relay.session import (
    RelaySession,
    RelayState,
    acknowledgement_message,
    select_gas,
)
from sign_relay.wire.bcs import encode_bool, encode_byte_vector
from sign_relay.wire.chunks import unpack
from sign_relay.wire.transaction import build_transfer_reply


def _bootstrap_payload(keypair: Ed25519Keypair) -> bytes:
    return json.dumps({"secretKey": keypair.export_secret_key()}).encode("utf-8")


def _read_reply(chain: FakeChain, digest: str, codec: CryptoCodec, pin: str = PIN) -> ReplyPayload:
    tx = next(t for t in chain.transactions if t.digest == digest)
    return ReplyPayload.from_plaintext(codec.decrypt(unpack(tx.inputs), pin))


def _unsigned_transfer(sender: str) -> bytes:
    """A transaction the deployment script might ask the wallet to sign."""
    gas = ObjectRef(object_id="0x99", version=3, digest="11111111111111111111111111111111")
    return build_transfer_reply(
        sender=sender,
        recipient=sender,
        payload=[encode_byte_vector(b"site")],
        gas_payment=[gas],
        gas_price=1000,
        gas_budget=2_000_000,
    )


@pytest.fixture
def session(ephemeral, chain, wallet, vault, codec) -> RelaySession:
    return RelaySession(ephemeral, chain, wallet, vault, codec=codec, poll_interval=0.01)


@pytest.fixture
def bootstrapped(session, chain, ephemeral, session_keypair, codec):
    """Post the bootstrap request and run the bootstrap phase."""

    async def _go() -> RelaySession:
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )
        await session.bootstrap()
        return session

    return _go


# ---------------------------------------------------------------------------
# Bootstrapping
# ---------------------------------------------------------------------------


class TestBootstrap:
    """Recovering the session key and acknowledging the first request."""

    @pytest.mark.asyncio
    async def test_single_prior_transaction_is_acknowledged(
        self, session, chain, ephemeral, session_keypair, wallet, codec
    ) -> None:
        payload = _bootstrap_payload(session_keypair)
        first = post_request(chain, ephemeral, relay_message("PersonalMessage", payload), codec)

        await session.bootstrap()

        assert session.status is RelayState.MONITORING
        assert session.state.keypair.address == session_keypair.address
        assert wallet.messages == [(acknowledgement_message(payload), "testnet")]

        replies = chain.replies()
        assert len(replies) == 1
        assert session.state.last_digest == replies[0].digest
        assert {first, replies[0].digest} <= session.state.processed

        reply = _read_reply(chain, replies[0].digest, codec)
        assert reply.intent == "PersonalMessage"
        signer = verify_signature(
            IntentScope.PersonalMessage, acknowledgement_message(payload), reply.signature
        )
        assert signer == wallet.address

    @pytest.mark.asyncio
    async def test_reply_is_signed_by_session_key(
        self, bootstrapped, chain, session_keypair
    ) -> None:
        await bootstrapped()
        tx_bytes, signatures = chain.executed[0]
        assert verify_signature(IntentScope.TransactionData, tx_bytes, signatures[0]) == (
            session_keypair.address
        )

    @pytest.mark.asyncio
    async def test_reload_skips_acknowledgement(
        self, session, chain, ephemeral, session_keypair, wallet, codec
    ) -> None:
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )
        earlier_ack = post_request(
            chain, ephemeral, ReplyPayload(intent="PersonalMessage", signature="AAA=").to_plaintext(), codec
        )

        await session.bootstrap()

        assert session.status is RelayState.MONITORING
        assert wallet.messages == []
        assert chain.replies() == []
        assert session.state.last_digest == earlier_ack

    @pytest.mark.asyncio
    async def test_waits_for_first_transaction(self, session, chain, ephemeral, session_keypair, codec) -> None:
        task = asyncio.ensure_future(session.bootstrap())
        await asyncio.sleep(0.05)
        assert not task.done()
        assert session.status is RelayState.BOOTSTRAPPING

        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )
        await asyncio.wait_for(task, timeout=5)
        assert session.status is RelayState.MONITORING

    @pytest.mark.asyncio
    async def test_retries_after_chain_error(self, ephemeral, chain, wallet, vault, codec, session_keypair) -> None:
        statuses = []
        session = RelaySession(
            ephemeral, chain, wallet, vault, codec=codec, poll_interval=0.01,
            on_status=lambda status, text: statuses.append(status),
        )
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )
        chain.fail_queries = 1

        await asyncio.wait_for(session.bootstrap(), timeout=5)

        assert RelayState.ERROR in statuses
        assert statuses[-1] is RelayState.MONITORING
        assert len(chain.replies()) == 1

    @pytest.mark.asyncio
    async def test_published_replies_are_reported(
        self, ephemeral, chain, wallet, vault, codec, session_keypair
    ) -> None:
        published = []
        session = RelaySession(
            ephemeral, chain, wallet, vault, codec=codec, poll_interval=0.01,
            on_reply=lambda intent, digest: published.append((intent, digest)),
        )
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )

        await asyncio.wait_for(session.bootstrap(), timeout=5)

        assert published == [("PersonalMessage", chain.replies()[0].digest)]

    @pytest.mark.asyncio
    async def test_cancelled_pin_prompt_is_retried(
        self, ephemeral, chain, wallet, codec, session_keypair
    ) -> None:
        prompt = ScriptedPrompt([None, PIN])
        vault = PinVault(prompt, codec=codec)
        session = RelaySession(ephemeral, chain, wallet, vault, codec=codec, poll_interval=0.01)
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )

        await asyncio.wait_for(session.bootstrap(), timeout=5)

        assert prompt.opened == 2
        assert session.status is RelayState.MONITORING

    @pytest.mark.asyncio
    async def test_declined_acknowledgement_commits_nothing(
        self, session, chain, ephemeral, session_keypair, wallet, codec
    ) -> None:
        wallet.approve = False
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )

        with pytest.raises(WalletRejected):
            await session._bootstrap_once()
        assert session.state.keypair is None
        assert session.state.last_digest is None
        assert chain.replies() == []

    @pytest.mark.asyncio
    async def test_invalid_secret_key(self, session, chain, ephemeral, codec) -> None:
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", {"secretKey": "AAAA"}), codec
        )
        with pytest.raises(RelayError, match="secret key"):
            await session._bootstrap_once()

    @pytest.mark.asyncio
    async def test_stop_before_start(self, session) -> None:
        session.stop()
        assert await session.run() is None
        assert session.status is RelayState.IDLE

    def test_requires_wallet(self, ephemeral, chain, vault) -> None:
        with pytest.raises(ValueError):
            RelaySession(ephemeral, chain, None, vault)


# ---------------------------------------------------------------------------
# Monitoring
# ---------------------------------------------------------------------------


class TestMonitor:
    """Answering requests after bootstrap."""

    @pytest.mark.asyncio
    async def test_own_reply_is_not_reprocessed(self, bootstrapped, wallet) -> None:
        session = await bootstrapped()
        assert await session.step() is False
        assert len(wallet.messages) == 1

    @pytest.mark.asyncio
    async def test_transaction_request(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        tx_bytes = _unsigned_transfer(wallet.address)
        request = post_request(chain, ephemeral, relay_message("TransactionData", tx_bytes), codec)

        assert await session.step() is False

        assert wallet.transactions == [(tx_bytes, "testnet")]
        replies = chain.replies()
        assert len(replies) == 2
        assert request in session.state.processed
        assert session.state.last_digest == replies[-1].digest

        reply = _read_reply(chain, replies[-1].digest, codec)
        assert reply.intent == "TransactionData"
        assert verify_signature(IntentScope.TransactionData, tx_bytes, reply.signature) == wallet.address

        # Idempotent: nothing new on the ledger, nothing new signed.
        assert await session.step() is False
        assert len(wallet.transactions) == 1
        assert len(chain.replies()) == 2

    @pytest.mark.asyncio
    async def test_personal_message_request(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        post_request(chain, ephemeral, relay_message("PersonalMessage", b"Deploy site v2"), codec)

        assert await session.step() is False

        assert wallet.messages[-1] == (b"Deploy site v2", "testnet")
        assert session.status is RelayState.MONITORING
        reply = _read_reply(chain, chain.replies()[-1].digest, codec)
        assert verify_signature(
            IntentScope.PersonalMessage, b"Deploy site v2", reply.signature
        ) == wallet.address

    @pytest.mark.asyncio
    async def test_termination(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", {"url": "https://example.wal.app"}), codec
        )

        assert await session.step() is True

        assert session.status is RelayState.COMPLETED
        assert session.state.deployed_url == "https://example.wal.app"
        assert session.stopped
        assert len(wallet.messages) == 1
        assert len(chain.replies()) == 1

    @pytest.mark.asyncio
    async def test_url_with_extra_keys_is_signed(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        post_request(
            chain, ephemeral,
            relay_message("PersonalMessage", {"url": "https://example.wal.app", "site": "x"}), codec,
        )

        assert await session.step() is False
        assert session.status is RelayState.MONITORING
        assert len(wallet.messages) == 2

    @pytest.mark.asyncio
    async def test_unknown_intent_ignored(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        request = post_request(chain, ephemeral, relay_message("Mystery", b"x"), codec)

        assert await session.step() is False
        assert session.state.last_digest == request
        assert len(chain.replies()) == 1

    @pytest.mark.asyncio
    async def test_requests_answered_in_order(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        cursors = [session.state.last_digest]
        for text in (b"first", b"second", b"third"):
            post_request(chain, ephemeral, relay_message("PersonalMessage", text), codec)
            await session.step()
            cursors.append(session.state.last_digest)

        assert [m for m, _ in wallet.messages[1:]] == [b"first", b"second", b"third"]
        positions = [next(i for i, t in enumerate(chain.transactions) if t.digest == d) for d in cursors]
        assert positions == sorted(positions)

    @pytest.mark.asyncio
    async def test_malformed_transaction_is_dropped(self, bootstrapped, chain, ephemeral, wallet) -> None:
        session = await bootstrapped()
        cursor = session.state.last_digest
        bad = chain.add(ephemeral, as_inputs([encode_bool(True), encode_byte_vector(b"zzz")]))

        with pytest.raises(InvalidTransactionShape):
            await session.step()
        assert bad in session.state.rejected
        assert session.state.last_digest == cursor

        # Not retried on the next poll.
        assert await session.step() is False
        assert len(wallet.messages) == 1

    @pytest.mark.asyncio
    async def test_declined_request_sends_no_reply(self, bootstrapped, chain, ephemeral, wallet, codec) -> None:
        session = await bootstrapped()
        wallet.approve = False
        request = post_request(chain, ephemeral, relay_message("PersonalMessage", b"no thanks"), codec)

        with pytest.raises(WalletRejected):
            await session.step()

        assert len(chain.replies()) == 1
        assert session.state.last_digest == request
        assert await session.step() is False

    @pytest.mark.asyncio
    async def test_wrong_cached_pin_prompts_again(
        self, bootstrapped, chain, ephemeral, wallet, codec, prompt, vault
    ) -> None:
        session = await bootstrapped()
        cursor = session.state.last_digest
        request = post_request(
            chain, ephemeral, relay_message("PersonalMessage", b"rotated"), codec, pin="777777"
        )

        with pytest.raises(DecryptionError):
            await session.step()
        assert vault.pin is None
        assert session.state.last_digest == cursor
        assert request not in session.state.processed

        prompt.entries = ["777777"]
        assert await session.step() is False
        assert prompt.opened == 2
        assert wallet.messages[-1] == (b"rotated", "testnet")
        assert _read_reply(chain, chain.replies()[-1].digest, codec, pin="777777").intent == "PersonalMessage"

    @pytest.mark.asyncio
    async def test_step_before_bootstrap(self, session) -> None:
        with pytest.raises(RuntimeError):
            await session.step()

    @pytest.mark.asyncio
    async def test_run_until_termination(self, session, chain, ephemeral, session_keypair, codec) -> None:
        post_request(
            chain, ephemeral, relay_message("PersonalMessage", _bootstrap_payload(session_keypair)), codec
        )
        task = asyncio.ensure_future(session.run())
        while not chain.replies():
            await asyncio.sleep(0.01)

        post_request(
            chain, ephemeral, relay_message("PersonalMessage", {"url": "https://example.wal.app"}), codec
        )
        assert await asyncio.wait_for(task, timeout=5) == "https://example.wal.app"
        assert session.status is RelayState.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_ends_monitoring(self, bootstrapped) -> None:
        session = await bootstrapped()
        task = asyncio.ensure_future(session.monitor())
        await asyncio.sleep(0.03)
        session.stop()
        await asyncio.wait_for(task, timeout=5)
        assert session.state.deployed_url is None


class TestHelpers:
    def test_select_gas_prefers_large_coins(self) -> None:
        coins = [
            ObjectRef(object_id="0x1", version=1, digest="1", balance=5),
            ObjectRef(object_id="0x2", version=1, digest="1", balance=50),
            ObjectRef(object_id="0x3", version=1, digest="1", balance=20),
        ]
        assert [c.object_id for c in select_gas(coins, 60)] == ["0x2", "0x3"]

    def test_select_gas_insufficient(self) -> None:
        with pytest.raises(RelayError, match="Insufficient gas"):
            select_gas([ObjectRef(object_id="0x1", version=1, digest="1", balance=5)], 60)

    def test_acknowledgement_message(self) -> None:
        # base64(sha256(b"")) is a well-known constant.
        assert acknowledgement_message(b"") == b"47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    @pytest.mark.asyncio
    async def test_unfunded_ephemeral_address(self, chain, wallet, codec) -> None:
        keypair = Ed25519Keypair.generate()
        vault = PinVault(ScriptedPrompt([PIN]), codec=codec)
        session = RelaySession(keypair.address, chain, wallet, vault, codec=codec)
        post_request(
            chain, keypair.address, relay_message("PersonalMessage", _bootstrap_payload(keypair)), codec
        )
        with pytest.raises(RelayError, match="Insufficient gas"):
            await session._bootstrap_once()
