"""Wallet signing capability used by the relay."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from sign_relay.chain.keypair import Ed25519Keypair
from sign_relay.errors import TransactionDecodeError, WalletRejected
from sign_relay.wire.transaction import decode_transaction

logger = logging.getLogger("sign_relay.wallet.signer")


class WalletSigner(Protocol):
    """A wallet able to sign on behalf of the human operator.

    Both methods return a base64 serialized signature and raise
    :class:`~sign_relay.errors.WalletRejected` if the operator declines.
    """

    @property
    def address(self) -> str: ...

    async def sign_transaction(self, tx_bytes: bytes, network: str) -> str: ...

    async def sign_personal_message(self, message: bytes, network: str) -> str: ...


@dataclass
class SigningRequest:
    """What the operator is asked to approve."""

    kind: str
    network: str
    signer: str
    details: list[str] = field(default_factory=list)


Approver = Callable[[SigningRequest], Awaitable[bool]]


def _describe_message(message: bytes) -> list[str]:
    try:
        text = message.decode("utf-8")
    except UnicodeDecodeError:
        return [f"Binary message ({len(message)} bytes): {message[:32].hex()}..."]
    return [f"Message: {text}"]


class KeystoreWallet:
    """Signs with a local Ed25519 key after operator approval.

    Parameters
    ----------
    keypair:
        The operator's signing key.
    approver:
        Coroutine asked to approve every request. ``None`` approves
        everything (unattended mode).
    """

    def __init__(self, keypair: Ed25519Keypair, approver: Approver | None = None) -> None:
        self._keypair = keypair
        self._approver = approver

    @property
    def address(self) -> str:
        return self._keypair.address

    async def _approve(self, request: SigningRequest) -> None:
        if self._approver is None:
            return
        if not await self._approver(request):
            logger.info(f"Operator declined {request.kind} signing on {request.network}")
            raise WalletRejected(f"{request.kind} signing declined by operator")

    async def sign_transaction(self, tx_bytes: bytes, network: str) -> str:
        try:
            details = decode_transaction(tx_bytes).summary()
        except TransactionDecodeError as exc:
            details = [f"Undecodable transaction ({len(tx_bytes)} bytes): {exc}"]

        await self._approve(SigningRequest("TransactionData", network, self.address, details))
        signature = self._keypair.sign_transaction(tx_bytes)
        logger.info(f"Signed transaction for {network} as {self.address}")
        return signature

    async def sign_personal_message(self, message: bytes, network: str) -> str:
        await self._approve(
            SigningRequest("PersonalMessage", network, self.address, _describe_message(message))
        )
        signature = self._keypair.sign_personal_message(message)
        logger.info(f"Signed personal message for {network} as {self.address}")
        return signature
