"""Chain query/submit capability and its Sui JSON-RPC implementation."""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from typing import Any, Protocol, Sequence

import httpx

from sign_relay.chain.models import ObjectRef, TransactionRecord
from sign_relay.crypto.codec import b64
from sign_relay.errors import ChainUnavailable

logger = logging.getLogger("sign_relay.chain.client")

SUI_COIN_TYPE = "0x2::sui::SUI"


class ChainClient(Protocol):
    """What the relay needs from a ledger."""

    async def query_transactions_from(
        self, address: str, *, descending: bool = False, limit: int = 50
    ) -> list[TransactionRecord]:
        """Transactions sent by *address*, ordered by execution, with inputs."""

    async def get_transaction(self, digest: str) -> TransactionRecord:
        """A single transaction with its inputs."""

    async def get_reference_gas_price(self) -> int: ...

    async def get_gas_coins(self, owner: str) -> list[ObjectRef]: ...

    async def execute_transaction(self, tx_bytes: bytes, signatures: Sequence[str]) -> str:
        """Submit a signed transaction and return its digest."""

    async def wait_for_transaction(self, digest: str, timeout: float = 60.0) -> None:
        """Block until the transaction is visible to queries."""


class SuiRpcClient:
    """Async Sui full node client over JSON-RPC.

    Parameters
    ----------
    rpc_url:
        Full node JSON-RPC endpoint.
    timeout:
        Per-request HTTP timeout in seconds.
    transport:
        Optional ``httpx`` transport (used by tests to stub the node).
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> SuiRpcClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def call(self, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC call and return its ``result``.

        Raises
        ------
        ChainUnavailable
            On HTTP failure, a non-JSON response, or a JSON-RPC error.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            raise ChainUnavailable(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise ChainUnavailable(f"{method} returned invalid JSON: {exc}") from exc

        if body.get("error"):
            err = body["error"]
            raise ChainUnavailable(f"{method} error {err.get('code')}: {err.get('message')}")
        return body.get("result")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query_transactions_from(
        self, address: str, *, descending: bool = False, limit: int = 50
    ) -> list[TransactionRecord]:
        query = {"filter": {"FromAddress": address}, "options": {"showInput": True}}
        result = await self.call("suix_queryTransactionBlocks", [query, None, limit, descending])
        return [TransactionRecord.from_rpc(item) for item in (result or {}).get("data", [])]

    async def get_transaction(self, digest: str) -> TransactionRecord:
        result = await self.call("sui_getTransactionBlock", [digest, {"showInput": True}])
        if not result:
            raise ChainUnavailable(f"Transaction {digest} not found")
        return TransactionRecord.from_rpc(result)

    async def get_reference_gas_price(self) -> int:
        return int(await self.call("suix_getReferenceGasPrice", []))

    async def get_gas_coins(self, owner: str) -> list[ObjectRef]:
        result = await self.call("suix_getCoins", [owner, SUI_COIN_TYPE, None, 50])
        return [
            ObjectRef(
                object_id=coin["coinObjectId"],
                version=int(coin["version"]),
                digest=coin["digest"],
                balance=int(coin.get("balance", 0)),
            )
            for coin in (result or {}).get("data", [])
        ]

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def execute_transaction(self, tx_bytes: bytes, signatures: Sequence[str]) -> str:
        result = await self.call(
            "sui_executeTransactionBlock",
            [b64(tx_bytes), list(signatures), {"showEffects": True}, "WaitForLocalExecution"],
        )
        digest = result["digest"]
        status = ((result.get("effects") or {}).get("status")) or {}
        if status.get("status") == "failure":
            raise ChainUnavailable(f"Transaction {digest} failed: {status.get('error')}")
        logger.info(f"Transaction executed: {digest}")
        return digest

    async def wait_for_transaction(
        self, digest: str, timeout: float = 60.0, poll_interval: float = 1.0
    ) -> None:
        deadline = time.monotonic() + timeout
        while True:
            try:
                await self.get_transaction(digest)
                return
            except ChainUnavailable as exc:
                if time.monotonic() >= deadline:
                    raise ChainUnavailable(
                        f"Timed out waiting for transaction {digest}: {exc}"
                    ) from exc
            await asyncio.sleep(poll_interval)
