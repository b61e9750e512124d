"""Sui network definitions."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Network:
    """A Sui network and its public full node."""

    name: str
    rpc_url: str
    explorer_url: str

    def explorer_tx_url(self, digest: str) -> str:
        return f"{self.explorer_url}/tx/{digest}"


NETWORKS: dict[str, Network] = {
    "mainnet": Network(
        name="mainnet",
        rpc_url="https://fullnode.mainnet.sui.io:443",
        explorer_url="https://suiscan.xyz/mainnet",
    ),
    "testnet": Network(
        name="testnet",
        rpc_url="https://fullnode.testnet.sui.io:443",
        explorer_url="https://suiscan.xyz/testnet",
    ),
    "devnet": Network(
        name="devnet",
        rpc_url="https://fullnode.devnet.sui.io:443",
        explorer_url="https://suiscan.xyz/devnet",
    ),
    "localnet": Network(
        name="localnet",
        rpc_url="http://127.0.0.1:9000",
        explorer_url="http://127.0.0.1:9001",
    ),
}


def get_network(name: str) -> Network:
    """Get a network by name. Raises ``KeyError`` if not found."""
    if name not in NETWORKS:
        raise KeyError(
            f"Unknown network '{name}'. Available: {list_network_names()}"
        )
    return NETWORKS[name]


def list_network_names() -> list[str]:
    """Return the names of all known networks."""
    return list(NETWORKS.keys())
