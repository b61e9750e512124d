"""Sui ledger access for the relay.

Provides the chain query/submit interface, a JSON-RPC client over httpx,
Ed25519 keypairs with Sui addressing, and the list of known networks.
"""
