"""Operator wallet for the signing relay.

Loads the operator's Ed25519 key from a Sui CLI keystore and signs relay
requests only after the operator approves each one.
"""
