"""sign-relay: sign deployment requests with your wallet over the Sui ledger.

A deployment script that cannot reach the operator's wallet posts
PIN-encrypted signing requests as transactions from an ephemeral address.
The relay polls those transactions, asks the operator's wallet to sign,
and posts encrypted replies back to the same address.
"""

__version__ = "0.1.0"
