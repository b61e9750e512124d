"""The remote signing relay state machine and its message types."""

from sign_relay.relay.messages import Intent, RelayMessage, ReplyPayload
from sign_relay.relay.session import RelaySession, RelayState, SessionState

__all__ = [
    "Intent",
    "RelayMessage",
    "RelaySession",
    "RelayState",
    "ReplyPayload",
    "SessionState",
]
