"""Decrypted relay payloads."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sign_relay.crypto.codec import b64d
from sign_relay.errors import RelayError


class Intent(str, Enum):
    """Kinds of signing request the relay understands."""

    TRANSACTION_DATA = "TransactionData"
    PERSONAL_MESSAGE = "PersonalMessage"

    @classmethod
    def parse(cls, value: str) -> Optional[Intent]:
        """Return the matching intent, or ``None`` for anything unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


def _compact_json(data: dict) -> bytes:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class RelayMessage(BaseModel):
    """A decrypted request: ``{intent, network, address, bytes}``."""

    model_config = ConfigDict(populate_by_name=True)

    intent: str
    network: str
    address: str = ""
    payload: str = Field(alias="bytes", description="Base64 request bytes")

    @classmethod
    def from_plaintext(cls, plaintext: bytes) -> RelayMessage:
        """Parse decrypted UTF-8 JSON.

        Raises ``RelayError`` if the plaintext is not a relay message.
        """
        try:
            return cls.model_validate_json(plaintext)
        except ValidationError as exc:
            raise RelayError(f"Malformed relay message: {exc}") from exc

    def to_plaintext(self) -> bytes:
        return _compact_json(self.model_dump(by_alias=True))

    @property
    def kind(self) -> Optional[Intent]:
        return Intent.parse(self.intent)

    @property
    def payload_bytes(self) -> bytes:
        try:
            return b64d(self.payload)
        except ValueError as exc:
            raise RelayError(f"Relay message bytes are not base64: {exc}") from exc

    def payload_json(self) -> Any:
        """The payload bytes parsed as JSON, or ``None`` if they are not JSON."""
        try:
            return json.loads(self.payload_bytes.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None

    def termination_url(self) -> Optional[str]:
        """The deployed URL if this is a termination notice.

        A termination notice is a personal message whose bytes are a JSON
        object with exactly one key, ``url``, holding a string.
        """
        if self.kind is not Intent.PERSONAL_MESSAGE:
            return None
        data = self.payload_json()
        if isinstance(data, dict) and set(data) == {"url"} and isinstance(data["url"], str):
            return data["url"]
        return None

    def secret_key(self) -> Any:
        """The serialized session secret key carried by the bootstrap message."""
        data = self.payload_json()
        if not isinstance(data, dict) or "secretKey" not in data:
            raise RelayError("Bootstrap message does not carry a secretKey")
        return data["secretKey"]


class ReplyPayload(BaseModel):
    """An encrypted reply's plaintext: ``{intent, signature}``."""

    intent: str
    signature: str

    def to_plaintext(self) -> bytes:
        return _compact_json(self.model_dump())

    @classmethod
    def from_plaintext(cls, plaintext: bytes) -> ReplyPayload:
        try:
            return cls.model_validate_json(plaintext)
        except ValidationError as exc:
            raise RelayError(f"Malformed reply: {exc}") from exc
