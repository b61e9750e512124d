"""Pydantic models for the chain data the relay consumes."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class TransactionInput(BaseModel):
    """One input of a programmable transaction, as reported by a full node.

    Pure inputs that no command consumes carry their raw BCS bytes as a
    list of ints in ``value`` with no ``value_type``. Inputs a command did
    consume are decoded by the node (``value_type`` is set).
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "pure"
    value_type: Optional[str] = Field(default=None, alias="valueType")
    value: Any = None

    @property
    def is_pure(self) -> bool:
        return self.type == "pure"

    @property
    def raw_bytes(self) -> bytes | None:
        """The undecoded BCS bytes, or ``None`` if the node decoded the value."""
        if not self.is_pure or self.value_type is not None:
            return None
        if not isinstance(self.value, list):
            return None
        if not all(isinstance(b, int) and 0 <= b <= 255 for b in self.value):
            return None
        return bytes(self.value)

    @classmethod
    def pure(cls, data: bytes) -> TransactionInput:
        """Build an undecoded pure input from raw BCS bytes."""
        return cls(type="pure", value=list(data))


class TransactionRecord(BaseModel):
    """A transaction block with its programmable-transaction inputs."""

    digest: str
    sender: Optional[str] = None
    kind: Optional[str] = None
    inputs: list[TransactionInput] = Field(default_factory=list)
    timestamp_ms: Optional[int] = None

    @classmethod
    def from_rpc(cls, data: dict) -> TransactionRecord:
        """Build a record from a ``SuiTransactionBlockResponse`` dict."""
        tx_data = ((data.get("transaction") or {}).get("data")) or {}
        kind_block = tx_data.get("transaction") or {}
        raw_ts = data.get("timestampMs")
        return cls(
            digest=data["digest"],
            sender=tx_data.get("sender"),
            kind=kind_block.get("kind"),
            inputs=[TransactionInput.model_validate(i) for i in kind_block.get("inputs", [])],
            timestamp_ms=int(raw_ts) if raw_ts is not None else None,
        )


class ObjectRef(BaseModel):
    """Reference to a specific version of an owned object (used for gas)."""

    object_id: str
    version: int
    digest: str
    balance: int = 0
