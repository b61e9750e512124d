"""Sui ``TransactionData`` encoding for relay replies, and decoding for review.

Both directions go through pysui's BCS schema (``pysui.sui.sui_bcs.bcs``).
Only ``TransactionData::V1`` carrying a programmable transaction is
supported, which is what wallets and SDKs produce for user transactions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from canoser import Cursor
from pysui.sui.sui_bcs import bcs

from sign_relay.chain.models import ObjectRef
from sign_relay.errors import TransactionDecodeError
from sign_relay.wire.bcs import BCS_DECODE_ERRORS, normalize_address

# pysui names the command after its struct; Sui calls it SplitCoins.
_COMMAND_NAMES = {"SplitCoin": "SplitCoins"}


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def _address(address: str) -> bcs.Address:
    return bcs.Address.from_str(normalize_address(address))


def _object_reference(ref: ObjectRef) -> bcs.ObjectReference:
    return bcs.ObjectReference(_address(ref.object_id), ref.version, bcs.Digest.from_str(ref.digest))


def build_transfer_reply(
    *,
    sender: str,
    recipient: str,
    payload: Sequence[bytes],
    gas_payment: Sequence[ObjectRef],
    gas_price: int,
    gas_budget: int,
) -> bytes:
    """Build a self-funded reply transaction.

    The inputs are the BCS *payload* values followed by *recipient* as an
    address, and the single command transfers the gas coin to *recipient*.

    Returns the BCS-encoded ``TransactionData`` ready to be signed.
    """
    if not gas_payment:
        raise ValueError(f"No gas coins available for {sender}")

    inputs = [bcs.CallArg("Pure", list(value)) for value in payload]
    inputs.append(bcs.CallArg("Pure", list(_address(recipient).serialize())))

    transfer = bcs.TransferObjects([bcs.Argument("GasCoin")], bcs.Argument("Input", len(inputs) - 1))
    kind = bcs.TransactionKind(
        "ProgrammableTransaction",
        bcs.ProgrammableTransaction(inputs, [bcs.Command("TransferObjects", transfer)]),
    )
    gas = bcs.GasData(
        [_object_reference(ref) for ref in gas_payment],
        _address(sender),
        gas_price,
        gas_budget,
    )
    data = bcs.TransactionDataV1(kind, _address(sender), gas, bcs.TransactionExpiration("None"))
    return bcs.TransactionData("V1", data).serialize()


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


@dataclass
class DecodedCommand:
    name: str
    detail: str = ""

    def __str__(self) -> str:
        return f"{self.name}({self.detail})" if self.detail else self.name


@dataclass
class DecodedTransaction:
    """Human-reviewable view of a ``TransactionData`` payload."""

    sender: str
    inputs: list[str] = field(default_factory=list)
    commands: list[DecodedCommand] = field(default_factory=list)
    gas_owner: str = ""
    gas_price: int = 0
    gas_budget: int = 0
    gas_payment: list[ObjectRef] = field(default_factory=list)
    expiration_epoch: Optional[int] = None

    def summary(self) -> list[str]:
        """One line per notable field, for display before signing."""
        lines = [
            f"Sender: {self.sender}",
            f"Gas: budget {self.gas_budget} MIST at price {self.gas_price} (owner {self.gas_owner})",
            f"Inputs: {len(self.inputs)}",
        ]
        lines.extend(f"  #{i}: {desc}" for i, desc in enumerate(self.inputs))
        lines.append(f"Commands: {len(self.commands)}")
        lines.extend(f"  {i}. {cmd}" for i, cmd in enumerate(self.commands))
        if self.expiration_epoch is not None:
            lines.append(f"Expires at epoch {self.expiration_epoch}")
        return lines


def _object_ref(ref: bcs.ObjectReference) -> ObjectRef:
    return ObjectRef(
        object_id=ref.ObjectID.to_address_str(),
        version=ref.SequenceNumber,
        digest=ref.ObjectDigest.to_digest_str(),
    )


def _type_tag(tag: bcs.TypeTag) -> str:
    if tag.enum_name == "Struct":
        struct = tag.value
        rendered = f"{struct.address.to_address_str()}::{struct.module}::{struct.name}"
        params = [_type_tag(param) for param in struct.type_parameters]
        return f"{rendered}<{', '.join(params)}>" if params else rendered
    if tag.enum_name == "Vector":
        return f"vector<{', '.join(_type_tag(inner) for inner in tag.value)}>"
    return tag.enum_name.lower()


def _argument(arg: bcs.Argument) -> str:
    if arg.enum_name == "GasCoin":
        return "GasCoin"
    if arg.enum_name == "NestedResult":
        command, result = arg.value
        return f"NestedResult({command}, {result})"
    return f"{arg.enum_name}({arg.value})"


def _arguments(args: Sequence[bcs.Argument]) -> str:
    return ", ".join(_argument(arg) for arg in args)


def _call_arg(arg: bcs.CallArg) -> str:
    if arg.enum_name == "Pure":
        return f"Pure({len(arg.value)} bytes)"
    if arg.enum_name != "Object":
        return arg.enum_name

    obj = arg.value
    if obj.enum_name == "SharedObject":
        mutable = "mutable" if obj.value.Mutable else "immutable"
        return f"SharedObject({obj.value.ObjectID.to_address_str()}, {mutable})"
    return f"{obj.enum_name}({obj.value.ObjectID.to_address_str()})"


def _command(command: bcs.Command) -> DecodedCommand:
    name = _COMMAND_NAMES.get(command.enum_name, command.enum_name)
    body = command.value

    if name == "MoveCall":
        target = f"{body.Package.to_address_str()}::{body.Module}::{body.Function}"
        if body.Type_Arguments:
            target += f"<{', '.join(_type_tag(t) for t in body.Type_Arguments)}>"
        return DecodedCommand(name, f"{target}, [{_arguments(body.Arguments)}]")
    if name == "TransferObjects":
        return DecodedCommand(name, f"[{_arguments(body.Objects)}] -> {_argument(body.Address)}")
    if name == "SplitCoins":
        return DecodedCommand(name, f"{_argument(body.FromCoin)}, [{_arguments(body.Amount)}]")
    if name == "MergeCoins":
        return DecodedCommand(name, f"{_argument(body.ToCoin)}, [{_arguments(body.FromCoins)}]")
    if name == "Publish":
        return DecodedCommand(name, f"{len(body.Modules)} modules, {len(body.Dependents)} dependencies")
    if name == "MakeMoveVec":
        type_tag = _type_tag(body.TypeTag.value) if body.TypeTag.value is not None else "_"
        return DecodedCommand(name, f"{type_tag}, [{_arguments(body.Vector)}]")
    # Upgrade
    return DecodedCommand(
        name,
        f"{body.Package.to_address_str()}, {len(body.Modules)} modules, "
        f"{len(body.Dependents)} dependencies, ticket {_argument(body.UpgradeTicket)}",
    )


def _expiration_epoch(expiration: bcs.TransactionExpiration) -> Optional[int]:
    if expiration.enum_name == "Epoch":
        return expiration.value
    if expiration.enum_name == "ValidDuring":
        return expiration.value.max_epoch.value
    return None


def decode_transaction(tx_bytes: bytes) -> DecodedTransaction:
    """Deserialize BCS ``TransactionData`` bytes.

    Raises
    ------
    TransactionDecodeError
        If the bytes are not a V1 programmable transaction, or are truncated
        or carry trailing data.
    """
    if tx_bytes[:1] != b"\x00":
        version = tx_bytes[0] if tx_bytes else None
        raise TransactionDecodeError(f"Unsupported TransactionData version {version}")

    cursor = Cursor(tx_bytes)
    try:
        data = bcs.TransactionData.decode(cursor).value
    except BCS_DECODE_ERRORS as exc:
        raise TransactionDecodeError(f"Malformed TransactionData: {exc!r}") from exc
    if not cursor.is_finished():
        raise TransactionDecodeError(
            f"{len(tx_bytes) - cursor.position()} trailing bytes after TransactionData"
        )

    kind = data.TransactionKind
    if kind.enum_name != "ProgrammableTransaction":
        raise TransactionDecodeError(f"Unsupported TransactionKind {kind.enum_name}")

    programmable = kind.value
    gas = data.GasData
    return DecodedTransaction(
        sender=data.Sender.to_address_str(),
        inputs=[_call_arg(arg) for arg in programmable.Inputs],
        commands=[_command(command) for command in programmable.Command],
        gas_owner=gas.Owner.to_address_str(),
        gas_price=gas.Price,
        gas_budget=gas.Budget,
        gas_payment=[_object_ref(ref) for ref in gas.Payment],
        expiration_epoch=_expiration_epoch(data.TransactionExpiration),
    )
