"""Core types for the escrow client.

The escrow record, redeemers and locked outputs mirror the deployed validator's
`EscrowDatum` and `EscrowRedeemer` types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .config import NETWORK_ID_MAINNET, NETWORK_ID_TESTNET


class Network(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"

    @property
    def network_id(self) -> int:
        return NETWORK_ID_TESTNET if self is Network.TESTNET else NETWORK_ID_MAINNET

    @classmethod
    def from_network_id(cls, network_id: int) -> "Network":
        return cls.TESTNET if network_id == NETWORK_ID_TESTNET else cls.MAINNET


class DeadlineUnit(Enum):
    SECONDS = "seconds"
    MILLISECONDS = "milliseconds"
    # Treat values above MILLISECOND_DEADLINE_THRESHOLD as milliseconds
    AUTO = "auto"


class OrderState(Enum):
    UNINITIALIZED = "uninitialized"
    LOCKING = "locking"
    LOCKED = "locked"
    RELEASING = "releasing"
    RELEASED = "released"
    REFUNDING = "refunding"
    REFUNDED = "refunded"
    LOCK_FAILED = "lock_failed"
    SPEND_FAILED = "spend_failed"


# --- Plutus data ---


@dataclass(frozen=True)
class Constr:
    """Tagged product value (`Constr alternative [fields]`)."""

    alternative: int
    fields: tuple = ()


# int | bytes | list | dict | Constr
PlutusData = Union[int, bytes, list, dict, Constr]


# --- Redeemers ---


@dataclass(frozen=True)
class Release:
    TAG = 0


@dataclass(frozen=True)
class Refund:
    TAG = 1


Redeemer = Union[Release, Refund]


# --- Escrow ---


@dataclass(frozen=True)
class EscrowRecord:
    order_id: bytes
    buyer_key_hash: bytes
    seller_key_hash: bytes
    amount: int
    deadline: int

    @property
    def order_id_text(self) -> str:
        return self.order_id.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class LockedOutput:
    tx_id: str
    output_index: int
    address: str
    locked_amount: int
    datum: Optional[EscrowRecord] = None
    owning_script_hash: Optional[bytes] = None
    datum_cbor: Optional[bytes] = None
    # Non-lovelace assets as {unit: quantity}
    assets: dict[str, int] = field(default_factory=dict, compare=False)

    @property
    def ref(self) -> str:
        return f"{self.tx_id}#{self.output_index}"


@dataclass(frozen=True)
class ScriptIdentity:
    script_bytes: bytes
    script_hash: bytes
    derived_address: str
    plutus_version: str = "v3"
    network: Network = Network.TESTNET


@dataclass(frozen=True)
class AddressDetails:
    address_type: int
    network_id: int
    payment_hash: Optional[bytes]
    payment_is_script: bool
    stake_hash: Optional[bytes] = None
    stake_is_script: bool = False

    @property
    def network(self) -> Network:
        return Network.from_network_id(self.network_id)


# --- Transaction drafts handed to the wallet for completion and signing ---


@dataclass(frozen=True)
class ValidityInterval:
    # POSIX seconds; None means unbounded
    lower_bound: Optional[int] = None
    upper_bound: Optional[int] = None


@dataclass(frozen=True)
class TxOutput:
    address: str
    lovelace: int
    inline_datum: Optional[bytes] = None
    assets: dict[str, int] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class ScriptInput:
    output: LockedOutput
    redeemer: Redeemer
    redeemer_cbor: bytes


@dataclass(frozen=True)
class TxDraft:
    kind: str
    outputs: tuple[TxOutput, ...] = ()
    script_inputs: tuple[ScriptInput, ...] = ()
    attached_script: Optional[ScriptIdentity] = None
    required_signers: tuple[bytes, ...] = ()
    validity: ValidityInterval = ValidityInterval()
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)


# --- Orchestrator results ---


@dataclass(frozen=True)
class LockResult:
    tx_id: str
    script_address: str
    locked_output: LockedOutput


@dataclass(frozen=True)
class OutputLookup:
    outputs: list[LockedOutput]
    # False when the order-id filter matched nothing and all outputs were returned
    exact: bool


@dataclass(frozen=True)
class EscrowStatus:
    exists: bool
    output: Optional[LockedOutput] = None
    deadline: Optional[int] = None
    details_available: bool = False
