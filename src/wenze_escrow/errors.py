"""Escrow client error codes, exceptions and result wrapper."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Generic, Optional, TypeVar


class ErrorCategory(IntEnum):
    SUCCESS = 0x00
    VALIDATION = 0x01
    SESSION = 0x02
    WALLET = 0x03
    SCRIPT = 0x04
    DATUM = 0x05
    NETWORK = 0x06
    STATE = 0x07
    INTERNAL = 0xFF


class ErrorCode(IntEnum):
    # Success
    SUCCESS = 0x0000

    # Validation
    INVALID_INPUT = 0x0100
    INVALID_ADDRESS = 0x0101
    INVALID_AMOUNT = 0x0102

    # Session
    SESSION_UNAVAILABLE = 0x0200
    WRONG_ACCOUNT = 0x0201
    WRONG_NETWORK = 0x0202

    # Wallet
    INSUFFICIENT_FUNDS = 0x0300
    SIGNING_REJECTED = 0x0301

    # Script
    SCRIPT_MISMATCH = 0x0400

    # Datum
    DATUM_DECODE_FAILURE = 0x0500

    # Network
    SUBMISSION_FAILURE = 0x0600
    CONFIRMATION_TIMEOUT = 0x0601
    INDEXER_ERROR = 0x0602

    # State
    ESCROW_NOT_FOUND = 0x0700
    ALREADY_SPENT = 0x0701
    INVALID_STATE = 0x0702

    # Internal
    INTERNAL_ERROR = 0xFF00

    @property
    def category(self) -> ErrorCategory:
        return ErrorCategory(self.value >> 8)


_USER_MESSAGES = {
    ErrorCode.INVALID_INPUT: "The escrow request is invalid.",
    ErrorCode.INVALID_ADDRESS: "The Cardano address is malformed.",
    ErrorCode.INVALID_AMOUNT: "The amount must be greater than zero.",
    ErrorCode.SESSION_UNAVAILABLE: "No Cardano wallet is connected. Please reconnect your wallet.",
    ErrorCode.WRONG_ACCOUNT: "The connected wallet is not the expected account.",
    ErrorCode.WRONG_NETWORK: "Please switch your wallet to the configured network.",
    ErrorCode.INSUFFICIENT_FUNDS: "Insufficient balance. Please top up your wallet.",
    ErrorCode.SIGNING_REJECTED: "Transaction cancelled: signing was declined in the wallet.",
    ErrorCode.SCRIPT_MISMATCH: "These funds are locked by a different escrow script version.",
    ErrorCode.DATUM_DECODE_FAILURE: "The escrow exists but its details are unavailable.",
    ErrorCode.SUBMISSION_FAILURE: "The transaction failed. Please try again.",
    ErrorCode.CONFIRMATION_TIMEOUT: "The transaction was not confirmed in time. Please try again.",
    ErrorCode.INDEXER_ERROR: "The chain indexer is unavailable. Please try again.",
    ErrorCode.ESCROW_NOT_FOUND: "No escrowed funds were found for this order.",
    ErrorCode.ALREADY_SPENT: "These escrowed funds were already released or refunded.",
    ErrorCode.INVALID_STATE: "This escrow operation is not allowed in the current order state.",
}


def user_message(code: ErrorCode) -> str:
    return _USER_MESSAGES.get(code, "Unexpected error.")


@dataclass(frozen=True)
class EscrowError(Exception):
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict, compare=False)

    def __str__(self) -> str:
        return f"{self.code.name}({self.code:#06x}): {self.message}"

    @property
    def user_message(self) -> str:
        return user_message(self.code)


# Allow Python's Exception machinery to set __traceback__/__context__/__cause__
# while keeping dataclass fields frozen.
_EXCEPTION_ATTRS = frozenset(("__traceback__", "__context__", "__cause__", "__suppress_context__", "__notes__"))
_frozen_setattr = EscrowError.__setattr__


def _escrow_error_setattr(self: EscrowError, name: str, value: object) -> None:
    if name in _EXCEPTION_ATTRS:
        object.__setattr__(self, name, value)
    else:
        _frozen_setattr(self, name, value)


EscrowError.__setattr__ = _escrow_error_setattr  # type: ignore[method-assign]


def err(code: ErrorCode, message: str, **details: Any) -> EscrowError:
    return EscrowError(code=code, message=message, details=details)


T = TypeVar("T")


class Result(Generic[T]):
    """Thin wrapper for operation results returned across public boundaries."""

    def __init__(self, ok: bool, value: Optional[T] = None, error: Optional[EscrowError] = None):
        self.ok = ok
        self.value = value
        self.error = error

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(True, value, None)

    @classmethod
    def failure(cls, error: EscrowError) -> "Result[T]":
        return cls(False, None, error)

    def unwrap(self) -> T:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.error})"


_REJECTION_MARKERS = ("declined", "rejected", "refused", "cancel", "denied")
_FUNDS_MARKERS = ("insufficient", "not enough", "balance", "utxo balance")


def classify_wallet_failure(exc: BaseException) -> EscrowError:
    """Map a wallet/submission failure message onto a typed error."""
    if isinstance(exc, EscrowError):
        return exc
    text = str(exc) or exc.__class__.__name__
    lowered = text.lower()
    if any(marker in lowered for marker in _REJECTION_MARKERS):
        return err(ErrorCode.SIGNING_REJECTED, text)
    if any(marker in lowered for marker in _FUNDS_MARKERS):
        return err(ErrorCode.INSUFFICIENT_FUNDS, text)
    return err(ErrorCode.SUBMISSION_FAILURE, text)
