"""Escrow datum and redeemer codec.

Field order is fixed by the validator's `EscrowDatum`:
`Constr 0 [order_id, buyer, seller, amount, deadline]`.
Redeemers are `Release = Constr 0 []` and `Refund = Constr 1 []`.
"""

from __future__ import annotations

import time
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Optional, Union

from .config import (
    KEY_HASH_SIZE,
    LOVELACE_PER_ADA,
    MILLISECOND_DEADLINE_THRESHOLD,
)
from .encoding import decode_plutus_data, encode_plutus_data
from .errors import ErrorCode, EscrowError, Result
from .types import (
    Constr,
    DeadlineUnit,
    EscrowRecord,
    PlutusData,
    Redeemer,
    Refund,
    Release,
)

DATUM_ALTERNATIVE = 0
DATUM_ARITY = 5

FIELD_ORDER_ID = 0
FIELD_BUYER = 1
FIELD_SELLER = 2
FIELD_AMOUNT = 3
FIELD_DEADLINE = 4


def _fail(message: str) -> EscrowError:
    return EscrowError(ErrorCode.DATUM_DECODE_FAILURE, message)


def normalize_deadline(value: int, unit: DeadlineUnit = DeadlineUnit.AUTO) -> int:
    """Convert a caller deadline into POSIX seconds."""
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise EscrowError(ErrorCode.INVALID_INPUT, "deadline must be a non-negative integer")
    if unit is DeadlineUnit.MILLISECONDS:
        return value // 1000
    if unit is DeadlineUnit.AUTO and value > MILLISECOND_DEADLINE_THRESHOLD:
        return value // 1000
    return value


def ada_to_lovelace(amount: Union[int, float, str, Decimal]) -> int:
    """ADA -> lovelace, flooring sub-lovelace fractions."""
    if isinstance(amount, bool):
        raise EscrowError(ErrorCode.INVALID_AMOUNT, "amount must be a number")
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"amount is not a number: {amount!r}") from exc
    if not value.is_finite():
        raise EscrowError(ErrorCode.INVALID_AMOUNT, "amount must be finite")
    lovelace = int((value * LOVELACE_PER_ADA).to_integral_value(rounding=ROUND_FLOOR))
    if lovelace <= 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, "escrow amount must be > 0")
    return lovelace


def lovelace_to_ada(lovelace: int) -> Decimal:
    return Decimal(lovelace) / LOVELACE_PER_ADA


def order_id_bytes(order_id: str) -> bytes:
    return order_id.encode("utf-8")


def make_record(
    order_id: str,
    buyer_key_hash: bytes,
    seller_key_hash: bytes,
    amount: int,
    deadline: int,
    unit: DeadlineUnit = DeadlineUnit.AUTO,
) -> EscrowRecord:
    if not order_id:
        raise EscrowError(ErrorCode.INVALID_INPUT, "order_id must be non-empty")
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, "escrow amount must be > 0")
    for name, value in (("buyer_key_hash", buyer_key_hash), ("seller_key_hash", seller_key_hash)):
        if not isinstance(value, (bytes, bytearray)) or len(value) != KEY_HASH_SIZE:
            raise EscrowError(ErrorCode.INVALID_INPUT, f"{name} must be {KEY_HASH_SIZE} bytes")
    return EscrowRecord(
        order_id=order_id_bytes(order_id),
        buyer_key_hash=bytes(buyer_key_hash),
        seller_key_hash=bytes(seller_key_hash),
        amount=amount,
        deadline=normalize_deadline(deadline, unit),
    )


# --- Datum ---


def encode(record: EscrowRecord) -> Constr:
    return Constr(
        DATUM_ALTERNATIVE,
        (
            record.order_id,
            record.buyer_key_hash,
            record.seller_key_hash,
            record.amount,
            record.deadline,
        ),
    )


def _fields(value: PlutusData, required: int) -> tuple:
    if not isinstance(value, Constr):
        raise _fail("escrow datum must be a constructor value")
    if value.alternative != DATUM_ALTERNATIVE:
        raise _fail(f"unexpected datum constructor {value.alternative}")
    if len(value.fields) < required:
        raise _fail(f"datum has {len(value.fields)} fields, {required} required")
    return value.fields


def _bytes_field(fields: tuple, index: int, name: str, size: Optional[int] = None) -> bytes:
    v = fields[index]
    if not isinstance(v, bytes):
        raise _fail(f"{name} must be bytes")
    if size is not None and len(v) != size:
        raise _fail(f"{name} must be {size} bytes")
    return v


def _uint_field(fields: tuple, index: int, name: str) -> int:
    v = fields[index]
    if isinstance(v, bool) or not isinstance(v, int) or v < 0:
        raise _fail(f"{name} must be an unsigned integer")
    return v


def _decode_record(value: PlutusData) -> EscrowRecord:
    fields = _fields(value, DATUM_ARITY)
    return EscrowRecord(
        order_id=_bytes_field(fields, FIELD_ORDER_ID, "order_id"),
        buyer_key_hash=_bytes_field(fields, FIELD_BUYER, "buyer", KEY_HASH_SIZE),
        seller_key_hash=_bytes_field(fields, FIELD_SELLER, "seller", KEY_HASH_SIZE),
        amount=_uint_field(fields, FIELD_AMOUNT, "amount"),
        deadline=_uint_field(fields, FIELD_DEADLINE, "deadline"),
    )


def decode(value: PlutusData) -> Result[EscrowRecord]:
    try:
        return Result.success(_decode_record(value))
    except EscrowError as exc:
        return Result.failure(exc)


def read_order_id(value: PlutusData) -> bytes:
    fields = _fields(value, FIELD_ORDER_ID + 1)
    return _bytes_field(fields, FIELD_ORDER_ID, "order_id")


def read_deadline(value: PlutusData) -> int:
    fields = _fields(value, FIELD_DEADLINE + 1)
    return _uint_field(fields, FIELD_DEADLINE, "deadline")


def datum_to_cbor(record: EscrowRecord) -> bytes:
    return encode_plutus_data(encode(record))


def parse_cbor(data: bytes) -> PlutusData:
    try:
        return decode_plutus_data(data)
    except EscrowError as exc:
        raise _fail(exc.message) from exc


def datum_from_cbor(data: bytes) -> Result[EscrowRecord]:
    try:
        value = parse_cbor(data)
    except EscrowError as exc:
        return Result.failure(exc)
    return decode(value)


def try_decode(data: Optional[bytes]) -> Optional[EscrowRecord]:
    """Decode an observed inline datum; None when absent or foreign-shaped."""
    if data is None:
        return None
    result = datum_from_cbor(data)
    return result.value if result.ok else None


def deadline_from_cbor(data: Optional[bytes]) -> Result[int]:
    if data is None:
        return Result.failure(_fail("output carries no inline datum"))
    try:
        return Result.success(read_deadline(parse_cbor(data)))
    except EscrowError as exc:
        return Result.failure(exc)


def default_deadline(hours: int, now: Optional[int] = None) -> int:
    base = int(time.time()) if now is None else now
    return base + hours * 3600


# --- Redeemers ---


def encode_redeemer(redeemer: Redeemer) -> Constr:
    if isinstance(redeemer, Release):
        return Constr(Release.TAG, ())
    if isinstance(redeemer, Refund):
        return Constr(Refund.TAG, ())
    raise EscrowError(ErrorCode.INVALID_INPUT, f"unknown redeemer: {redeemer!r}")


def redeemer_to_cbor(redeemer: Redeemer) -> bytes:
    return encode_plutus_data(encode_redeemer(redeemer))


def decode_redeemer(value: PlutusData) -> Redeemer:
    if isinstance(value, Constr) and not value.fields:
        if value.alternative == Release.TAG:
            return Release()
        if value.alternative == Refund.TAG:
            return Refund()
    raise _fail(f"not an escrow redeemer: {value!r}")
