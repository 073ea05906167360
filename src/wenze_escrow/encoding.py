"""Plutus data wire format on top of cbor2.

Matches the ledger's canonical Plutus data serialization:
- constructor alternatives 0..6 -> tag 121+n, 7..127 -> tag 1280+(n-7),
  anything else -> tag 102 [n, fields]
- non-empty lists are indefinite-length arrays, the empty list is 0x80
- byte strings over 64 bytes are chunked inside an indefinite byte string
- integers beyond 64 bits use bignum tags 2/3

cbor2 only emits definite-length items, so lists, long byte strings and
constructors are wrapped in adapter types that the encoder hook writes out.
Decoding is bounded by PLUTUS_DATA_MAX_DEPTH; datums at a script address are
chosen by whoever pays to it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import cbor2

from .config import PLUTUS_BYTES_CHUNK_SIZE, PLUTUS_DATA_MAX_DEPTH
from .errors import ErrorCode, EscrowError
from .types import Constr, PlutusData

TAG_CONSTR_GENERAL = 102
TAG_CONSTR_SMALL_BASE = 121
TAG_CONSTR_LARGE_BASE = 1280

INDEFINITE_ARRAY = b"\x9f"
INDEFINITE_BYTES = b"\x5f"
BREAK = b"\xff"


def _fail(message: str) -> EscrowError:
    return EscrowError(ErrorCode.DATUM_DECODE_FAILURE, message)


@dataclass(frozen=True)
class IndefiniteList:
    items: tuple


@dataclass(frozen=True)
class ChunkedBytes:
    value: bytes


# --- Encoding ---


def _as_list(items: tuple) -> Any:
    # Empty tuple encodes as 0x80 and stays hashable for map keys
    return IndefiniteList(items) if items else ()


def _prepare(value: PlutusData) -> Any:
    # bool is an int subclass but has no Plutus data form
    if isinstance(value, bool):
        raise EscrowError(ErrorCode.INVALID_INPUT, "bool is not Plutus data; use Constr(0|1, [])")
    if isinstance(value, Constr):
        if value.alternative < 0:
            raise EscrowError(ErrorCode.INVALID_INPUT, "constructor alternative must be >= 0")
        return Constr(value.alternative, tuple(_prepare(f) for f in value.fields))
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        return ChunkedBytes(raw) if len(raw) > PLUTUS_BYTES_CHUNK_SIZE else raw
    if isinstance(value, (list, tuple)):
        return _as_list(tuple(_prepare(v) for v in value))
    if isinstance(value, dict):
        return {_prepare(k): _prepare(v) for k, v in value.items()}
    raise EscrowError(ErrorCode.INVALID_INPUT, f"unsupported Plutus data type: {type(value).__name__}")


def _encode_adapter(encoder: cbor2.CBOREncoder, value: Any) -> None:
    if isinstance(value, IndefiniteList):
        encoder.write(INDEFINITE_ARRAY)
        for item in value.items:
            encoder.encode(item)
        encoder.write(BREAK)
    elif isinstance(value, ChunkedBytes):
        encoder.write(INDEFINITE_BYTES)
        for i in range(0, len(value.value), PLUTUS_BYTES_CHUNK_SIZE):
            encoder.encode(value.value[i:i + PLUTUS_BYTES_CHUNK_SIZE])
        encoder.write(BREAK)
    elif isinstance(value, Constr):
        alt = value.alternative
        fields = _as_list(value.fields)
        if alt <= 6:
            encoder.encode(cbor2.CBORTag(TAG_CONSTR_SMALL_BASE + alt, fields))
        elif alt <= 127:
            encoder.encode(cbor2.CBORTag(TAG_CONSTR_LARGE_BASE + alt - 7, fields))
        else:
            encoder.encode(cbor2.CBORTag(TAG_CONSTR_GENERAL, [alt, fields]))
    else:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"unsupported Plutus data type: {type(value).__name__}")


def encode_plutus_data(value: PlutusData) -> bytes:
    prepared = _prepare(value)
    try:
        return cbor2.dumps(prepared, default=_encode_adapter)
    except cbor2.CBOREncodeError as exc:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"cannot encode Plutus data: {exc}") from exc


# --- Decoding ---


def _load(data: bytes) -> Any:
    """Decode exactly one CBOR item; trailing bytes are rejected."""
    fp = BytesIO(data)
    try:
        value = cbor2.CBORDecoder(fp, read_size=1, max_depth=PLUTUS_DATA_MAX_DEPTH).decode()
    except (cbor2.CBORError, RecursionError, ValueError, TypeError, OverflowError) as exc:
        raise _fail(f"malformed CBOR: {exc}") from exc
    trailing = len(data) - fp.tell()
    if trailing:
        raise _fail(f"{trailing} trailing bytes after Plutus data")
    return value


def _fields(payload: Any, depth: int) -> tuple:
    if not isinstance(payload, (list, tuple)):
        raise _fail("expected array of constructor fields")
    return tuple(_to_plutus(v, depth + 1) for v in payload)


def _constr(value: cbor2.CBORTag, depth: int) -> Constr:
    tag = value.tag
    if TAG_CONSTR_SMALL_BASE <= tag <= TAG_CONSTR_SMALL_BASE + 6:
        return Constr(tag - TAG_CONSTR_SMALL_BASE, _fields(value.value, depth))
    if TAG_CONSTR_LARGE_BASE <= tag <= TAG_CONSTR_LARGE_BASE + 120:
        return Constr(tag - TAG_CONSTR_LARGE_BASE + 7, _fields(value.value, depth))
    if tag == TAG_CONSTR_GENERAL:
        payload = value.value
        if not isinstance(payload, (list, tuple)) or len(payload) != 2:
            raise _fail("general constructor must be a 2-element array")
        alt = payload[0]
        if not isinstance(alt, int) or isinstance(alt, bool):
            raise _fail("general constructor alternative must be an integer")
        return Constr(alt, _fields(payload[1], depth))
    raise _fail(f"unsupported CBOR tag {tag}")


def _to_plutus(value: Any, depth: int = 0) -> PlutusData:
    if depth > PLUTUS_DATA_MAX_DEPTH:
        raise _fail("Plutus data nested too deeply")
    if isinstance(value, bool) or value is None:
        raise _fail(f"{value!r} is not Plutus data")
    # Bignum tags 2/3 arrive as int
    if isinstance(value, (int, bytes)):
        return value
    if isinstance(value, (list, tuple)):
        return [_to_plutus(v, depth + 1) for v in value]
    if isinstance(value, Mapping):
        return {_hashable(_to_plutus(k, depth + 1)): _to_plutus(v, depth + 1) for k, v in value.items()}
    if isinstance(value, cbor2.CBORTag):
        return _constr(value, depth)
    raise _fail(f"{type(value).__name__} is not Plutus data")


def _hashable(value: PlutusData):
    if isinstance(value, list):
        return tuple(_hashable(v) for v in value)
    if isinstance(value, Constr):
        return Constr(value.alternative, tuple(_hashable(v) for v in value.fields))
    if isinstance(value, dict):
        raise _fail("map keys must not be maps")
    return value


def decode_plutus_data(data: bytes) -> PlutusData:
    """Decode one Plutus data item."""
    return _to_plutus(_load(bytes(data)))


def unwrap_cbor_bytes(data: bytes) -> bytes:
    """Strip one CBOR byte-string wrapper (used for double-wrapped scripts)."""
    try:
        inner = _load(bytes(data))
    except EscrowError as exc:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"expected a CBOR byte string: {exc.message}") from exc
    if not isinstance(inner, bytes):
        raise EscrowError(ErrorCode.INVALID_INPUT, "expected a CBOR byte string")
    return inner


def is_cbor_bytes(data: bytes) -> bool:
    try:
        unwrap_cbor_bytes(data)
    except EscrowError:
        return False
    return True
