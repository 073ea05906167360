"""Wallet balance decoding (CIP-30 `getBalance`)."""

from __future__ import annotations

from typing import Union

_WIDTHS = {0x18: 1, 0x19: 2, 0x1A: 4, 0x1B: 8}
# [coin, multiasset] value array
_VALUE_ARRAY_HEAD = 0x82


def _as_bytes(data: Union[bytes, bytearray, str, None]) -> bytes:
    if data is None:
        return b""
    if isinstance(data, str):
        return bytes.fromhex(data.strip())
    return bytes(data)


def _decode_uint(raw: bytes) -> int:
    first = raw[0]
    if first < 0x18:
        return first
    width = _WIDTHS.get(first)
    if width is None or len(raw) < 1 + width:
        return 0
    return int.from_bytes(raw[1:1 + width], "big")


def decode(data: Union[bytes, bytearray, str, None]) -> int:
    """Decode a tag-prefixed big-endian unsigned integer into lovelace.

    Best effort: empty or malformed input decodes to 0 so a balance refresh
    never blocks wallet connection.
    """
    try:
        raw = _as_bytes(data)
    except ValueError:
        return 0
    if not raw:
        return 0
    if raw[0] == _VALUE_ARRAY_HEAD and len(raw) > 1:
        return _decode_uint(raw[1:])
    return _decode_uint(raw)
