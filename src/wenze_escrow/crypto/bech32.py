"""Bech32 primitives (BIP-0173 checksum, no length limit).

Cardano addresses routinely exceed BIP-0173's 90-character limit, so neither
encode nor decode enforces one.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from ..errors import ErrorCode, EscrowError

CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
CHARSET_REV = {c: i for i, c in enumerate(CHARSET)}

_GENERATORS = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_BECH32_CONST = 1


def _invalid(message: str) -> EscrowError:
    return EscrowError(ErrorCode.INVALID_ADDRESS, message)


def _polymod(values: Sequence[int]) -> int:
    chk = 1
    for v in values:
        top = chk >> 25
        chk = ((chk & 0x1FFFFFF) << 5) ^ v
        for i in range(5):
            if (top >> i) & 1:
                chk ^= _GENERATORS[i]
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def create_checksum(hrp: str, data: Sequence[int]) -> List[int]:
    polymod = _polymod(_hrp_expand(hrp) + list(data) + [0, 0, 0, 0, 0, 0]) ^ _BECH32_CONST
    return [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]


def verify_checksum(hrp: str, data: Sequence[int]) -> bool:
    return _polymod(_hrp_expand(hrp) + list(data)) == _BECH32_CONST


def convertbits(data: Iterable[int], from_bits: int, to_bits: int, pad: bool = True) -> List[int]:
    acc = 0
    bits = 0
    ret: List[int] = []
    maxv = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or (value >> from_bits):
            raise _invalid("invalid value for convertbits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            ret.append((acc >> bits) & maxv)
    if pad:
        if bits:
            ret.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        raise _invalid("invalid padding in bech32 data")
    return ret


def bech32_encode(hrp: str, data: Sequence[int]) -> str:
    hrp = hrp.lower()
    combined = list(data) + create_checksum(hrp, data)
    return hrp + "1" + "".join(CHARSET[d] for d in combined)


def bech32_decode(bech: str) -> Tuple[str, List[int]]:
    if any(c.isupper() for c in bech) and any(c.islower() for c in bech):
        raise _invalid("mixed-case bech32 string")
    bech = bech.lower()
    pos = bech.rfind("1")
    if pos < 1 or pos + 7 > len(bech):
        raise _invalid("invalid bech32 separator position")
    hrp = bech[:pos]
    if any(ord(c) < 33 or ord(c) > 126 for c in hrp):
        raise _invalid("invalid bech32 prefix characters")
    try:
        data = [CHARSET_REV[c] for c in bech[pos + 1:]]
    except KeyError:
        raise _invalid("invalid bech32 data character") from None
    if not verify_checksum(hrp, data):
        raise _invalid("bech32 checksum mismatch")
    return hrp, data[:-6]


def encode_bytes(hrp: str, payload: bytes) -> str:
    return bech32_encode(hrp, convertbits(payload, 8, 5, pad=True))


def decode_bytes(bech: str) -> Tuple[str, bytes]:
    hrp, words = bech32_decode(bech)
    return hrp, bytes(convertbits(words, 5, 8, pad=False))
