"""Shelley address encoding (CIP-19 header + bech32)."""

from __future__ import annotations

import string
from typing import Optional, Union

from .config import (
    ADDR_TYPE_ENTERPRISE_SCRIPT,
    BASE_ADDRESS_TYPES,
    ENTERPRISE_ADDRESS_TYPES,
    EXPLORER_TX_URLS,
    HRP_MAINNET,
    HRP_TESTNET,
    KEY_HASH_SIZE,
    POINTER_ADDRESS_TYPES,
    SCRIPT_HASH_SIZE,
    SCRIPT_PAYMENT_TYPES,
    TESTNET_LEADING_BYTES,
)
from .crypto import bech32
from .errors import ErrorCode, EscrowError
from .types import AddressDetails, Network

_RECOGNIZED_PREFIXES = (HRP_TESTNET + "1", HRP_MAINNET + "1")
_HEX_DIGITS = frozenset(string.hexdigits)

RawAddress = Union[bytes, bytearray, str]


def _invalid(message: str) -> EscrowError:
    return EscrowError(ErrorCode.INVALID_ADDRESS, message)


def is_bech32_address(value: object) -> bool:
    return isinstance(value, str) and value.lower().startswith(_RECOGNIZED_PREFIXES)


def _is_hex(value: str) -> bool:
    return len(value) % 2 == 0 and len(value) > 0 and all(c in _HEX_DIGITS for c in value)


def hrp_for(network: Network) -> str:
    return HRP_TESTNET if network is Network.TESTNET else HRP_MAINNET


def infer_network(raw: bytes) -> Network:
    """Network for raw address bytes when the caller gives no hint.

    0x00/0x01 imply a test network; other headers fall back to the CIP-19
    network nibble.
    """
    if not raw:
        raise _invalid("empty address")
    header = raw[0]
    if header in TESTNET_LEADING_BYTES:
        return Network.TESTNET
    return Network.TESTNET if (header & 0x0F) == 0 else Network.MAINNET


def _raw_bytes(raw: RawAddress) -> bytes:
    if isinstance(raw, str):
        text = raw.strip()
        if not _is_hex(text):
            raise _invalid("address must be bech32 or hex-encoded bytes")
        return bytes.fromhex(text)
    return bytes(raw)


def encode(raw: RawAddress, network: Optional[Network] = None) -> str:
    """Encode raw address bytes (or their hex) into a bech32 address.

    Strings already carrying `addr`/`addr_test` are returned unchanged.
    """
    if is_bech32_address(raw):
        return raw  # type: ignore[return-value]
    payload = _raw_bytes(raw)
    if not payload:
        raise _invalid("empty address")
    if network is None:
        network = infer_network(payload)
    return bech32.encode_bytes(hrp_for(network), payload)


def decode(addr: RawAddress) -> bytes:
    """Inverse of `encode`; hex strings and raw bytes are accepted as-is."""
    if isinstance(addr, (bytes, bytearray)):
        return bytes(addr)
    text = addr.strip()
    if not is_bech32_address(text):
        return _raw_bytes(text)
    hrp, payload = bech32.decode_bytes(text)
    if hrp not in (HRP_TESTNET, HRP_MAINNET):
        raise _invalid(f"unrecognized address prefix: {hrp}")
    if not payload:
        raise _invalid("empty address payload")
    return payload


def network_of(addr: str) -> Network:
    if addr.lower().startswith(HRP_TESTNET + "1"):
        return Network.TESTNET
    if addr.lower().startswith(HRP_MAINNET + "1"):
        return Network.MAINNET
    return infer_network(decode(addr))


def address_details(addr: RawAddress) -> AddressDetails:
    raw = decode(addr)
    if not raw:
        raise _invalid("empty address")
    header = raw[0]
    addr_type = header >> 4
    network_id = header & 0x0F
    if addr_type in BASE_ADDRESS_TYPES:
        if len(raw) != 1 + 2 * KEY_HASH_SIZE:
            raise _invalid("base address must be 57 bytes")
        return AddressDetails(
            address_type=addr_type,
            network_id=network_id,
            payment_hash=raw[1:1 + KEY_HASH_SIZE],
            payment_is_script=addr_type in SCRIPT_PAYMENT_TYPES,
            stake_hash=raw[1 + KEY_HASH_SIZE:],
            stake_is_script=addr_type in (0x2, 0x3),
        )
    if addr_type in POINTER_ADDRESS_TYPES or addr_type in ENTERPRISE_ADDRESS_TYPES:
        if len(raw) < 1 + KEY_HASH_SIZE:
            raise _invalid("address too short for a payment credential")
        if addr_type in ENTERPRISE_ADDRESS_TYPES and len(raw) != 1 + KEY_HASH_SIZE:
            raise _invalid("enterprise address must be 29 bytes")
        return AddressDetails(
            address_type=addr_type,
            network_id=network_id,
            payment_hash=raw[1:1 + KEY_HASH_SIZE],
            payment_is_script=addr_type in SCRIPT_PAYMENT_TYPES,
        )
    raise _invalid(f"address type {addr_type:#x} has no payment credential")


def payment_key_hash(addr: RawAddress) -> bytes:
    """Payment verification-key hash of a key-controlled address."""
    details = address_details(addr)
    if details.payment_is_script or details.payment_hash is None:
        raise EscrowError(ErrorCode.INVALID_ADDRESS, "address payment credential is not a key hash")
    return details.payment_hash


def script_hash_of(addr: RawAddress) -> Optional[bytes]:
    """Script-hash component of an address, or None for key-controlled ones."""
    details = address_details(addr)
    return details.payment_hash if details.payment_is_script else None


def script_address_bytes(script_hash: bytes, network: Network) -> bytes:
    if len(script_hash) != SCRIPT_HASH_SIZE:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"script hash must be {SCRIPT_HASH_SIZE} bytes")
    header = (ADDR_TYPE_ENTERPRISE_SCRIPT << 4) | network.network_id
    return bytes([header]) + script_hash


def script_address(script_hash: bytes, network: Network) -> str:
    return encode(script_address_bytes(script_hash, network), network)


def explorer_url(tx_id: str, network: Network) -> str:
    return EXPLORER_TX_URLS[network.value] + tx_id
