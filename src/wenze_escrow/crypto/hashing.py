"""Ledger hashes: blake2b-224 for credentials and scripts, blake2b-256 for tx ids."""

from __future__ import annotations

import hashlib

from ..config import PLUTUS_VERSION_TAGS, SCRIPT_HASH_SIZE, TX_ID_SIZE
from ..errors import ErrorCode, EscrowError


def blake2b_224(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=SCRIPT_HASH_SIZE).digest()


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=TX_ID_SIZE).digest()


def script_hash(script_bytes: bytes, plutus_version: str) -> bytes:
    """Hash of `language_tag || script_bytes`."""
    tag = PLUTUS_VERSION_TAGS.get(plutus_version.lower())
    if tag is None:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"unknown Plutus version: {plutus_version}")
    return blake2b_224(bytes([tag]) + script_bytes)
