"""Codec test vector generators (Plutus data, escrow datum, addresses, balances)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import address, balance, datum
from .crypto.hashing import script_hash
from .encoding import encode_plutus_data
from .types import Constr, EscrowRecord, Network, Refund, Release

SAMPLE_BUYER = bytes([0x11] * 28)
SAMPLE_SELLER = bytes([0x22] * 28)
SAMPLE_SCRIPT = bytes.fromhex("4e4d01000033222220051200120011")


@dataclass
class CodecVector:
    name: str
    description: Optional[str]
    input: Dict[str, Any]
    expected_hex: str


def _record(order_id: str, amount: int, deadline: int) -> EscrowRecord:
    return EscrowRecord(order_id.encode("utf-8"), SAMPLE_BUYER, SAMPLE_SELLER, amount, deadline)


def plutus_data_vectors() -> Dict[str, Any]:
    cases = [
        ("uint_small", None, 5),
        ("uint_u8", None, 24),
        ("uint_u64_max", None, 2**64 - 1),
        ("nint", None, -1),
        ("bignum", "Positive bignum beyond 64 bits", 2**64),
        ("bytes_empty", None, b""),
        ("bytes_64", "Longest unchunked byte string", bytes([0xAB] * 64)),
        ("bytes_65", "Chunked into 64 + 1", bytes([0xAB] * 65)),
        ("list_empty", None, []),
        ("list", "Non-empty lists are indefinite", [1, 2]),
        ("constr_0_empty", None, Constr(0, ())),
        ("constr_7", "First extended constructor tag", Constr(7, (1,))),
        ("constr_128", "General constructor form", Constr(128, ())),
        ("map", None, {1: b"\x01"}),
    ]
    vectors: List[CodecVector] = []
    for name, description, value in cases:
        vectors.append(
            CodecVector(
                name=name,
                description=description,
                input={"value": repr(value)},
                expected_hex=encode_plutus_data(value).hex(),
            )
        )
    return {"codec": "plutus_data", "test_vectors": [v.__dict__ for v in vectors]}


def datum_vectors() -> Dict[str, Any]:
    records = [
        ("basic", None, _record("order-1", 5_000_000, 1_700_000_000)),
        ("uuid_order", "UUID order identifiers", _record("3f2b8c1e-7a9d-4f60-b1c2-9d8e7f6a5b4c", 1, 0)),
        ("large_amount", None, _record("o", 45_000_000_000_000_000, 4_102_444_800)),
    ]
    vectors = [
        CodecVector(
            name=name,
            description=description,
            input={
                "order_id": rec.order_id_text,
                "buyer": rec.buyer_key_hash.hex(),
                "seller": rec.seller_key_hash.hex(),
                "amount": rec.amount,
                "deadline": rec.deadline,
            },
            expected_hex=datum.datum_to_cbor(rec).hex(),
        )
        for name, description, rec in records
    ]
    return {"codec": "escrow_datum", "test_vectors": [v.__dict__ for v in vectors]}


def redeemer_vectors() -> Dict[str, Any]:
    vectors = [
        CodecVector("release", None, {"redeemer": "Release"}, datum.redeemer_to_cbor(Release()).hex()),
        CodecVector("refund", None, {"redeemer": "Refund"}, datum.redeemer_to_cbor(Refund()).hex()),
    ]
    return {"codec": "escrow_redeemer", "test_vectors": [v.__dict__ for v in vectors]}


def address_vectors() -> Dict[str, Any]:
    h = script_hash(SAMPLE_SCRIPT, "v3")
    cases = [
        ("script_testnet", None, address.script_address_bytes(h, Network.TESTNET), None),
        ("script_mainnet", None, address.script_address_bytes(h, Network.MAINNET), None),
        ("enterprise_key_testnet", None, bytes([0x60]) + SAMPLE_BUYER, None),
        ("base_key_inferred", "Leading 0x00 implies testnet", bytes([0x00]) + SAMPLE_BUYER + SAMPLE_SELLER, None),
        ("base_key_forced_mainnet", None, bytes([0x00]) + SAMPLE_BUYER + SAMPLE_SELLER, Network.MAINNET),
    ]
    vectors = []
    for name, description, raw, network in cases:
        vectors.append(
            {
                "name": name,
                "description": description,
                "input": {"raw_hex": raw.hex(), "network": network.value if network else None},
                "expected": address.encode(raw, network),
            }
        )
    return {"codec": "bech32_address", "test_vectors": vectors}


def balance_vectors() -> Dict[str, Any]:
    cases = [
        ("literal", "05"),
        ("u8", "1864"),
        ("u16", "190100"),
        ("u32", "1a000f4240"),
        ("u64", "1b0000000100000000"),
        ("value_array", "821a001e8480a0"),
        ("empty", ""),
        ("truncated", "1a00"),
    ]
    vectors = [{"name": name, "input_hex": hex_in, "expected": balance.decode(hex_in)} for name, hex_in in cases]
    return {"codec": "balance", "test_vectors": vectors}


def script_hash_vectors() -> Dict[str, Any]:
    vectors = [
        {
            "name": f"sample_{version}",
            "input": {"script_hex": SAMPLE_SCRIPT.hex(), "plutus_version": version},
            "expected_hex": script_hash(SAMPLE_SCRIPT, version).hex(),
        }
        for version in ("v1", "v2", "v3")
    ]
    return {"codec": "script_hash", "test_vectors": vectors}
