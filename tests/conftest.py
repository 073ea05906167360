"""Pytest fixtures: in-memory ledger, wallet fakes and vector collection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from wenze_escrow import address, datum
from wenze_escrow.crypto.hashing import blake2b_256
from wenze_escrow.errors import EscrowError
from wenze_escrow.script import make_script_identity
from wenze_escrow.types import LockedOutput, Network, ScriptIdentity, TxDraft

BUYER_KEY_HASH = bytes([0x11] * 28)
SELLER_KEY_HASH = bytes([0x22] * 28)
OTHER_KEY_HASH = bytes([0x33] * 28)

ESCROW_SCRIPT = bytes.fromhex("4e4d01000033222220051200120011")
LEGACY_SCRIPT = bytes.fromhex("4e4d01000033222220051200120022")

NOW = 1_750_000_000


def key_address_bytes(key_hash: bytes, network: Network = Network.TESTNET) -> bytes:
    # Enterprise address, key payment credential
    return bytes([0x60 | network.network_id]) + key_hash


def key_address(key_hash: bytes, network: Network = Network.TESTNET) -> str:
    return address.encode(key_address_bytes(key_hash, network), network)


BUYER_ADDRESS = key_address(BUYER_KEY_HASH)
SELLER_ADDRESS = key_address(SELLER_KEY_HASH)
OTHER_ADDRESS = key_address(OTHER_KEY_HASH)


class FakeLedger:
    """Applies drafts to an in-memory UTxO set."""

    def __init__(self) -> None:
        self.utxos: dict[str, list[LockedOutput]] = {}
        self.counter = 0
        self.confirm = True
        self.hide_new_outputs = False
        self.confirm_calls: list[str] = []

    def add(self, output: LockedOutput) -> None:
        self.utxos.setdefault(output.address, []).append(output)

    def apply(self, draft: TxDraft) -> str:
        self.counter += 1
        tx_id = blake2b_256(self.counter.to_bytes(8, "big")).hex()
        for spent in draft.script_inputs:
            held = self.utxos.get(spent.output.address, [])
            self.utxos[spent.output.address] = [o for o in held if o.ref != spent.output.ref]
        if self.hide_new_outputs:
            return tx_id
        for index, out in enumerate(draft.outputs):
            try:
                owner = address.script_hash_of(out.address)
            except EscrowError:
                owner = None
            self.add(
                LockedOutput(
                    tx_id=tx_id,
                    output_index=index,
                    address=out.address,
                    locked_amount=out.lovelace,
                    datum=datum.try_decode(out.inline_datum),
                    owning_script_hash=owner,
                    datum_cbor=out.inline_datum,
                )
            )
        return tx_id

    def balance_at(self, addr: str) -> int:
        return sum(o.locked_amount for o in self.utxos.get(addr, []))

    # ChainIndexer
    async def utxos_at(self, addr: str) -> list[LockedOutput]:
        return list(self.utxos.get(addr, []))

    async def await_confirmation(self, tx_id: str) -> bool:
        self.confirm_calls.append(tx_id)
        return self.confirm


class FakeHandle:
    """CIP-30 style signing handle backed by a FakeLedger."""

    def __init__(
        self,
        ledger: FakeLedger,
        addresses: list[str],
        balance_hex: str = "1b000000174876e800",
        network_id: int = 0,
        fail_with: Optional[BaseException] = None,
    ) -> None:
        self.ledger = ledger
        self.addresses = addresses
        self.balance_hex = balance_hex
        self.network_id = network_id
        self.fail_with = fail_with
        self.drafts: list[TxDraft] = []

    async def get_used_addresses(self) -> list[str]:
        return list(self.addresses)

    async def get_unused_addresses(self) -> list[str]:
        return []

    async def get_balance(self) -> str:
        return self.balance_hex

    async def get_network_id(self) -> int:
        return self.network_id

    async def sign_and_submit(self, draft: TxDraft) -> str:
        self.drafts.append(draft)
        if self.fail_with is not None:
            raise self.fail_with
        return self.ledger.apply(draft)


class FakeProvider:
    def __init__(self, handle: Optional[FakeHandle] = None, refuse: bool = False) -> None:
        self.handle = handle
        self.refuse = refuse
        self.enable_calls = 0

    async def enable(self) -> FakeHandle:
        self.enable_calls += 1
        if self.refuse or self.handle is None:
            raise RuntimeError("user refused access")
        return self.handle


@pytest.fixture
def script() -> ScriptIdentity:
    return make_script_identity(ESCROW_SCRIPT, "v3", Network.TESTNET)


@pytest.fixture
def legacy_script() -> ScriptIdentity:
    return make_script_identity(LEGACY_SCRIPT, "v2", Network.TESTNET)


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def buyer_handle(ledger: FakeLedger) -> FakeHandle:
    return FakeHandle(ledger, [key_address_bytes(BUYER_KEY_HASH).hex()])


@pytest.fixture
def seller_handle(ledger: FakeLedger) -> FakeHandle:
    return FakeHandle(ledger, [key_address_bytes(SELLER_KEY_HASH).hex()])


# --- Vector collection (written when --output is given) ---

_VECTOR_CASES: dict[str, list[dict[str, Any]]] = {}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated vectors",
    )


@pytest.fixture
def vector_test_group() -> Callable[[str, dict[str, Any]], None]:
    """Collect pre-built test_vectors under a specific fixture path."""

    def _vector_test_group(rel_path: str, vector: dict[str, Any]) -> None:
        _VECTOR_CASES.setdefault(rel_path, []).append(vector)

    return _vector_test_group


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, vectors in _VECTOR_CASES.items():
        if not vectors:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"test_vectors": vectors}, indent=2))
