"""Escrow transaction drafts."""

from __future__ import annotations

import pytest

from conftest import BUYER_ADDRESS, BUYER_KEY_HASH, SELLER_ADDRESS, SELLER_KEY_HASH
from wenze_escrow import datum
from wenze_escrow.errors import ErrorCode, EscrowError
from wenze_escrow.tx.builder import build_lock_tx, build_refund_tx, build_release_tx, refund_validity_interval
from wenze_escrow.types import EscrowRecord, LockedOutput

RECORD = EscrowRecord(b"order-1", BUYER_KEY_HASH, SELLER_KEY_HASH, 10_000_000, 1_000)


def _output(script) -> LockedOutput:
    return LockedOutput(
        tx_id="ab" * 32,
        output_index=1,
        address=script.derived_address,
        locked_amount=10_000_000,
        datum=RECORD,
        datum_cbor=datum.datum_to_cbor(RECORD),
        assets={"policy.token": 3},
    )


@pytest.mark.parametrize(
    "deadline,now,expected",
    [
        (1_000, 999, 1_001),
        (1_000, 1_000, 1_001),
        (1_000, 5_000, 5_001),
    ],
)
def test_refund_lower_bound_strictly_after_deadline(deadline: int, now: int, expected: int) -> None:
    interval = refund_validity_interval(deadline, now)
    assert interval.lower_bound == expected
    assert interval.lower_bound > deadline
    assert interval.upper_bound is None


def test_refund_offset_must_be_positive() -> None:
    with pytest.raises(EscrowError):
        refund_validity_interval(1_000, 0, offset=0)


def test_lock_draft(script) -> None:
    draft = build_lock_tx(RECORD, script)
    assert draft.kind == "lock"
    (out,) = draft.outputs
    assert out.address == script.derived_address
    assert out.lovelace == 10_000_000
    assert out.inline_datum == datum.datum_to_cbor(RECORD)
    assert draft.metadata == {"order_id": "order-1"}


def test_lock_draft_rejects_zero_amount(script) -> None:
    with pytest.raises(EscrowError) as exc:
        build_lock_tx(EscrowRecord(b"o", BUYER_KEY_HASH, SELLER_KEY_HASH, 0, 1), script)
    assert exc.value.code == ErrorCode.INVALID_AMOUNT


def test_release_draft_pays_full_value(script) -> None:
    draft = build_release_tx(_output(script), RECORD, script, SELLER_ADDRESS)
    (out,) = draft.outputs
    assert out.address == SELLER_ADDRESS
    assert out.lovelace == 10_000_000
    assert out.assets == {"policy.token": 3}
    assert draft.required_signers == (BUYER_KEY_HASH,)
    assert draft.script_inputs[0].redeemer_cbor == bytes.fromhex("d87980")


def test_refund_draft(script) -> None:
    draft = build_refund_tx(_output(script), RECORD, script, BUYER_ADDRESS, now=10)
    assert draft.validity.lower_bound == 1_001
    assert draft.outputs[0].address == BUYER_ADDRESS
    assert draft.script_inputs[0].redeemer_cbor == bytes.fromhex("d87a80")


def test_spend_of_empty_output_rejected(script) -> None:
    empty = LockedOutput(tx_id="ab" * 32, output_index=0, address=script.derived_address, locked_amount=0)
    with pytest.raises(EscrowError) as exc:
        build_release_tx(empty, RECORD, script, SELLER_ADDRESS)
    assert exc.value.code == ErrorCode.INVALID_AMOUNT
