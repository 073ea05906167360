"""Escrow transaction drafts (lock, release, refund).

Drafts describe the script-relevant parts of a transaction; the wallet
balances, adds fees and change, signs and submits.
"""

from __future__ import annotations

from typing import Optional

from ..config import VALIDITY_LOWER_BOUND_OFFSET
from ..datum import datum_to_cbor, redeemer_to_cbor
from ..errors import ErrorCode, EscrowError
from ..types import (
    EscrowRecord,
    LockedOutput,
    Redeemer,
    Refund,
    Release,
    ScriptIdentity,
    ScriptInput,
    TxDraft,
    TxOutput,
    ValidityInterval,
)

KIND_LOCK = "lock"
KIND_RELEASE = "release"
KIND_REFUND = "refund"


def refund_validity_interval(
    deadline: int,
    now: int,
    offset: int = VALIDITY_LOWER_BOUND_OFFSET,
) -> ValidityInterval:
    """Lower bound strictly after the deadline, never in the past."""
    if offset < 1:
        raise EscrowError(ErrorCode.INVALID_INPUT, "validity offset must be >= 1 second")
    return ValidityInterval(lower_bound=max(deadline, now) + offset)


def build_lock_tx(record: EscrowRecord, script: ScriptIdentity) -> TxDraft:
    if record.amount <= 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, "escrow amount must be > 0")
    out = TxOutput(
        address=script.derived_address,
        lovelace=record.amount,
        inline_datum=datum_to_cbor(record),
    )
    return TxDraft(
        kind=KIND_LOCK,
        outputs=(out,),
        metadata={"order_id": record.order_id_text},
    )


def _spend(
    kind: str,
    output: LockedOutput,
    record: EscrowRecord,
    script: ScriptIdentity,
    redeemer: Redeemer,
    pay_to: str,
    validity: Optional[ValidityInterval] = None,
) -> TxDraft:
    if output.locked_amount <= 0:
        raise EscrowError(ErrorCode.INVALID_AMOUNT, f"output {output.ref} holds no lovelace")
    return TxDraft(
        kind=kind,
        # Full locked value goes out; the wallet's own inputs cover fees
        outputs=(TxOutput(address=pay_to, lovelace=output.locked_amount, assets=dict(output.assets)),),
        script_inputs=(ScriptInput(output=output, redeemer=redeemer, redeemer_cbor=redeemer_to_cbor(redeemer)),),
        attached_script=script,
        required_signers=(record.buyer_key_hash,),
        validity=validity or ValidityInterval(),
        metadata={"order_id": record.order_id_text},
    )


def build_release_tx(
    output: LockedOutput,
    record: EscrowRecord,
    script: ScriptIdentity,
    seller_address: str,
) -> TxDraft:
    return _spend(KIND_RELEASE, output, record, script, Release(), seller_address)


def build_refund_tx(
    output: LockedOutput,
    record: EscrowRecord,
    script: ScriptIdentity,
    buyer_address: str,
    now: int,
    offset: int = VALIDITY_LOWER_BOUND_OFFSET,
) -> TxDraft:
    validity = refund_validity_interval(record.deadline, now, offset)
    return _spend(KIND_REFUND, output, record, script, Refund(), buyer_address, validity)
