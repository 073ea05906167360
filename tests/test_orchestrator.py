"""Escrow lifecycle: lock, release, refund and output lookup."""

from __future__ import annotations

import asyncio

from conftest import (
    BUYER_ADDRESS,
    BUYER_KEY_HASH,
    NOW,
    OTHER_ADDRESS,
    OTHER_KEY_HASH,
    SELLER_ADDRESS,
    SELLER_KEY_HASH,
    FakeHandle,
    FakeLedger,
    FakeProvider,
    key_address_bytes,
)
from wenze_escrow import datum
from wenze_escrow.encoding import encode_plutus_data
from wenze_escrow.errors import ErrorCode, err
from wenze_escrow.orchestrator import EscrowOrchestrator
from wenze_escrow.session import WalletSessionGuard
from wenze_escrow.types import Constr, LockedOutput, OrderState, Release, Refund

DEADLINE = NOW + 3600


def _guard(handle: FakeHandle) -> WalletSessionGuard:
    return asyncio.run(WalletSessionGuard.connect(FakeProvider(handle), "nami"))


def _orchestrator(script, ledger: FakeLedger, now: int = NOW) -> EscrowOrchestrator:
    return EscrowOrchestrator(script, ledger, clock=lambda: now)


def _lock(orch: EscrowOrchestrator, guard: WalletSessionGuard, order_id: str = "order-1", amount=10, deadline=DEADLINE):
    return asyncio.run(orch.lock(guard, order_id, amount, BUYER_ADDRESS, SELLER_ADDRESS, deadline))


def _status(orch: EscrowOrchestrator, order_id: str):
    result = asyncio.run(orch.check_status(order_id))
    assert result.ok
    return result.value


def _script_output(script, datum_cbor: bytes, index: int = 0) -> LockedOutput:
    return LockedOutput(
        tx_id="cd" * 32,
        output_index=index,
        address=script.derived_address,
        locked_amount=10_000_000,
        datum=datum.try_decode(datum_cbor),
        owning_script_hash=script.script_hash,
        datum_cbor=datum_cbor,
    )


def test_lock_creates_script_output(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    result = _lock(orch, _guard(buyer_handle))
    assert result.ok
    locked = result.value.locked_output
    assert result.value.script_address == script.derived_address
    assert locked.address == script.derived_address
    assert locked.locked_amount == 10_000_000
    assert locked.tx_id == result.value.tx_id
    assert locked.datum == datum.make_record("order-1", BUYER_KEY_HASH, SELLER_KEY_HASH, 10_000_000, DEADLINE)
    assert orch.order("order-1").state is OrderState.LOCKED
    assert ledger.confirm_calls == [result.value.tx_id]


def test_lock_draft_shape(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    _lock(orch, _guard(buyer_handle), amount=1.2345678)
    draft = buyer_handle.drafts[0]
    assert draft.kind == "lock"
    assert len(draft.outputs) == 1
    out = draft.outputs[0]
    assert out.lovelace == 1_234_567
    assert datum.datum_from_cbor(out.inline_datum).value.amount == 1_234_567
    assert draft.script_inputs == ()


def test_lock_default_deadline(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    result = asyncio.run(orch.lock(_guard(buyer_handle), "order-1", 10, BUYER_ADDRESS, SELLER_ADDRESS))
    assert result.value.locked_output.datum.deadline == NOW + 168 * 3600


def test_lock_millisecond_deadline(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    result = _lock(orch, _guard(buyer_handle), deadline=DEADLINE * 1000)
    assert result.value.locked_output.datum.deadline == DEADLINE


def test_scenario_lock_then_release(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    locked = _lock(orch, guard).value.locked_output

    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))
    assert result.ok
    assert ledger.utxos.get(script.derived_address) == []
    assert ledger.balance_at(SELLER_ADDRESS) == 10_000_000
    assert orch.order("order-1").state is OrderState.RELEASED

    draft = buyer_handle.drafts[-1]
    assert draft.kind == "release"
    assert draft.required_signers == (BUYER_KEY_HASH,)
    assert draft.script_inputs[0].output.ref == locked.ref
    assert draft.script_inputs[0].redeemer == Release()
    assert draft.script_inputs[0].redeemer_cbor.hex() == "d87980"
    assert draft.attached_script == script
    assert draft.validity.lower_bound is None


def test_scenario_refund_lower_bound_after_deadline(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger, now=DEADLINE - 1)
    guard = _guard(buyer_handle)
    _lock(orch, guard)

    result = asyncio.run(orch.refund(guard, "order-1", BUYER_ADDRESS))
    assert result.ok
    draft = buyer_handle.drafts[-1]
    assert draft.kind == "refund"
    assert draft.validity.lower_bound == DEADLINE + 1
    assert draft.script_inputs[0].redeemer == Refund()
    assert draft.script_inputs[0].redeemer_cbor.hex() == "d87a80"
    assert draft.outputs[0].address == BUYER_ADDRESS
    assert draft.outputs[0].lovelace == 10_000_000
    assert orch.order("order-1").state is OrderState.REFUNDED


def test_refund_after_deadline_uses_now(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger, now=DEADLINE + 500)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    asyncio.run(orch.refund(guard, "order-1", BUYER_ADDRESS))
    assert buyer_handle.drafts[-1].validity.lower_bound == DEADLINE + 501


def test_scenario_redeployed_script_mismatch(script, legacy_script, ledger, buyer_handle) -> None:
    orch = _orchestrator(legacy_script, ledger)
    guard = _guard(buyer_handle)
    assert _lock(orch, guard).ok
    orch.use_script(script)

    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))
    assert not result.ok
    assert result.error.code == ErrorCode.SCRIPT_MISMATCH
    assert result.error.details["expected_hash"] == script.script_hash.hex()
    assert result.error.details["observed_hash"] == legacy_script.script_hash.hex()
    # only the lock was ever submitted
    assert [d.kind for d in buyer_handle.drafts] == ["lock"]
    assert orch.order("order-1").state is OrderState.SPEND_FAILED


def test_redeployed_script_mismatch_with_other_orders_at_new_address(
    script, legacy_script, ledger, buyer_handle
) -> None:
    orch = _orchestrator(legacy_script, ledger)
    guard = _guard(buyer_handle)
    assert _lock(orch, guard, order_id="order-1").ok
    orch.use_script(script)
    assert _lock(orch, guard, order_id="order-2").ok

    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))
    assert result.error.code == ErrorCode.SCRIPT_MISMATCH
    assert result.error.details["observed_hash"] == legacy_script.script_hash.hex()
    assert [d.kind for d in buyer_handle.drafts] == ["lock", "lock"]
    assert orch.order("order-1").state is OrderState.SPEND_FAILED
    assert orch.order("order-2").state is OrderState.LOCKED
    assert len(ledger.utxos[script.derived_address]) == 1


def test_explicit_output_script_mismatch(script, legacy_script, ledger, buyer_handle) -> None:
    guard = _guard(buyer_handle)
    locked = _lock(_orchestrator(legacy_script, ledger), guard).value.locked_output

    orch = _orchestrator(script, ledger)
    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS, output=locked))
    assert result.error.code == ErrorCode.SCRIPT_MISMATCH
    assert len(buyer_handle.drafts) == 1


def test_scenario_short_datum_is_decode_failure(script, ledger, buyer_handle) -> None:
    short = encode_plutus_data(Constr(0, (b"order-4", BUYER_KEY_HASH, SELLER_KEY_HASH)))
    ledger.add(_script_output(script, short))
    orch = _orchestrator(script, ledger)

    status = _status(orch, "order-4")
    assert status.exists
    assert not status.details_available
    assert status.deadline is None

    result = asyncio.run(orch.refund(_guard(buyer_handle), "order-4", BUYER_ADDRESS))
    assert not result.ok
    assert result.error.code == ErrorCode.DATUM_DECODE_FAILURE
    assert buyer_handle.drafts == []
    assert orch.order("order-4").state is OrderState.SPEND_FAILED


def test_release_twice_is_already_spent(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    assert asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS)).ok
    submitted = len(buyer_handle.drafts)

    again = asyncio.run(orch.refund(guard, "order-1", BUYER_ADDRESS))
    assert again.error.code == ErrorCode.ALREADY_SPENT
    assert len(buyer_handle.drafts) == submitted
    assert orch.order("order-1").state is OrderState.RELEASED


def test_spent_output_not_reused(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    locked = _lock(orch, guard).value.locked_output
    asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))

    submitted = len(buyer_handle.drafts)
    result = asyncio.run(orch.release(guard, "order-x", SELLER_ADDRESS, output=locked))
    assert result.error.code == ErrorCode.ALREADY_SPENT
    assert len(buyer_handle.drafts) == submitted


def test_signing_rejected_then_retry(script, ledger) -> None:
    handle = FakeHandle(
        ledger,
        [key_address_bytes(BUYER_KEY_HASH).hex()],
        fail_with=RuntimeError("User declined to sign the transaction"),
    )
    orch = _orchestrator(script, ledger)
    guard = _guard(handle)

    failed = _lock(orch, guard)
    assert failed.error.code == ErrorCode.SIGNING_REJECTED
    rec = orch.order("order-1")
    assert rec.state is OrderState.LOCK_FAILED
    assert rec.last_error.code == ErrorCode.SIGNING_REJECTED
    assert ledger.utxos == {}

    handle.fail_with = None
    assert _lock(orch, guard).ok
    assert rec.state is OrderState.LOCKED
    assert rec.last_error is None


def test_release_signing_failure_allows_retry(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)

    buyer_handle.fail_with = RuntimeError("Not enough ADA to cover fees")
    failed = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))
    assert failed.error.code == ErrorCode.INSUFFICIENT_FUNDS
    assert orch.order("order-1").state is OrderState.SPEND_FAILED

    buyer_handle.fail_with = None
    assert asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS)).ok
    assert orch.order("order-1").state is OrderState.RELEASED


def test_submission_failure(script, ledger) -> None:
    handle = FakeHandle(ledger, [key_address_bytes(BUYER_KEY_HASH).hex()], fail_with=RuntimeError("node unreachable"))
    result = _lock(_orchestrator(script, ledger), _guard(handle))
    assert result.error.code == ErrorCode.SUBMISSION_FAILURE


def test_cancelled_signing_is_recorded(script, ledger) -> None:
    handle = FakeHandle(ledger, [key_address_bytes(BUYER_KEY_HASH).hex()], fail_with=asyncio.CancelledError())
    orch = _orchestrator(script, ledger)
    guard = _guard(handle)

    async def scenario() -> str:
        try:
            await orch.lock(guard, "order-1", 10, BUYER_ADDRESS, SELLER_ADDRESS, DEADLINE)
        except asyncio.CancelledError:
            return "cancelled"
        return "completed"

    assert asyncio.run(scenario()) == "cancelled"
    rec = orch.order("order-1")
    assert rec.state is OrderState.LOCK_FAILED
    assert rec.last_error.code == ErrorCode.SIGNING_REJECTED


def test_confirmation_timeout(script, ledger, buyer_handle) -> None:
    ledger.confirm = False
    result = _lock(_orchestrator(script, ledger), _guard(buyer_handle))
    assert result.error.code == ErrorCode.CONFIRMATION_TIMEOUT
    assert result.error.details["tx_id"]


def test_lock_output_not_visible(script, ledger, buyer_handle) -> None:
    ledger.hide_new_outputs = True
    orch = _orchestrator(script, ledger)
    result = _lock(orch, _guard(buyer_handle))
    assert result.error.code == ErrorCode.ESCROW_NOT_FOUND
    assert orch.order("order-1").state is OrderState.LOCK_FAILED


def test_lock_without_session(script, ledger) -> None:
    orch = _orchestrator(script, ledger)
    result = _lock(orch, WalletSessionGuard.empty())
    assert result.error.code == ErrorCode.SESSION_UNAVAILABLE
    assert orch.order("order-1").state is OrderState.UNINITIALIZED


def test_lock_wrong_network(script, ledger) -> None:
    handle = FakeHandle(ledger, [key_address_bytes(BUYER_KEY_HASH).hex()], network_id=1)
    result = _lock(_orchestrator(script, ledger), _guard(handle))
    assert result.error.code == ErrorCode.WRONG_NETWORK


def test_lock_invalid_amount(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    result = _lock(orch, _guard(buyer_handle), amount=0)
    assert result.error.code == ErrorCode.INVALID_AMOUNT
    assert buyer_handle.drafts == []


def test_lock_insufficient_balance(script, ledger) -> None:
    handle = FakeHandle(ledger, [key_address_bytes(BUYER_KEY_HASH).hex()], balance_hex="1a000f4240")
    orch = _orchestrator(script, ledger)
    result = _lock(orch, _guard(handle))
    assert result.error.code == ErrorCode.INSUFFICIENT_FUNDS
    assert handle.drafts == []
    assert orch.order("order-1").state is OrderState.LOCK_FAILED


def test_lock_twice_is_invalid_state(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    result = _lock(orch, guard)
    assert result.error.code == ErrorCode.INVALID_STATE
    assert orch.order("order-1").state is OrderState.LOCKED


def test_lock_by_other_account_only_warns(script, ledger, seller_handle, caplog) -> None:
    orch = _orchestrator(script, ledger)
    with caplog.at_level("WARNING"):
        result = _lock(orch, _guard(seller_handle))
    assert result.ok
    assert "is not the buyer" in caplog.text


def test_release_requires_named_buyer_account(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS, buyer_address=OTHER_ADDRESS))
    assert result.error.code == ErrorCode.WRONG_ACCOUNT
    assert orch.order("order-1").state is OrderState.LOCKED


def test_release_seller_mismatch_warns(script, ledger, buyer_handle, caplog) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    with caplog.at_level("WARNING"):
        result = asyncio.run(orch.release(guard, "order-1", OTHER_ADDRESS))
    assert result.ok
    assert "seller address differs" in caplog.text


def test_find_locked_outputs_exact_and_fallback(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard, order_id="order-1")
    _lock(orch, guard, order_id="order-2")

    exact = asyncio.run(orch.find_locked_outputs("order-2")).value
    assert exact.exact
    assert [o.datum.order_id for o in exact.outputs] == [b"order-2"]
    assert len(asyncio.run(orch.find_exact("order-1")).value) == 1

    fallback = asyncio.run(orch.find_locked_outputs("order-9")).value
    assert not fallback.exact
    assert len(fallback.outputs) == 2
    assert asyncio.run(orch.find_exact("order-9")).value == []
    assert len(asyncio.run(orch.find_all()).value) == 2


def test_find_locked_outputs_nothing(script, ledger) -> None:
    lookup = asyncio.run(_orchestrator(script, ledger).find_locked_outputs("order-1")).value
    assert lookup.outputs == []
    assert not lookup.exact


def test_check_status(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    _lock(orch, _guard(buyer_handle))

    status = _status(orch, "order-1")
    assert status.exists and status.details_available
    assert status.deadline == DEADLINE
    assert status.output.locked_amount == 10_000_000

    fallback = _status(orch, "order-9")
    assert fallback.exists and not fallback.details_available
    assert fallback.output is None

    missing = _status(_orchestrator(script, FakeLedger()), "order-1")
    assert not missing.exists


class UnreachableIndexer:
    def __init__(self) -> None:
        self.calls = 0

    async def utxos_at(self, addr: str) -> list[LockedOutput]:
        self.calls += 1
        raise err(ErrorCode.INDEXER_ERROR, "indexer down", status=503)

    async def await_confirmation(self, tx_id: str) -> bool:
        return False


def test_lookups_return_indexer_failures(script) -> None:
    orch = EscrowOrchestrator(script, UnreachableIndexer(), clock=lambda: NOW)

    for result in (
        asyncio.run(orch.check_status("order-1")),
        asyncio.run(orch.find_locked_outputs("order-1")),
        asyncio.run(orch.find_exact("order-1")),
        asyncio.run(orch.find_all()),
    ):
        assert not result.ok
        assert result.error.code == ErrorCode.INDEXER_ERROR
        assert result.error.details["status"] == 503
    assert orch.order("order-1").state is OrderState.UNINITIALIZED


def test_release_with_indexer_down_keeps_state(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)
    orch.indexer = UnreachableIndexer()

    result = asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS))
    assert result.error.code == ErrorCode.INDEXER_ERROR
    assert orch.order("order-1").state is OrderState.LOCKED
    assert [d.kind for d in buyer_handle.drafts] == ["lock"]


def test_release_with_only_foreign_outputs(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard, order_id="order-1")
    submitted = len(buyer_handle.drafts)

    result = asyncio.run(orch.release(guard, "order-7", SELLER_ADDRESS))
    assert result.error.code == ErrorCode.ESCROW_NOT_FOUND
    assert len(buyer_handle.drafts) == submitted
    assert orch.order("order-1").state is OrderState.LOCKED


NESTED_DATUM = bytes.fromhex("81" * 5000 + "00")


def test_deeply_nested_foreign_datum_does_not_break_lookups(script, ledger, buyer_handle) -> None:
    ledger.add(_script_output(script, NESTED_DATUM, index=0))
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)

    locked = _lock(orch, guard)
    assert locked.ok

    status = _status(orch, "order-1")
    assert status.details_available
    assert status.output.ref == locked.value.locked_output.ref

    assert asyncio.run(orch.release(guard, "order-1", SELLER_ADDRESS)).ok
    assert orch.order("order-1").state is OrderState.RELEASED


def test_fallback_lookup_with_undecodable_first_output(script, ledger, buyer_handle) -> None:
    ledger.add(_script_output(script, NESTED_DATUM, index=0))
    ledger.add(_script_output(script, bytes.fromhex("ffff"), index=1))
    orch = _orchestrator(script, ledger)

    lookup = asyncio.run(orch.find_locked_outputs("order-3")).value
    assert not lookup.exact
    assert len(lookup.outputs) == 2

    status = _status(orch, "order-3")
    assert status.exists and not status.details_available
    assert status.output is None

    result = asyncio.run(orch.release(_guard(buyer_handle), "order-3", SELLER_ADDRESS))
    assert result.error.code == ErrorCode.ESCROW_NOT_FOUND
    assert buyer_handle.drafts == []
    assert orch.order("order-3").state is OrderState.UNINITIALIZED


def test_refund_to_non_buyer_is_refused(script, ledger, buyer_handle) -> None:
    other_handle = FakeHandle(ledger, [key_address_bytes(OTHER_KEY_HASH).hex()])
    orch = _orchestrator(script, ledger, now=DEADLINE + 10)
    delegate = _guard(other_handle)
    # a delegated wallet may fund the escrow for the buyer
    assert _lock(orch, delegate).ok

    own_account = asyncio.run(orch.refund(delegate, "order-1", OTHER_ADDRESS))
    assert own_account.error.code == ErrorCode.WRONG_ACCOUNT
    buyer_account = asyncio.run(orch.refund(delegate, "order-1", BUYER_ADDRESS))
    assert buyer_account.error.code == ErrorCode.WRONG_ACCOUNT
    assert [d.kind for d in other_handle.drafts] == ["lock"]
    assert orch.order("order-1").state is OrderState.LOCKED

    refunded = asyncio.run(orch.refund(_guard(buyer_handle), "order-1", BUYER_ADDRESS))
    assert refunded.ok
    assert buyer_handle.drafts[-1].outputs[0].address == BUYER_ADDRESS
    assert ledger.balance_at(BUYER_ADDRESS) == 10_000_000


def test_chain_output_promotes_unknown_order(script, ledger, buyer_handle) -> None:
    guard = _guard(buyer_handle)
    _lock(_orchestrator(script, ledger), guard)

    fresh = _orchestrator(script, ledger)
    assert fresh.order("order-1").state is OrderState.UNINITIALIZED
    _status(fresh, "order-1")
    assert fresh.order("order-1").state is OrderState.LOCKED

    assert asyncio.run(fresh.release(guard, "order-1", SELLER_ADDRESS)).ok
    assert fresh.order("order-1").history[-2:] == [OrderState.LOCKED, OrderState.RELEASING]


def test_concurrent_spends_are_serialized(script, ledger, buyer_handle) -> None:
    orch = _orchestrator(script, ledger)
    guard = _guard(buyer_handle)
    _lock(orch, guard)

    async def race():
        return await asyncio.gather(
            orch.release(guard, "order-1", SELLER_ADDRESS),
            orch.refund(guard, "order-1", BUYER_ADDRESS),
        )

    first, second = asyncio.run(race())
    assert first.ok
    assert second.error.code == ErrorCode.ALREADY_SPENT
    assert [d.kind for d in buyer_handle.drafts] == ["lock", "release"]
