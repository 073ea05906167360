"""Escrow lifecycle: lock -> release | refund.

Order records are an in-memory mirror of what this client did; the chain is
authoritative. Every spend re-reads the datum from the observed output and
checks the output belongs to the configured script before the wallet is
asked to sign.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Union

from . import address, datum
from .config import DEFAULT_ESCROW_DEADLINE_HOURS, VALIDITY_LOWER_BOUND_OFFSET
from .errors import ErrorCode, EscrowError, Result, classify_wallet_failure, err
from .indexer import ChainIndexer
from .script import verify
from .session import WalletSession, WalletSessionGuard, same_account
from .tx.builder import build_lock_tx, build_refund_tx, build_release_tx
from .types import (
    DeadlineUnit,
    EscrowRecord,
    EscrowStatus,
    LockedOutput,
    LockResult,
    Network,
    OrderState,
    OutputLookup,
    ScriptIdentity,
    TxDraft,
)

logger = logging.getLogger(__name__)

_SPENT_STATES = (OrderState.RELEASED, OrderState.REFUNDED)
_LOCKABLE_STATES = (OrderState.UNINITIALIZED, OrderState.LOCK_FAILED)
# States a chain-observed output overrides
_PROMOTABLE_STATES = (OrderState.UNINITIALIZED, OrderState.LOCK_FAILED)


@dataclass
class OrderRecord:
    order_id: str
    state: OrderState = OrderState.UNINITIALIZED
    output: Optional[LockedOutput] = None
    tx_ids: list[str] = field(default_factory=list)
    last_error: Optional[EscrowError] = None
    history: list[OrderState] = field(default_factory=list)

    def move(self, state: OrderState) -> None:
        self.history.append(self.state)
        self.state = state


class EscrowOrchestrator:
    def __init__(
        self,
        script: ScriptIdentity,
        indexer: ChainIndexer,
        network: Optional[Network] = None,
        clock: Callable[[], float] = time.time,
        validity_offset: int = VALIDITY_LOWER_BOUND_OFFSET,
        default_deadline_hours: int = DEFAULT_ESCROW_DEADLINE_HOURS,
    ):
        self.script = script
        self.indexer = indexer
        self.network = network or script.network
        self.clock = clock
        self.validity_offset = validity_offset
        self.default_deadline_hours = default_deadline_hours
        self._orders: dict[str, OrderRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._spent_refs: set[str] = set()

    # --- Order tracking ---

    def order(self, order_id: str) -> OrderRecord:
        rec = self._orders.get(order_id)
        if rec is None:
            rec = OrderRecord(order_id)
            self._orders[order_id] = rec
        return rec

    def use_script(self, script: ScriptIdentity) -> None:
        """Switch to a redeployed validator.

        Outputs locked under the previous script stay tracked but no longer
        pass the consistency check.
        """
        if script.network is not self.network:
            raise err(ErrorCode.WRONG_NETWORK, "script targets a different network", network=script.network.value)
        logger.info("escrow script %s -> %s", self.script.script_hash.hex(), script.script_hash.hex())
        self.script = script

    def _lock_for(self, order_id: str) -> asyncio.Lock:
        return self._locks.setdefault(order_id, asyncio.Lock())

    def _now(self) -> int:
        return int(self.clock())

    def _fail(self, rec: OrderRecord, state: Optional[OrderState], error: EscrowError) -> Result:
        if state is not None:
            rec.move(state)
        rec.last_error = error
        logger.error("order %s: %s", rec.order_id, error)
        return Result.failure(error)

    def _promote(self, rec: OrderRecord, output: LockedOutput) -> None:
        if rec.state in _PROMOTABLE_STATES:
            logger.info("order %s observed on chain at %s", rec.order_id, output.ref)
            rec.move(OrderState.LOCKED)
        if rec.state not in _SPENT_STATES:
            rec.output = output

    # --- Lookup ---

    @staticmethod
    def _order_id_of(output: LockedOutput) -> Optional[bytes]:
        if output.datum is not None:
            return output.datum.order_id
        if output.datum_cbor is None:
            return None
        try:
            return datum.read_order_id(datum.parse_cbor(output.datum_cbor))
        except EscrowError:
            return None

    async def _script_outputs(self) -> list[LockedOutput]:
        outputs = await self.indexer.utxos_at(self.script.derived_address)
        return [o for o in outputs if o.ref not in self._spent_refs]

    def _matching(self, outputs: list[LockedOutput], order_id: str) -> list[LockedOutput]:
        wanted = datum.order_id_bytes(order_id)
        return [o for o in outputs if self._order_id_of(o) == wanted]

    @staticmethod
    def _lookup_failed(error: EscrowError) -> Result:
        logger.error("script output lookup failed: %s", error)
        return Result.failure(error)

    async def find_all(self) -> Result[list[LockedOutput]]:
        """All outputs at the script address, minus ones this client spent."""
        try:
            return Result.success(await self._script_outputs())
        except EscrowError as exc:
            return self._lookup_failed(exc)

    async def find_exact(self, order_id: str) -> Result[list[LockedOutput]]:
        try:
            return Result.success(self._matching(await self._script_outputs(), order_id))
        except EscrowError as exc:
            return self._lookup_failed(exc)

    async def find_locked_outputs(self, order_id: str) -> Result[OutputLookup]:
        """Outputs for `order_id`; falls back to every script output."""
        try:
            outputs = await self._script_outputs()
            exact = self._matching(outputs, order_id)
        except EscrowError as exc:
            return self._lookup_failed(exc)
        if exact:
            return Result.success(OutputLookup(exact, True))
        if outputs:
            logger.warning(
                "no output matched order %s; returning all %d script outputs",
                order_id,
                len(outputs),
            )
        return Result.success(OutputLookup(outputs, False))

    async def check_status(self, order_id: str) -> Result[EscrowStatus]:
        lookup = await self.find_locked_outputs(order_id)
        if not lookup.ok:
            return lookup
        outputs, exact = lookup.value.outputs, lookup.value.exact
        if not outputs:
            return Result.success(EscrowStatus(exists=False))
        if not exact:
            return Result.success(EscrowStatus(exists=True, details_available=False))
        output = outputs[0]
        self._promote(self.order(order_id), output)
        deadline = datum.deadline_from_cbor(output.datum_cbor)
        if deadline.ok:
            return Result.success(EscrowStatus(exists=True, output=output, deadline=deadline.value, details_available=True))
        if output.datum is not None:
            return Result.success(
                EscrowStatus(exists=True, output=output, deadline=output.datum.deadline, details_available=True)
            )
        return Result.success(EscrowStatus(exists=True, output=output, details_available=False))

    # --- Lock ---

    async def lock(
        self,
        guard: WalletSessionGuard,
        order_id: str,
        amount_ada: Union[int, float, str, Decimal],
        buyer_address: str,
        seller_address: str,
        deadline: Optional[int] = None,
        deadline_unit: DeadlineUnit = DeadlineUnit.AUTO,
    ) -> Result[LockResult]:
        """Lock `amount_ada` under the escrow script for `order_id`.

        `deadline` defaults to now + 7 days. Waits for confirmation and
        returns the created output.
        """
        rec = self.order(order_id)
        async with self._lock_for(order_id):
            if rec.state not in _LOCKABLE_STATES:
                return self._fail(rec, None, err(ErrorCode.INVALID_STATE, f"order is {rec.state.value}", order_id=order_id))
            try:
                lovelace = datum.ada_to_lovelace(amount_ada)
                session = guard.require(network=self.network)
                if not same_account(session.account_address, buyer_address):
                    logger.warning(
                        "order %s: connected account %s is not the buyer %s",
                        order_id,
                        session.account_address,
                        buyer_address,
                    )
                if deadline is None:
                    deadline = datum.default_deadline(self.default_deadline_hours, self._now())
                record = datum.make_record(
                    order_id,
                    address.payment_key_hash(buyer_address),
                    address.payment_key_hash(seller_address),
                    lovelace,
                    deadline,
                    deadline_unit,
                )
            except EscrowError as exc:
                return self._fail(rec, None, exc)

            rec.move(OrderState.LOCKING)
            rec.last_error = None
            try:
                await guard.ensure_balance(lovelace)
                draft = build_lock_tx(record, self.script)
                tx_id = await self._submit(session, draft, rec)
                output = await self._find_created(tx_id, record)
            except asyncio.CancelledError:
                self._fail(rec, OrderState.LOCK_FAILED, err(ErrorCode.SIGNING_REJECTED, "lock cancelled"))
                raise
            except EscrowError as exc:
                return self._fail(rec, OrderState.LOCK_FAILED, exc)

            rec.output = output
            rec.move(OrderState.LOCKED)
            logger.info("order %s locked %d lovelace at %s", order_id, lovelace, output.ref)
            return Result.success(LockResult(tx_id, self.script.derived_address, output))

    async def _find_created(self, tx_id: str, record: EscrowRecord) -> LockedOutput:
        outputs = await self.indexer.utxos_at(self.script.derived_address)
        for o in outputs:
            if o.tx_id == tx_id:
                return o
        for o in outputs:
            if o.datum == record and o.locked_amount == record.amount:
                return o
        raise err(ErrorCode.ESCROW_NOT_FOUND, "locked output not visible after confirmation", tx_id=tx_id)

    # --- Spend ---

    async def _submit(self, session: WalletSession, draft: TxDraft, rec: OrderRecord) -> str:
        try:
            tx_id = await session.signing_handle.sign_and_submit(draft)
        except EscrowError:
            raise
        except Exception as exc:
            raise classify_wallet_failure(exc) from exc
        rec.tx_ids.append(tx_id)
        logger.info("order %s: submitted %s tx %s", rec.order_id, draft.kind, tx_id)
        if not await self.indexer.await_confirmation(tx_id):
            raise err(ErrorCode.CONFIRMATION_TIMEOUT, f"tx {tx_id} not confirmed", tx_id=tx_id)
        return tx_id

    async def _spendable(
        self,
        rec: OrderRecord,
        given: Optional[LockedOutput] = None,
    ) -> tuple[LockedOutput, EscrowRecord]:
        """Select, verify and strictly decode the output backing `rec`."""
        if rec.state in _SPENT_STATES:
            raise err(ErrorCode.ALREADY_SPENT, f"order already {rec.state.value}", order_id=rec.order_id)
        if given is not None:
            output = given
        else:
            exact = self._matching(await self._script_outputs(), rec.order_id)
            if exact:
                output = exact[0]
            elif rec.output is not None and rec.output.address != self.script.derived_address:
                # Tracked output from a previous deployment; verify() reports it.
                output = rec.output
            else:
                raise err(ErrorCode.ESCROW_NOT_FOUND, "no escrow output for order", order_id=rec.order_id)
        if output.ref in self._spent_refs:
            raise err(ErrorCode.ALREADY_SPENT, f"{output.ref} already spent", order_id=rec.order_id)

        verified = verify(output, self.script)
        if not verified.ok:
            raise verified.error
        if output.datum_cbor is not None:
            decoded = datum.datum_from_cbor(output.datum_cbor)
        elif output.datum is not None:
            decoded = Result.success(output.datum)
        else:
            decoded = Result.failure(err(ErrorCode.DATUM_DECODE_FAILURE, "output carries no inline datum"))
        if not decoded.ok:
            raise decoded.error
        record = decoded.value
        if record.order_id != datum.order_id_bytes(rec.order_id):
            raise err(ErrorCode.ESCROW_NOT_FOUND, "output holds another order", order_id=rec.order_id, tx_id=output.tx_id)
        self._promote(rec, output)
        return output, record

    async def _spend(
        self,
        guard: WalletSessionGuard,
        order_id: str,
        kind: OrderState,
        expected_account: Optional[str],
        given: Optional[LockedOutput],
        build: Callable[[WalletSession, LockedOutput, EscrowRecord], TxDraft],
    ) -> Result[str]:
        rec = self.order(order_id)
        async with self._lock_for(order_id):
            try:
                session = guard.require(expected_account=expected_account, network=self.network)
                output, record = await self._spendable(rec, given)
                if session.payment_key_hash != record.buyer_key_hash:
                    logger.warning("order %s: connected wallet is not the buyer named in the datum", order_id)
                draft = build(session, output, record)
            except EscrowError as exc:
                if exc.code in (ErrorCode.SCRIPT_MISMATCH, ErrorCode.DATUM_DECODE_FAILURE):
                    return self._fail(rec, OrderState.SPEND_FAILED, exc)
                return self._fail(rec, None, exc)

            done = OrderState.RELEASED if kind is OrderState.RELEASING else OrderState.REFUNDED
            rec.move(kind)
            rec.last_error = None
            try:
                tx_id = await self._submit(session, draft, rec)
            except asyncio.CancelledError:
                self._fail(rec, OrderState.SPEND_FAILED, err(ErrorCode.SIGNING_REJECTED, f"{draft.kind} cancelled"))
                raise
            except EscrowError as exc:
                return self._fail(rec, OrderState.SPEND_FAILED, exc)

            self._spent_refs.add(output.ref)
            rec.output = None
            rec.move(done)
            logger.info("order %s %s by %s", order_id, done.value, tx_id)
            return Result.success(tx_id)

    async def release(
        self,
        guard: WalletSessionGuard,
        order_id: str,
        seller_address: str,
        buyer_address: Optional[str] = None,
        output: Optional[LockedOutput] = None,
    ) -> Result[str]:
        """Pay the locked value to the seller; signed by the buyer's wallet.

        `output` pins the locked output to spend; otherwise it is looked up
        at the script address by order id.
        """

        def build(session: WalletSession, spent: LockedOutput, record: EscrowRecord) -> TxDraft:
            if address.payment_key_hash(seller_address) != record.seller_key_hash:
                logger.warning("order %s: seller address differs from the seller in the datum", order_id)
            return build_release_tx(spent, record, self.script, seller_address)

        return await self._spend(guard, order_id, OrderState.RELEASING, buyer_address, output, build)

    async def refund(
        self,
        guard: WalletSessionGuard,
        order_id: str,
        buyer_address: str,
        output: Optional[LockedOutput] = None,
    ) -> Result[str]:
        """Return the locked value to the buyer once the deadline has passed.

        `buyer_address` must be the connected account and carry the buyer key
        hash recorded in the datum.
        """

        def build(session: WalletSession, spent: LockedOutput, record: EscrowRecord) -> TxDraft:
            if address.payment_key_hash(buyer_address) != record.buyer_key_hash:
                raise err(
                    ErrorCode.WRONG_ACCOUNT,
                    "refund address is not the buyer named in the datum",
                    order_id=order_id,
                    buyer_address=buyer_address,
                )
            return build_refund_tx(spent, record, self.script, buyer_address, self._now(), self.validity_offset)

        return await self._spend(guard, order_id, OrderState.REFUNDING, buyer_address, output, build)
