"""Chain indexer access (Blockfrost REST API)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import aiohttp

from . import address, datum
from .config import (
    BLOCKFROST_PAGE_SIZE,
    BLOCKFROST_URLS,
    CONFIRMATION_POLL_INTERVAL,
    CONFIRMATION_TIMEOUT,
    MIN_CONFIRMATIONS,
)
from .errors import ErrorCode, EscrowError, err
from .types import LockedOutput, Network

logger = logging.getLogger(__name__)

LOVELACE_UNIT = "lovelace"


class ChainIndexer(Protocol):
    async def utxos_at(self, addr: str) -> list[LockedOutput]: ...

    async def await_confirmation(self, tx_id: str) -> bool: ...


def parse_utxo(entry: dict[str, Any], addr: Optional[str] = None) -> LockedOutput:
    """Build a LockedOutput from one `/addresses/{addr}/utxos` entry.

    The inline datum is decoded leniently; foreign-shaped datums leave
    `datum` unset but keep the raw bytes.
    """
    out_addr = entry.get("address") or addr
    if not out_addr:
        raise EscrowError(ErrorCode.INDEXER_ERROR, "utxo entry has no address")
    lovelace = 0
    assets: dict[str, int] = {}
    for item in entry.get("amount", []):
        unit = item.get("unit")
        quantity = int(item.get("quantity", 0))
        if unit == LOVELACE_UNIT:
            lovelace += quantity
        elif unit:
            assets[unit] = assets.get(unit, 0) + quantity

    datum_cbor = None
    inline = entry.get("inline_datum")
    if inline:
        try:
            datum_cbor = bytes.fromhex(inline)
        except ValueError:
            logger.debug("ignoring non-hex inline datum on %s", entry.get("tx_hash"))

    try:
        owner = address.script_hash_of(out_addr)
    except EscrowError:
        owner = None

    return LockedOutput(
        tx_id=entry["tx_hash"],
        output_index=int(entry["output_index"]),
        address=out_addr,
        locked_amount=lovelace,
        datum=datum.try_decode(datum_cbor),
        owning_script_hash=owner,
        datum_cbor=datum_cbor,
        assets=assets,
    )


class BlockfrostIndexer:
    """Minimal Blockfrost client: script UTxOs and confirmation polling."""

    def __init__(
        self,
        project_id: str,
        network: Network = Network.TESTNET,
        base_url: Optional[str] = None,
        min_confirmations: int = MIN_CONFIRMATIONS,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT,
        poll_interval: float = CONFIRMATION_POLL_INTERVAL,
        request_timeout: float = 30.0,
    ):
        self.project_id = project_id
        self.base_url = (base_url or BLOCKFROST_URLS[network.value]).rstrip("/")
        self.min_confirmations = min_confirmations
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout, headers={"project_id": self.project_id})

    async def close(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "BlockfrostIndexer":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _get(self, path: str, params: Optional[dict] = None) -> Optional[Any]:
        """GET a JSON resource; None on 404."""
        await self.connect()
        assert self.session is not None
        url = f"{self.base_url}{path}"
        try:
            async with self.session.get(url, params=params) as resp:
                if resp.status == 404:
                    return None
                if resp.status >= 400:
                    body = await resp.text()
                    raise err(ErrorCode.INDEXER_ERROR, f"GET {path} returned {resp.status}", status=resp.status, body=body)
                return await resp.json()
        except aiohttp.ClientError as exc:
            raise err(ErrorCode.INDEXER_ERROR, f"indexer connection error: {exc}", path=path) from exc
        except asyncio.TimeoutError as exc:
            raise err(ErrorCode.INDEXER_ERROR, f"indexer timeout: {path}", path=path) from exc

    async def utxos_at(self, addr: str) -> list[LockedOutput]:
        outputs: list[LockedOutput] = []
        page = 1
        while True:
            entries = await self._get(
                f"/addresses/{addr}/utxos",
                params={"count": BLOCKFROST_PAGE_SIZE, "page": page},
            )
            if not entries:
                break
            outputs.extend(parse_utxo(e, addr) for e in entries)
            if len(entries) < BLOCKFROST_PAGE_SIZE:
                break
            page += 1
        logger.debug("%d outputs at %s", len(outputs), addr)
        return outputs

    async def confirmations(self, tx_id: str) -> int:
        tx = await self._get(f"/txs/{tx_id}")
        if not tx or tx.get("block_height") is None:
            return 0
        latest = await self._get("/blocks/latest")
        if not latest or latest.get("height") is None:
            return 1
        return max(1, int(latest["height"]) - int(tx["block_height"]) + 1)

    async def await_confirmation(self, tx_id: str) -> bool:
        """Poll until `tx_id` has `min_confirmations`; False on timeout."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout
        while True:
            try:
                seen = await self.confirmations(tx_id)
                if seen >= self.min_confirmations:
                    logger.info("tx %s confirmed (%d confirmations)", tx_id, seen)
                    return True
            except EscrowError as exc:
                # Keep waiting on transient indexer errors
                logger.debug("confirmation poll for %s failed: %s", tx_id, exc)
            if loop.time() + self.poll_interval > deadline:
                logger.warning("tx %s not confirmed within %.0fs", tx_id, self.confirmation_timeout)
                return False
            await asyncio.sleep(self.poll_interval)
