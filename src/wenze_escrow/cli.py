"""
wenze-escrow command line.

Offline helpers for addresses, balances and datums, plus an indexer-backed
status lookup that needs no wallet.
"""

import asyncio
import logging
import sys
from typing import Optional

import click
import yaml

from . import address, balance, datum
from .errors import EscrowError
from .indexer import BlockfrostIndexer
from .orchestrator import EscrowOrchestrator
from .script import load_script
from .settings import EscrowSettings
from .types import Network

logger = logging.getLogger(__name__)

_NETWORKS = click.Choice([n.value for n in Network])


def _echo_yaml(data: dict) -> None:
    click.echo(yaml.safe_dump(data, sort_keys=False, width=4096).rstrip())


def _fail(exc: EscrowError) -> None:
    logger.error(f"{exc}")
    click.echo(exc.user_message, err=True)
    sys.exit(1)


def _load_settings(config_path: Optional[str]) -> EscrowSettings:
    if config_path:
        return EscrowSettings.from_yaml(config_path)
    return EscrowSettings.from_env()


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Cardano buyer/seller escrow client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )


@main.command("script-info")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--network", type=_NETWORKS, default=Network.TESTNET.value, show_default=True)
@click.option("--title", default=None, help="Blueprint validator title")
def script_info(path: str, network: str, title: Optional[str]) -> None:
    """Show the hash and address of a compiled escrow script."""
    try:
        script = load_script(path, Network(network), title)
    except EscrowError as exc:
        _fail(exc)
        return
    _echo_yaml(
        {
            "plutus_version": script.plutus_version,
            "script_hash": script.script_hash.hex(),
            "address": script.derived_address,
            "network": script.network.value,
            "size": len(script.script_bytes),
        }
    )


@main.command("encode-address")
@click.argument("raw_hex")
@click.option("--network", type=_NETWORKS, default=None, help="Override the inferred network")
def encode_address(raw_hex: str, network: Optional[str]) -> None:
    """Encode hex address bytes as bech32."""
    try:
        click.echo(address.encode(raw_hex, Network(network) if network else None))
    except EscrowError as exc:
        _fail(exc)


@main.command("decode-address")
@click.argument("addr")
def decode_address(addr: str) -> None:
    """Show the raw bytes and credentials of an address."""
    try:
        raw = address.decode(addr)
        details = address.address_details(raw)
    except EscrowError as exc:
        _fail(exc)
        return
    _echo_yaml(
        {
            "hex": raw.hex(),
            "address_type": details.address_type,
            "network": details.network.value,
            "payment_hash": details.payment_hash.hex() if details.payment_hash else None,
            "payment_is_script": details.payment_is_script,
            "stake_hash": details.stake_hash.hex() if details.stake_hash else None,
        }
    )


@main.command("decode-balance")
@click.argument("cbor_hex")
@click.option("--ada", is_flag=True, help="Print ADA instead of lovelace")
def decode_balance(cbor_hex: str, ada: bool) -> None:
    """Decode a wallet getBalance() value."""
    lovelace = balance.decode(cbor_hex)
    click.echo(str(datum.lovelace_to_ada(lovelace)) if ada else str(lovelace))


@main.command("decode-datum")
@click.argument("cbor_hex")
def decode_datum(cbor_hex: str) -> None:
    """Decode an escrow inline datum."""
    try:
        raw = bytes.fromhex(cbor_hex.strip())
    except ValueError:
        raise click.BadParameter("datum must be hex", param_hint="CBOR_HEX")
    result = datum.datum_from_cbor(raw)
    if not result.ok:
        _fail(result.error)
        return
    record = result.value
    _echo_yaml(
        {
            "order_id": record.order_id_text,
            "buyer": record.buyer_key_hash.hex(),
            "seller": record.seller_key_hash.hex(),
            "amount": record.amount,
            "deadline": record.deadline,
        }
    )


@main.command("status")
@click.argument("order_id")
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--script", "script_path", type=click.Path(exists=True, dir_okay=False), default=None)
def status(order_id: str, config_path: Optional[str], script_path: Optional[str]) -> None:
    """Look up the escrow output for ORDER_ID on chain."""
    try:
        settings = _load_settings(config_path)
        path = script_path or settings.script_path
        if not path:
            raise click.UsageError("no script given (use --script or ESCROW_SCRIPT_PATH)")
        script = load_script(path, settings.network, settings.validator_title)
    except EscrowError as exc:
        _fail(exc)
        return

    async def run():
        async with BlockfrostIndexer(
            settings.blockfrost_project_id,
            settings.network,
            base_url=settings.blockfrost_url,
            min_confirmations=settings.min_confirmations,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.poll_interval,
        ) as indexer:
            orchestrator = EscrowOrchestrator(
                script,
                indexer,
                settings.network,
                validity_offset=settings.validity_offset,
                default_deadline_hours=settings.default_deadline_hours,
            )
            return await orchestrator.check_status(order_id)

    try:
        looked_up = asyncio.run(run())
    except EscrowError as exc:
        _fail(exc)
        return
    if not looked_up.ok:
        _fail(looked_up.error)
        return
    result = looked_up.value
    out = {
        "order_id": order_id,
        "exists": result.exists,
        "details_available": result.details_available,
    }
    if result.output is not None:
        out["output"] = result.output.ref
        out["locked_lovelace"] = result.output.locked_amount
        out["explorer"] = address.explorer_url(result.output.tx_id, settings.network)
    if result.deadline is not None:
        out["deadline"] = result.deadline
    _echo_yaml(out)


if __name__ == "__main__":
    main()
