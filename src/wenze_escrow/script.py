"""Escrow script identity and the address/script consistency check."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from . import address
from .crypto.hashing import script_hash
from .encoding import is_cbor_bytes, unwrap_cbor_bytes
from .errors import ErrorCode, EscrowError, Result, err
from .types import LockedOutput, Network, ScriptIdentity

logger = logging.getLogger(__name__)

# Text envelope type -> Plutus version
_ENVELOPE_VERSIONS = {
    "PlutusScriptV1": "v1",
    "PlutusScriptV2": "v2",
    "PlutusScriptV3": "v3",
}


def make_script_identity(
    script_bytes: bytes,
    plutus_version: str = "v3",
    network: Network = Network.TESTNET,
) -> ScriptIdentity:
    if not script_bytes:
        raise EscrowError(ErrorCode.INVALID_INPUT, "script bytes must be non-empty")
    h = script_hash(script_bytes, plutus_version)
    return ScriptIdentity(
        script_bytes=bytes(script_bytes),
        script_hash=h,
        derived_address=address.script_address(h, network),
        plutus_version=plutus_version.lower(),
        network=network,
    )


def _from_hex(text: str, what: str) -> bytes:
    try:
        return bytes.fromhex(text.strip())
    except (ValueError, AttributeError) as exc:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"{what} is not valid hex") from exc


def _pick_validator(validators: list, title: Optional[str]) -> dict:
    if not validators:
        raise EscrowError(ErrorCode.INVALID_INPUT, "blueprint has no validators")
    if title is not None:
        for v in validators:
            if v.get("title") == title:
                return v
        raise EscrowError(ErrorCode.INVALID_INPUT, f"validator {title!r} not found in blueprint")
    for v in validators:
        if str(v.get("title", "")).endswith(".spend"):
            return v
    return validators[0]


def _from_blueprint(doc: dict, network: Network, title: Optional[str]) -> ScriptIdentity:
    version = str(doc.get("preamble", {}).get("plutusVersion", "v3")).lower()
    validator = _pick_validator(doc.get("validators") or [], title)
    code = validator.get("compiledCode")
    if not code:
        raise EscrowError(ErrorCode.INVALID_INPUT, "validator has no compiledCode")
    identity = make_script_identity(_from_hex(code, "compiledCode"), version, network)
    declared = validator.get("hash")
    if declared and declared.lower() != identity.script_hash.hex():
        raise err(
            ErrorCode.INVALID_INPUT,
            "blueprint hash does not match compiled code",
            declared=declared,
            computed=identity.script_hash.hex(),
        )
    return identity


def _from_envelope(doc: dict, network: Network) -> ScriptIdentity:
    version = _ENVELOPE_VERSIONS.get(doc.get("type", ""))
    if version is None:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"unsupported script envelope type: {doc.get('type')!r}")
    raw = _from_hex(doc.get("cborHex", ""), "cborHex")
    # cardano-cli envelopes wrap the serialized script in one more byte string
    inner = unwrap_cbor_bytes(raw) if is_cbor_bytes(raw) else raw
    if is_cbor_bytes(inner):
        return make_script_identity(inner, version, network)
    return make_script_identity(raw, version, network)


def load_script(path, network: Network = Network.TESTNET, title: Optional[str] = None) -> ScriptIdentity:
    """Load the escrow validator from an Aiken blueprint or a text envelope."""
    try:
        doc = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as exc:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"cannot read script file: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise EscrowError(ErrorCode.INVALID_INPUT, f"script file is not JSON: {exc}") from exc
    if not isinstance(doc, dict):
        raise EscrowError(ErrorCode.INVALID_INPUT, "script file must hold a JSON object")
    if "validators" in doc:
        identity = _from_blueprint(doc, network, title)
    elif "cborHex" in doc:
        identity = _from_envelope(doc, network)
    else:
        raise EscrowError(ErrorCode.INVALID_INPUT, "unrecognized script file format")
    logger.debug("loaded %s script %s", identity.plutus_version, identity.script_hash.hex())
    return identity


def verify(output: LockedOutput, script: ScriptIdentity) -> Result[None]:
    """Check that `output` sits at the address derived from `script`.

    On mismatch the output must not be spent with this script; the error
    carries both hashes so the caller can tell which version locked it.
    """
    try:
        observed = address.decode(output.address)
    except EscrowError as exc:
        return Result.failure(
            err(ErrorCode.SCRIPT_MISMATCH, f"output address is not decodable: {exc.message}", tx_id=output.tx_id)
        )
    expected = address.decode(script.derived_address)
    if observed == expected:
        return Result.success(None)

    try:
        observed_hash = address.script_hash_of(observed)
    except EscrowError:
        observed_hash = None
    error = err(
        ErrorCode.SCRIPT_MISMATCH,
        "output is locked by a different script",
        expected_hash=script.script_hash.hex(),
        observed_hash=observed_hash.hex() if observed_hash is not None else None,
        tx_id=output.tx_id,
    )
    logger.warning(
        "script mismatch for %s: expected %s, observed %s",
        output.ref,
        error.details["expected_hash"],
        error.details["observed_hash"],
    )
    return Result.failure(error)


class ScriptConsistencyVerifier:
    """Binds one script identity to the `verify` check."""

    def __init__(self, script: ScriptIdentity):
        self.script = script

    def verify(self, output: LockedOutput) -> Result[None]:
        return verify(output, self.script)

    def owns(self, output: LockedOutput) -> bool:
        return verify(output, self.script).ok
