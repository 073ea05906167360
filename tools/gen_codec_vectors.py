"""Generate codec YAML vectors (Plutus data, datum, redeemers, addresses, balances)."""

from __future__ import annotations

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from tools.yaml_dump import write_yaml  # noqa: E402
from wenze_escrow.codec_vectors import (  # noqa: E402
    address_vectors,
    balance_vectors,
    datum_vectors,
    plutus_data_vectors,
    redeemer_vectors,
    script_hash_vectors,
)


def main() -> None:
    out = Path(sys.argv[1]) if len(sys.argv) > 1 else ROOT / "fixtures" / "codec"
    out.mkdir(parents=True, exist_ok=True)

    write_yaml(out / "plutus_data.yaml", plutus_data_vectors())
    write_yaml(out / "escrow_datum.yaml", datum_vectors())
    write_yaml(out / "escrow_redeemer.yaml", redeemer_vectors())
    write_yaml(out / "bech32_address.yaml", address_vectors())
    write_yaml(out / "balance.yaml", balance_vectors())
    write_yaml(out / "script_hash.yaml", script_hash_vectors())


if __name__ == "__main__":
    main()
