"""Escrow client configuration constants.

Keep this file aligned with the deployed validator (`contracts/escrow`) and
CIP-19 / CIP-30 where noted.
"""

# Units
COIN_DECIMALS = 6
LOVELACE_PER_ADA = 10**COIN_DECIMALS

# Ledger sizes
KEY_HASH_SIZE = 28  # blake2b-224
SCRIPT_HASH_SIZE = 28
TX_ID_SIZE = 32  # blake2b-256

# Plutus language tags prepended before hashing a script
PLUTUS_V1_TAG = 0x01
PLUTUS_V2_TAG = 0x02
PLUTUS_V3_TAG = 0x03
PLUTUS_VERSION_TAGS = {
    "v1": PLUTUS_V1_TAG,
    "v2": PLUTUS_V2_TAG,
    "v3": PLUTUS_V3_TAG,
}

# CIP-19 address header (high nibble = type, low nibble = network id)
NETWORK_ID_TESTNET = 0
NETWORK_ID_MAINNET = 1
ADDR_TYPE_ENTERPRISE_SCRIPT = 0x7
# Types whose payment credential is a script hash
SCRIPT_PAYMENT_TYPES = frozenset({0x1, 0x3, 0x5, 0x7})
# Types whose stake credential follows the payment credential (base addresses)
BASE_ADDRESS_TYPES = frozenset({0x0, 0x1, 0x2, 0x3})
POINTER_ADDRESS_TYPES = frozenset({0x4, 0x5})
ENTERPRISE_ADDRESS_TYPES = frozenset({0x6, 0x7})
# Leading bytes that imply a test network without a network hint
TESTNET_LEADING_BYTES = frozenset({0x00, 0x01})

# Bech32 human-readable prefixes
HRP_TESTNET = "addr_test"
HRP_MAINNET = "addr"

# Deadlines
MILLISECOND_DEADLINE_THRESHOLD = 10**12
DEFAULT_ESCROW_DEADLINE_HOURS = 168  # 7 days
# Refund validity lower bound = max(deadline, now) + offset
VALIDITY_LOWER_BOUND_OFFSET = 1

# Fees / confirmations
ESTIMATED_FEES = 170_000  # lovelace margin kept on top of the locked amount
MIN_CONFIRMATIONS = 2
CONFIRMATION_TIMEOUT = 180.0  # seconds
CONFIRMATION_POLL_INTERVAL = 5.0  # seconds

# CIP-30 wallets, in discovery priority order
SUPPORTED_WALLETS = ("nami", "eternl", "flint", "vespr", "lace", "yoroi")

# Indexer / explorer endpoints
BLOCKFROST_URLS = {
    "testnet": "https://cardano-preprod.blockfrost.io/api/v0",
    "mainnet": "https://cardano-mainnet.blockfrost.io/api/v0",
}
BLOCKFROST_PAGE_SIZE = 100
EXPLORER_TX_URLS = {
    "testnet": "https://preprod.cardanoscan.io/transaction/",
    "mainnet": "https://cardanoscan.io/transaction/",
}

# Plutus data CBOR layout
PLUTUS_BYTES_CHUNK_SIZE = 64
# Nesting bound for decoded inline datums (escrow datums use 2 levels)
PLUTUS_DATA_MAX_DEPTH = 64
