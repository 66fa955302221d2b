"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Protocol-level constants shared by decoders and adapters.

- Method selectors and event topics recognized as transfers
- Tron address encoding prefixes
- Block explorer URLs used when formatting alerts

============================================================
"""

# ============================================================
# TRANSFER RECOGNITION
# ============================================================

# keccak256("transfer(address,uint256)")[:4]
TRANSFER_METHOD_SELECTOR = "a9059cbb"

# keccak256("Transfer(address,address,uint256)")
TRANSFER_EVENT_TOPIC = (
    "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
)

# Width of one ABI parameter slot, in hex characters
ABI_SLOT_HEX_LENGTH = 64

# Selector plus destination and amount slots
MIN_TRANSFER_CALL_HEX_LENGTH = len(TRANSFER_METHOD_SELECTOR) + 2 * ABI_SLOT_HEX_LENGTH

# Contract key used for the chain's native coin (e.g. TRX)
NATIVE_ASSET = "native"

# ============================================================
# TRON ENCODING
# ============================================================

TRON_ADDRESS_HEX_PREFIX = "41"
TRON_HEX_ADDRESS_LENGTH = 42
TRON_BASE58_ADDRESS_LENGTH = 34
TRON_NATIVE_DECIMALS = 6

TRON_CONTRACT_CALL = "TriggerSmartContract"
TRON_NATIVE_TRANSFER = "TransferContract"
TRON_SUCCESS_RESULT = "SUCCESS"

# getblockbylimitnext returns at most this many blocks per call
TRON_MAX_BLOCKS_PER_REQUEST = 100

# ============================================================
# EXPLORERS
# ============================================================

EXPLORER_TX_URLS = {
    "tron": "https://tronscan.org/#/transaction/",
    "ethereum": "https://etherscan.io/tx/",
    "polygon": "https://polygonscan.com/tx/",
    "bsc": "https://bscscan.com/tx/",
}
