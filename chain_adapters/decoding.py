"""
Transfer Decoders - Chain payloads to RawTransfer.

Pure functions. Four payload shapes are understood:

1. Tron blocks: contract-call bytes recognized by the transfer()
   selector, plus native TRX TransferContract instructions.
2. EVM logs: ERC-20 Transfer events (topic-indexed from/to, data amount).
3. EVM blocks: native coin value transfers (ETH, POL, BNB).
4. Token-indexed feed items: already structured JSON, mapped by field name.

Malformed call data is "not a transfer" (None), never an error. A payload
whose overall shape is wrong raises DecodeError so the caller can drop
that single item and keep going.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from chain_adapters.addresses import to_canonical_tron
from chain_adapters.exceptions import DecodeError
from chain_adapters.models import BlockPayload, Chain, RawTransfer
from core.constants import (
    ABI_SLOT_HEX_LENGTH,
    MIN_TRANSFER_CALL_HEX_LENGTH,
    NATIVE_ASSET,
    TRANSFER_EVENT_TOPIC,
    TRANSFER_METHOD_SELECTOR,
    TRON_ADDRESS_HEX_PREFIX,
    TRON_CONTRACT_CALL,
    TRON_NATIVE_TRANSFER,
    TRON_SUCCESS_RESULT,
)


logger = logging.getLogger(__name__)


# ============================================================
# HELPERS
# ============================================================

def _from_millis(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    """Parse a decimal or 0x-hex integer without going through float."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if not isinstance(value, str) or not value:
        return None
    try:
        if value[:2].lower() == "0x":
            return int(value, 16)
        return int(value, 10)
    except ValueError:
        return None


def _parse_hex(value: str) -> Optional[int]:
    try:
        return int(value, 16)
    except ValueError:
        return None


def _expect(value: Any, kind: type, field_name: str, chain: Chain, raw_data: Any = None) -> Any:
    """Return value if it has the JSON type the decoder walks into."""
    if not isinstance(value, kind):
        raise DecodeError(
            f"Expected {kind.__name__} for '{field_name}', got {type(value).__name__}",
            chain=chain.value,
            raw_data=raw_data if raw_data is not None else value,
            field_name=field_name,
        )
    return value


def _require_str(value: Any, field_name: str, chain: Chain, raw_data: Any) -> str:
    if not isinstance(value, str) or not value:
        raise DecodeError(
            f"Missing or non-string field '{field_name}'",
            chain=chain.value,
            raw_data=raw_data,
            field_name=field_name,
        )
    return value


# ============================================================
# CONTRACT CALL DATA
# ============================================================

def decode_transfer_call(data: Optional[str]) -> Optional[Tuple[str, int]]:
    """
    Decode transfer(address,uint256) call data.
    
    Returns:
        (recipient as 21-byte Tron hex, raw amount), or None when the
        data is empty, too short, malformed, or another method.
    """
    if not isinstance(data, str) or not data:
        return None
    body = data[2:] if data[:2].lower() == "0x" else data
    if len(body) < MIN_TRANSFER_CALL_HEX_LENGTH:
        return None
    if body[:8].lower() != TRANSFER_METHOD_SELECTOR:
        return None
    
    to_slot = body[8:8 + ABI_SLOT_HEX_LENGTH]
    amount_slot = body[8 + ABI_SLOT_HEX_LENGTH:MIN_TRANSFER_CALL_HEX_LENGTH]
    
    amount = _parse_hex(amount_slot)
    if amount is None or _parse_hex(to_slot) is None:
        return None
    
    return TRON_ADDRESS_HEX_PREFIX + to_slot[-40:].lower(), amount


# ============================================================
# TRON BLOCKS
# ============================================================

def parse_tron_block(payload: dict[str, Any]) -> Optional[BlockPayload]:
    """
    Parse a /wallet/getblockbynum response.
    
    Returns None for the empty object TronGrid sends for unknown heights.
    """
    if not payload:
        return None
    _expect(payload, dict, "block", Chain.TRON)
    try:
        raw_header = _expect(payload["block_header"]["raw_data"], dict, "block_header.raw_data", Chain.TRON)
        height = int(raw_header["number"])
    except (KeyError, TypeError, ValueError) as e:
        raise DecodeError(
            "Block payload missing header number",
            chain=Chain.TRON.value,
            raw_data=payload,
            field_name="block_header.raw_data.number",
            original_error=e,
        )
    transactions = _expect(payload.get("transactions") or [], list, "transactions", Chain.TRON, payload)
    
    return BlockPayload(
        height=height,
        block_id=payload.get("blockID", ""),
        timestamp=_from_millis(raw_header.get("timestamp")),
        transactions=tuple(transactions),
    )


def _tron_address(value: Any, field_name: str) -> Tuple[str, bool]:
    if not isinstance(value, str) or not value:
        raise DecodeError(
            f"Missing address field '{field_name}'",
            chain=Chain.TRON.value,
            field_name=field_name,
        )
    return to_canonical_tron(value)


def decode_tron_transaction(
    tx: dict[str, Any],
    block_height: Optional[int],
    block_timestamp: Optional[datetime],
) -> list[RawTransfer]:
    """
    Extract transfers from one Tron transaction.
    
    Skips transactions whose execution result is not SUCCESS. The sender
    is the transaction's owner_address, never a call parameter.
    """
    _expect(tx, dict, "transaction", Chain.TRON)
    ret = _expect(tx.get("ret") or [], list, "ret", Chain.TRON, tx)
    if not ret:
        return []
    if _expect(ret[0], dict, "ret[0]", Chain.TRON, tx).get("contractRet") != TRON_SUCCESS_RESULT:
        return []
    
    tx_id = _require_str(tx.get("txID"), "txID", Chain.TRON, tx)
    
    raw_data = _expect(tx.get("raw_data") or {}, dict, "raw_data", Chain.TRON, tx)
    contracts = _expect(raw_data.get("contract") or [], list, "raw_data.contract", Chain.TRON, tx)
    transfers = []
    
    for contract in contracts:
        _expect(contract, dict, "raw_data.contract[]", Chain.TRON, tx)
        contract_type = contract.get("type")
        parameter = _expect(contract.get("parameter") or {}, dict, "parameter", Chain.TRON, tx)
        value = _expect(parameter.get("value") or {}, dict, "parameter.value", Chain.TRON, tx)
    
        if contract_type == TRON_CONTRACT_CALL:
            decoded = decode_transfer_call(value.get("data"))
            if decoded is None:
                continue
            to_hex, amount = decoded
            token_address, token_fallback = _tron_address(value.get("contract_address"), "contract_address")
            
        elif contract_type == TRON_NATIVE_TRANSFER:
            amount = _parse_int(value.get("amount"))
            if amount is None:
                continue
            to_hex = value.get("to_address")
            token_address, token_fallback = NATIVE_ASSET, False
            
        else:
            continue
        
        from_address, from_fallback = _tron_address(value.get("owner_address"), "owner_address")
        to_address, to_fallback = _tron_address(to_hex, "to_address")
        
        transfers.append(RawTransfer(
            chain=Chain.TRON,
            tx_id=tx_id,
            contract_address=token_address,
            from_address=from_address,
            to_address=to_address,
            raw_amount=amount,
            block_height=block_height,
            block_timestamp=block_timestamp,
            address_fallback=token_fallback or from_fallback or to_fallback,
        ))
    
    return transfers


def decode_tron_block(block: BlockPayload) -> list[RawTransfer]:
    """Decode every transaction in a block; bad transactions are dropped."""
    transfers: list[RawTransfer] = []
    for tx in block.transactions:
        try:
            transfers.extend(decode_tron_transaction(tx, block.height, block.timestamp))
        except DecodeError as e:
            logger.warning(f"Dropping undecodable transaction in block {block.height}: {e}")
    return transfers


# ============================================================
# TOKEN-INDEXED FEED ITEMS
# ============================================================

def decode_tron_event(item: dict[str, Any]) -> Optional[RawTransfer]:
    """
    Map a TronGrid contract event to a RawTransfer.
    
    Items that are not Transfer events return None.
    """
    _expect(item, dict, "event", Chain.TRON)
    if item.get("event_name") != "Transfer":
        return None
    
    result = _expect(item.get("result") or {}, dict, "result", Chain.TRON, item)
    raw_from = result.get("from", result.get("0"))
    raw_to = result.get("to", result.get("1"))
    amount = _parse_int(result.get("value", result.get("2")))
    tx_id = item.get("transaction_id")
    
    if amount is None or not isinstance(tx_id, str) or not tx_id:
        raise DecodeError(
            "Transfer event missing value or transaction id",
            chain=Chain.TRON.value,
            raw_data=item,
        )
    
    contract_address, contract_fallback = _tron_address(item.get("contract_address"), "contract_address")
    from_address, from_fallback = _tron_address(raw_from, "from")
    to_address, to_fallback = _tron_address(raw_to, "to")
    
    return RawTransfer(
        chain=Chain.TRON,
        tx_id=tx_id,
        contract_address=contract_address,
        from_address=from_address,
        to_address=to_address,
        raw_amount=amount,
        block_height=_parse_int(item.get("block_number")),
        block_timestamp=_from_millis(item.get("block_timestamp")),
        address_fallback=contract_fallback or from_fallback or to_fallback,
    )


# ============================================================
# EVM LOGS
# ============================================================

def decode_evm_log(
    chain: Chain,
    log: dict[str, Any],
) -> Optional[RawTransfer]:
    """
    Decode an ERC-20 Transfer log.
    
    Logs with another topic, a non-ERC-20 topic count (ERC-721 indexes
    the token id as a 4th topic), removed logs and empty data return None.
    """
    _expect(log, dict, "log", chain)
    topics = _expect(log.get("topics") or [], list, "topics", chain, log)
    if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_EVENT_TOPIC:
        return None
    if log.get("removed"):
        return None
    
    data = log.get("data") or ""
    if not isinstance(data, str):
        return None
    body = data[2:] if data[:2].lower() == "0x" else data
    if not body:
        return None
    amount = _parse_hex(body[:ABI_SLOT_HEX_LENGTH])
    if amount is None:
        return None
    
    tx_id = _require_str(log.get("transactionHash"), "transactionHash", chain, log)
    contract = _require_str(log.get("address"), "address", chain, log)
    
    block_time = _parse_int(log.get("blockTimestamp"))
    
    return RawTransfer(
        chain=chain,
        tx_id=tx_id.lower(),
        contract_address=contract.lower(),
        from_address="0x" + str(topics[1])[-40:].lower(),
        to_address="0x" + str(topics[2])[-40:].lower(),
        raw_amount=amount,
        block_height=_parse_int(log.get("blockNumber")),
        block_timestamp=(
            datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time is not None else None
        ),
    )


def decode_evm_native_transaction(
    chain: Chain,
    tx: dict[str, Any],
    block_height: Optional[int],
    block_timestamp: Optional[datetime],
) -> Optional[RawTransfer]:
    """
    Map a transaction from eth_getBlockByNumber(..., true) to a native
    coin transfer.
    
    Contract creations (no "to") and zero-value transactions return None.
    """
    _expect(tx, dict, "transaction", chain)
    amount = _parse_int(tx.get("value"))
    if not amount:
        return None
    to_address = tx.get("to")
    if not to_address:
        return None
    
    tx_id = _require_str(tx.get("hash"), "hash", chain, tx)
    from_address = _require_str(tx.get("from"), "from", chain, tx)
    to_address = _require_str(to_address, "to", chain, tx)
    
    return RawTransfer(
        chain=chain,
        tx_id=tx_id.lower(),
        contract_address=NATIVE_ASSET,
        from_address=from_address.lower(),
        to_address=to_address.lower(),
        raw_amount=amount,
        block_height=block_height,
        block_timestamp=block_timestamp,
    )


def decode_evm_block(chain: Chain, block: dict[str, Any]) -> list[RawTransfer]:
    """Decode native transfers in a full EVM block; bad transactions are dropped."""
    _expect(block, dict, "block", chain)
    height = _parse_int(block.get("number"))
    block_time = _parse_int(block.get("timestamp"))
    timestamp = datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time is not None else None
    transactions = _expect(block.get("transactions") or [], list, "transactions", chain, block)
    
    transfers: list[RawTransfer] = []
    for tx in transactions:
        try:
            transfer = decode_evm_native_transaction(chain, tx, height, timestamp)
        except DecodeError as e:
            logger.warning(f"Dropping undecodable {chain.value} transaction in block {height}: {e}")
            continue
        if transfer is not None:
            transfers.append(transfer)
    return transfers
