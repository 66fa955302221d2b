"""
EVM JSON-RPC Adapter - ERC-20 Transfer logs and native coin transfers.

Two kinds of work per scan range:

- One eth_getLogs call per tracked contract, filtered on the Transfer
  topic. Wallets are matched client-side, so the number of calls never
  depends on how many wallets are tracked.
- When the native coin (ETH, POL, BNB) is tracked, one
  eth_getBlockByNumber(height, true) call per block, scanning value
  transfers in height order. The first block that cannot be fetched ends
  the block scan; everything before it is confirmed.

Works with any Ethereum-compatible JSON-RPC endpoint (Ethereum, Polygon,
BSC, ...); each chain is registered explicitly with its own URL. An API
key, when configured, is sent as x-api-key.
"""

import itertools
import logging
from typing import Any, Optional, Sequence

from chain_adapters.base import BaseChainAdapter
from chain_adapters.decoding import decode_evm_block, decode_evm_log
from chain_adapters.exceptions import DecodeError, FetchError
from chain_adapters.models import FetchBatch, FetchOutcome, RangeUnit, RawTransfer, ScanRange
from core.constants import NATIVE_ASSET, TRANSFER_EVENT_TOPIC


logger = logging.getLogger(__name__)


class EvmLogAdapter(BaseChainAdapter):
    """Token-indexed strategy for EVM chains, with block scans for native coin."""
    
    range_unit = RangeUnit.HEIGHT
    API_KEY_HEADER = "x-api-key"
    
    _ids = itertools.count(1)
    
    @property
    def name(self) -> str:
        return f"{self.chain.value}_rpc"
    
    def _get_default_headers(self) -> dict[str, str]:
        headers = super()._get_default_headers()
        if self._api_key:
            headers[self.API_KEY_HEADER] = self._api_key
        return headers
    
    async def _rpc(self, method: str, params: list[Any]) -> Any:
        """Make a JSON-RPC call and unwrap the result."""
        payload = await self._make_request(
            "POST",
            self._endpoint_url,
            json_body={
                "jsonrpc": "2.0",
                "id": next(self._ids),
                "method": method,
                "params": params,
            },
        )
        if not isinstance(payload, dict):
            raise FetchError(
                f"{method}: unexpected response {str(payload)[:200]}",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise FetchError(
                f"{method}: {message}",
                adapter_name=self.name,
                chain=self.chain.value,
                response_body=str(error)[:500],
            )
        return payload.get("result")
    
    async def latest_position(self) -> int:
        result = await self._rpc("eth_blockNumber", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"eth_blockNumber returned {result!r}",
                adapter_name=self.name,
                chain=self.chain.value,
                original_error=e,
            )
    
    # ─────────────────────────────────────────────────────────────
    # ERC-20 Logs
    # ─────────────────────────────────────────────────────────────
    
    async def get_transfer_logs(
        self,
        contract: str,
        from_block: int,
        to_block: int,
    ) -> list[dict[str, Any]]:
        """Transfer logs emitted by one contract in [from_block, to_block]."""
        result = await self._rpc("eth_getLogs", [{
            "address": contract,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [TRANSFER_EVENT_TOPIC],
        }])
        if not isinstance(result, list):
            raise FetchError(
                f"eth_getLogs returned {type(result).__name__}",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return result
    
    async def _collect_contract(self, contract: str, scan_range: ScanRange) -> list[RawTransfer]:
        logs = await self.get_transfer_logs(contract, scan_range.first, scan_range.end)
        transfers = []
        for log in logs:
            try:
                transfer = decode_evm_log(self.chain, log)
            except DecodeError as e:
                logger.warning(f"[{self.name}] Dropping undecodable log for {contract}: {e}")
                continue
            if transfer is not None:
                transfers.append(transfer)
        return transfers
    
    # ─────────────────────────────────────────────────────────────
    # Native Coin Blocks
    # ─────────────────────────────────────────────────────────────
    
    async def get_block(self, height: int) -> Optional[dict[str, Any]]:
        """Full block with transaction objects; None when the node does not have it."""
        result = await self._rpc("eth_getBlockByNumber", [hex(height), True])
        if result is not None and not isinstance(result, dict):
            raise FetchError(
                f"eth_getBlockByNumber returned {type(result).__name__}",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return result
    
    async def _decode_block(self, height: int) -> list[RawTransfer]:
        block = await self.get_block(height)
        if block is None:
            raise FetchError(
                f"Block {height} not available yet",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return decode_evm_block(self.chain, block)
    
    async def _scan_blocks(self, scan_range: ScanRange) -> tuple[list[FetchOutcome], int]:
        """Scan blocks in order; returns outcomes and the last confirmed height."""
        outcomes: list[FetchOutcome] = []
        confirmed = scan_range.start
        for height in range(scan_range.first, scan_range.end + 1):
            outcome = await self._run_unit(f"block {height}", lambda h=height: self._decode_block(h))
            outcomes.append(outcome)
            if not outcome.ok:
                break
            confirmed = height
        return outcomes, confirmed
    
    # ─────────────────────────────────────────────────────────────
    # Fetch
    # ─────────────────────────────────────────────────────────────
    
    async def fetch(
        self,
        scan_range: ScanRange,
        contracts: Sequence[str],
    ) -> FetchBatch:
        batch = FetchBatch(scan_range=scan_range)
        if scan_range.is_empty:
            batch.confirmed_through = scan_range.end
            return batch
        
        calls_before = self._request_count
        log_contracts = [c for c in contracts if c != NATIVE_ASSET]
        batch.outcomes = await self._fetch_contracts(
            log_contracts,
            lambda contract: self._collect_contract(contract, scan_range),
        )
        
        if NATIVE_ASSET in contracts:
            # Log units are all-or-nothing for the range; the block scan can
            # confirm a prefix of it.
            logs_confirmed = scan_range.end if batch.fully_succeeded else scan_range.start
            block_outcomes, blocks_confirmed = await self._scan_blocks(scan_range)
            batch.outcomes.extend(block_outcomes)
            batch.confirmed_through = min(logs_confirmed, blocks_confirmed)
        
        batch.request_count = self._request_count - calls_before
        return batch
