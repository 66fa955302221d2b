"""
TronGrid Adapters - Tron block scanning and contract event feeds.

Two retrieval strategies behind the same adapter interface:

- TronBlockAdapter: full-block scan. One call per block (or per chunk of
  up to 100 blocks with getblockbylimitnext), decoded client-side. The
  number of calls depends only on blocks scanned.
- TronTokenFeedAdapter: token-indexed. Paginated Transfer events per
  tracked contract, windowed by block timestamp. The number of calls
  depends only on the number of tracked tokens.

Endpoints:
- POST /wallet/getnowblock
- POST /wallet/getblockbynum          {"num": height}
- POST /wallet/getblockbylimitnext    {"startNum": a, "endNum": b}  (b exclusive)
- GET  /v1/contracts/{contract}/events

An API key, when configured, is sent as TRON-PRO-API-KEY.
"""

import logging
from typing import Any, Optional, Sequence

import aiohttp

from chain_adapters.base import BaseChainAdapter
from chain_adapters.decoding import decode_tron_block, decode_tron_event, parse_tron_block
from chain_adapters.exceptions import DecodeError, FetchError
from chain_adapters.models import (
    BlockPayload,
    Chain,
    FetchBatch,
    RangeUnit,
    RawTransfer,
    ScanRange,
    TransferPage,
)
from core.constants import NATIVE_ASSET, TRON_MAX_BLOCKS_PER_REQUEST
from core.retry import RetryPolicy


logger = logging.getLogger(__name__)


class _TronGridMixin:
    """Shared TronGrid plumbing: API key header and head block lookup."""
    
    API_KEY_HEADER = "TRON-PRO-API-KEY"
    
    def _get_default_headers(self) -> dict[str, str]:
        headers = super()._get_default_headers()
        if self._api_key:
            headers[self.API_KEY_HEADER] = self._api_key
        return headers
    
    async def get_now_block(self) -> BlockPayload:
        payload = await self._make_request("POST", f"{self._endpoint_url}/wallet/getnowblock", json_body={})
        block = parse_tron_block(payload or {})
        if block is None:
            raise FetchError(
                "getnowblock returned an empty payload",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return block


# ============================================================
# BLOCK-BASED STRATEGY
# ============================================================

class TronBlockAdapter(_TronGridMixin, BaseChainAdapter):
    """
    Scans whole Tron blocks and decodes TRC-20 transfer() calls and
    native TRX transfers from them.
    
    Blocks are fetched strictly in height order. The first block that
    cannot be fetched ends the batch; everything before it is confirmed.
    """
    
    range_unit = RangeUnit.HEIGHT
    
    def __init__(
        self,
        endpoint_url: str,
        api_key: Optional[str] = None,
        timeout: float = BaseChainAdapter.DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        blocks_per_request: int = 1,
        session: Optional[aiohttp.ClientSession] = None,
        sleep=None,
    ) -> None:
        super().__init__(
            Chain.TRON,
            endpoint_url,
            api_key=api_key,
            timeout=timeout,
            retry_policy=retry_policy,
            max_concurrency=1,
            session=session,
            sleep=sleep,
        )
        self._blocks_per_request = max(1, min(blocks_per_request, TRON_MAX_BLOCKS_PER_REQUEST))
    
    @property
    def name(self) -> str:
        return "trongrid_blocks"
    
    async def latest_position(self) -> int:
        return (await self.get_now_block()).height
    
    async def fetch_block(self, height: int) -> Optional[BlockPayload]:
        """Fetch one block by height; None when the node does not have it."""
        payload = await self._make_request(
            "POST",
            f"{self._endpoint_url}/wallet/getblockbynum",
            json_body={"num": height},
        )
        return parse_tron_block(payload or {})
    
    async def fetch_block_range(self, start: int, end_exclusive: int) -> list[BlockPayload]:
        """Fetch blocks [start, end_exclusive), at most 100 per call."""
        if end_exclusive - start > TRON_MAX_BLOCKS_PER_REQUEST:
            raise ValueError(f"At most {TRON_MAX_BLOCKS_PER_REQUEST} blocks per request")
        payload = await self._make_request(
            "POST",
            f"{self._endpoint_url}/wallet/getblockbylimitnext",
            json_body={"startNum": start, "endNum": end_exclusive},
        )
        payload = payload or {}
        items = (payload.get("block") or []) if isinstance(payload, dict) else None
        if not isinstance(items, list):
            raise DecodeError(
                "getblockbylimitnext returned an unexpected shape",
                adapter_name=self.name,
                chain=self.chain.value,
                raw_data=payload,
            )
        blocks = []
        for item in items:
            block = parse_tron_block(item)
            if block is not None:
                blocks.append(block)
        return sorted(blocks, key=lambda b: b.height)
    
    async def fetch(
        self,
        scan_range: ScanRange,
        contracts: Sequence[str],
    ) -> FetchBatch:
        # Tracked contracts are filtered downstream; a block costs one call
        # no matter how many tokens or wallets are tracked.
        batch = FetchBatch(scan_range=scan_range, confirmed_through=scan_range.start)
        calls_before = self._request_count
        
        height = scan_range.first
        while height <= scan_range.end:
            chunk_end = min(scan_range.end, height + self._blocks_per_request - 1)
            if chunk_end == height:
                unit = f"block {height}"
                outcome = await self._run_unit(unit, lambda h=height: self._decode_block(h))
            else:
                unit = f"blocks {height}-{chunk_end}"
                outcome = await self._run_unit(
                    unit, lambda a=height, b=chunk_end: self._decode_chunk(a, b)
                )
            
            batch.outcomes.append(outcome)
            if not outcome.ok:
                break
            batch.confirmed_through = chunk_end
            height = chunk_end + 1
        
        batch.request_count = self._request_count - calls_before
        return batch
    
    async def _decode_block(self, height: int) -> list[RawTransfer]:
        block = await self.fetch_block(height)
        if block is None:
            raise FetchError(
                f"Block {height} not available yet",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return decode_tron_block(block)
    
    async def _decode_chunk(self, start: int, end: int) -> list[RawTransfer]:
        blocks = await self.fetch_block_range(start, end + 1)
        heights = [b.height for b in blocks]
        if heights != list(range(start, end + 1)):
            raise FetchError(
                f"Incomplete block range {start}-{end} ({len(blocks)} blocks returned)",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        transfers: list[RawTransfer] = []
        for block in blocks:
            transfers.extend(decode_tron_block(block))
        return transfers


# ============================================================
# TOKEN-INDEXED STRATEGY
# ============================================================

class TronTokenFeedAdapter(_TronGridMixin, BaseChainAdapter):
    """
    Reads Transfer events per tracked TRC-20 contract.
    
    Ranges and watermarks are block timestamps in milliseconds.
    Native TRX has no event feed and is skipped by this strategy.
    """
    
    range_unit = RangeUnit.TIMESTAMP_MS
    PAGE_LIMIT = 200
    MAX_PAGES = 50
    
    @property
    def name(self) -> str:
        return "trongrid_events"
    
    async def latest_position(self) -> int:
        block = await self.get_now_block()
        if block.timestamp is None:
            raise FetchError(
                "Head block has no timestamp",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        return int(block.timestamp.timestamp() * 1000)
    
    async def fetch_token_transfer_page(
        self,
        contract: str,
        from_timestamp: int,
        to_timestamp: int,
        cursor: Optional[str] = None,
    ) -> TransferPage:
        """Fetch one page of Transfer events in (from_timestamp, to_timestamp]."""
        params: dict[str, Any] = {
            "event_name": "Transfer",
            "min_block_timestamp": from_timestamp + 1,
            "max_block_timestamp": to_timestamp,
            "order_by": "block_timestamp,asc",
            "limit": self.PAGE_LIMIT,
        }
        if cursor:
            params["fingerprint"] = cursor
        
        payload = await self._make_request(
            "GET",
            f"{self._endpoint_url}/v1/contracts/{contract}/events",
            params=params,
        )
        if not isinstance(payload, dict) or payload.get("success") is False:
            raise FetchError(
                f"Event feed error for {contract}: {str(payload)[:200]}",
                adapter_name=self.name,
                chain=self.chain.value,
            )
        
        meta = payload.get("meta") or {}
        items = payload.get("data") or []
        if not isinstance(items, list) or not isinstance(meta, dict):
            raise DecodeError(
                f"Event feed page for {contract} has an unexpected shape",
                adapter_name=self.name,
                chain=self.chain.value,
                raw_data=payload,
            )
        return TransferPage(
            items=tuple(items),
            next_cursor=meta.get("fingerprint") or None,
        )
    
    async def _collect_contract(self, contract: str, scan_range: ScanRange) -> list[RawTransfer]:
        transfers: list[RawTransfer] = []
        cursor: Optional[str] = None
        
        for _ in range(self.MAX_PAGES):
            page = await self.fetch_token_transfer_page(contract, scan_range.start, scan_range.end, cursor)
            for item in page.items:
                try:
                    transfer = decode_tron_event(item)
                except DecodeError as e:
                    logger.warning(f"[{self.name}] Dropping undecodable event for {contract}: {e}")
                    continue
                if transfer is not None:
                    transfers.append(transfer)
            
            cursor = page.next_cursor
            if not cursor:
                return transfers
        
        raise FetchError(
            f"More than {self.MAX_PAGES} pages for {contract} in {scan_range}",
            adapter_name=self.name,
            chain=self.chain.value,
        )
    
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
        feed_contracts = [c for c in contracts if c != NATIVE_ASSET]
        batch.outcomes = await self._fetch_contracts(
            feed_contracts,
            lambda contract: self._collect_contract(contract, scan_range),
        )
        batch.request_count = self._request_count - calls_before
        return batch
