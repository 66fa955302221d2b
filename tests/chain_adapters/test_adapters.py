"""
Chain Adapter Tests.

============================================================
PURPOSE
============================================================
Tests for the Tron and EVM adapters behind the fetch(range) interface.

TEST CATEGORIES:
- Block strategy: ordering, chunking, stop-at-first-failure
- Token strategy: pagination, per-contract failure isolation
- EVM logs: one getLogs per contract, JSON-RPC errors
- EVM native coin: one getBlockByNumber per block, stop at first failure
- Retry: backoff, rate limits, client errors, timeouts
- HTTP layer: status and body mapping
- Registry: strategy selection

============================================================
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from chain_adapters.exceptions import ChainNotSupportedError, FetchError, RateLimitError
from chain_adapters.models import Chain, RangeUnit, ScanRange
from chain_adapters.providers import EvmLogAdapter, TronBlockAdapter, TronTokenFeedAdapter
from chain_adapters.registry import AdapterRegistry, create_adapter
from core.config import ChainSettings
from core.exceptions import ConfigurationError
from core.retry import RetryPolicy
from tests.factories import (
    EVM_SENDER,
    EVM_WALLET,
    TRON_WALLET,
    USDT_ETH,
    USDT_TRON,
    evm_block,
    evm_native_tx,
    evm_transfer_log,
    install_transport,
    tron_block,
    tron_event,
    tron_trc20_tx,
)


TRONGRID = "https://api.trongrid.io"
RPC = "https://rpc.example.org"

SECOND_TRON_TOKEN = "TXLAQ63Xg1NAzckPwKHvzw7CSEmLMEqcdj"
SECOND_EVM_TOKEN = "0x" + "ee" * 20


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def sleep():
    """Backoff sleeper that returns immediately."""
    return AsyncMock()


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, base_delay_seconds=1.0, max_delay_seconds=10.0)


def block_handler(missing=()):
    """Serve getblockbynum/getblockbylimitnext with one transfer per block."""
    def handler(method, url, params, body):
        if url.endswith("/wallet/getnowblock"):
            return tron_block(200, [])
        if url.endswith("/wallet/getblockbynum"):
            height = body["num"]
            if height in missing:
                return {}
            return tron_block(height, [tron_trc20_tx(f"{height:064x}", TRON_WALLET, height)])
        if url.endswith("/wallet/getblockbylimitnext"):
            return {"block": [
                tron_block(h, [tron_trc20_tx(f"{h:064x}", TRON_WALLET, h)])
                for h in range(body["startNum"], body["endNum"])
                if h not in missing
            ]}
        raise AssertionError(f"unexpected {url}")
    return handler


def _response(status=200, json_body=None, text="", headers=None, json_error=None):
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.text = AsyncMock(return_value=text)
    response.json = AsyncMock(return_value=json_body, side_effect=json_error)
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.closed = False
    session.request = MagicMock(return_value=ctx)
    return session


# ============================================================
# BLOCK STRATEGY TESTS
# ============================================================

class TestTronBlockAdapter:
    """Tests for full-block scanning."""

    @pytest.mark.asyncio
    async def test_fetch_range_in_order(self, sleep):
        """Test every block in (start, end] is fetched once, in height order."""
        adapter = TronBlockAdapter(TRONGRID, sleep=sleep)
        calls = install_transport(adapter, block_handler())

        batch = await adapter.fetch(ScanRange(100, 103), [USDT_TRON])

        assert [c[3]["num"] for c in calls] == [101, 102, 103]
        assert [t.block_height for t in batch.transfers] == [101, 102, 103]
        assert batch.confirmed_through == 103
        assert batch.fully_succeeded
        assert batch.request_count == 3

    @pytest.mark.asyncio
    async def test_stops_at_first_missing_block(self, sleep, policy):
        """Test a block that stays unavailable ends the batch and holds confirmation."""
        adapter = TronBlockAdapter(TRONGRID, retry_policy=policy, sleep=sleep)
        calls = install_transport(adapter, block_handler(missing={102}))

        batch = await adapter.fetch(ScanRange(100, 104), [USDT_TRON])

        assert batch.confirmed_through == 101
        assert batch.effective_confirmed == 101
        assert len(batch.failures) == 1
        assert batch.failures[0].attempts == 3
        assert 103 not in [c[3]["num"] for c in calls]
        assert [t.block_height for t in batch.transfers] == [101]
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_chunked_fetch(self, sleep):
        """Test getblockbylimitnext covers up to blocks_per_request blocks per call."""
        adapter = TronBlockAdapter(TRONGRID, blocks_per_request=10, sleep=sleep)
        calls = install_transport(adapter, block_handler())

        batch = await adapter.fetch(ScanRange(100, 115), [USDT_TRON])

        assert [(c[3]["startNum"], c[3]["endNum"]) for c in calls] == [(101, 111), (111, 116)]
        assert len(batch.transfers) == 15
        assert batch.confirmed_through == 115

    @pytest.mark.asyncio
    async def test_incomplete_chunk_fails(self, sleep, policy):
        """Test a chunk with a gap is a fetch failure, not a silent skip."""
        adapter = TronBlockAdapter(TRONGRID, retry_policy=policy, blocks_per_request=5, sleep=sleep)
        install_transport(adapter, block_handler(missing={103}))

        batch = await adapter.fetch(ScanRange(100, 105), [USDT_TRON])

        assert batch.confirmed_through == 100
        assert batch.transfers == []

    @pytest.mark.asyncio
    async def test_request_count_ignores_tracked_contracts(self, sleep):
        """Test block scans cost the same no matter how much is tracked."""
        one = TronBlockAdapter(TRONGRID, sleep=sleep)
        many = TronBlockAdapter(TRONGRID, sleep=sleep)
        install_transport(one, block_handler())
        install_transport(many, block_handler())

        a = await one.fetch(ScanRange(100, 110), [USDT_TRON])
        b = await many.fetch(ScanRange(100, 110), [USDT_TRON, SECOND_TRON_TOKEN, "native"])

        assert a.request_count == b.request_count == 10

    @pytest.mark.asyncio
    async def test_latest_position(self, sleep):
        """Test the head comes from getnowblock."""
        adapter = TronBlockAdapter(TRONGRID, sleep=sleep)
        install_transport(adapter, block_handler())

        assert await adapter.latest_position() == 200

    def test_api_key_header(self):
        """Test the TronGrid API key header is sent when configured."""
        adapter = TronBlockAdapter(TRONGRID, api_key="secret")
        assert adapter._get_default_headers()["TRON-PRO-API-KEY"] == "secret"
        assert "TRON-PRO-API-KEY" not in TronBlockAdapter(TRONGRID)._get_default_headers()


# ============================================================
# TOKEN STRATEGY TESTS
# ============================================================

class TestTronTokenFeedAdapter:
    """Tests for the TronGrid contract event feed."""

    @pytest.mark.asyncio
    async def test_follows_fingerprint_cursor(self, sleep):
        """Test pages are followed until no fingerprint is returned."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, sleep=sleep)

        def handler(method, url, params, body):
            if "fingerprint" not in params:
                return {"success": True, "data": [tron_event("01" * 32, TRON_WALLET, 1)], "meta": {"fingerprint": "next"}}
            return {"success": True, "data": [tron_event("02" * 32, TRON_WALLET, 2)], "meta": {}}

        calls = install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(1_000, 61_000, RangeUnit.TIMESTAMP_MS), [USDT_TRON])

        assert [t.tx_id for t in batch.transfers] == ["01" * 32, "02" * 32]
        assert len(calls) == 2
        assert calls[0][1] == f"{TRONGRID}/v1/contracts/{USDT_TRON}/events"
        assert calls[0][2]["min_block_timestamp"] == 1_001
        assert calls[0][2]["max_block_timestamp"] == 61_000
        assert calls[1][2]["fingerprint"] == "next"
        assert batch.effective_confirmed == 61_000

    @pytest.mark.asyncio
    async def test_one_failing_contract_does_not_abort_batch(self, sleep, policy):
        """Test a failing token is isolated and the range is held."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, retry_policy=policy, sleep=sleep)

        def handler(method, url, params, body):
            if SECOND_TRON_TOKEN in url:
                return FetchError("HTTP 503", status_code=503)
            return {"success": True, "data": [tron_event("03" * 32, TRON_WALLET, 3)], "meta": {}}

        install_transport(adapter, handler)
        batch = await adapter.fetch(
            ScanRange(0, 60_000, RangeUnit.TIMESTAMP_MS), [USDT_TRON, SECOND_TRON_TOKEN]
        )

        assert len(batch.transfers) == 1
        assert [o.unit for o in batch.failures] == [SECOND_TRON_TOKEN]
        assert batch.failures[0].attempts == 3
        assert batch.effective_confirmed == 0

    @pytest.mark.asyncio
    async def test_native_asset_skipped(self, sleep):
        """Test native TRX, which has no event feed, costs no request."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, sleep=sleep)
        calls = install_transport(adapter, lambda *a: {"success": True, "data": [], "meta": {}})

        batch = await adapter.fetch(ScanRange(0, 10, RangeUnit.TIMESTAMP_MS), ["native", USDT_TRON])

        assert len(calls) == 1
        assert batch.fully_succeeded

    @pytest.mark.asyncio
    async def test_unsuccessful_payload_is_failure(self, sleep, policy):
        """Test success=false bodies count as fetch failures."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, retry_policy=policy, sleep=sleep)
        install_transport(adapter, lambda *a: {"success": False, "error": "bad"})

        batch = await adapter.fetch(ScanRange(0, 10, RangeUnit.TIMESTAMP_MS), [USDT_TRON])

        assert not batch.fully_succeeded

    @pytest.mark.asyncio
    async def test_malformed_event_dropped(self, sleep):
        """Test an event with the wrong JSON shape is dropped and its page siblings kept."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, sleep=sleep)
        broken = tron_event("05" * 32, TRON_WALLET, 5)
        broken["result"] = "from,to,value"
        install_transport(adapter, lambda *a: {"success": True, "meta": {}, "data": [
            broken, ["Transfer"], tron_event("06" * 32, TRON_WALLET, 6),
        ]})

        batch = await adapter.fetch(ScanRange(0, 10, RangeUnit.TIMESTAMP_MS), [USDT_TRON])

        assert batch.fully_succeeded
        assert [t.tx_id for t in batch.transfers] == ["06" * 32]

    @pytest.mark.asyncio
    async def test_non_list_page_is_failure(self, sleep, policy):
        """Test a page whose data is not a list fails the contract instead of raising."""
        adapter = TronTokenFeedAdapter(Chain.TRON, TRONGRID, retry_policy=policy, sleep=sleep)
        install_transport(adapter, lambda *a: {"success": True, "data": "none", "meta": {}})

        batch = await adapter.fetch(ScanRange(0, 10, RangeUnit.TIMESTAMP_MS), [USDT_TRON])

        assert [o.unit for o in batch.failures] == [USDT_TRON]


# ============================================================
# EVM TESTS
# ============================================================

class TestEvmLogAdapter:
    """Tests for eth_getLogs scanning."""

    @pytest.mark.asyncio
    async def test_one_get_logs_per_contract(self, sleep):
        """Test each tracked contract costs exactly one call per range."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, sleep=sleep)

        def handler(method, url, params, body):
            assert body["method"] == "eth_getLogs"
            flt = body["params"][0]
            if flt["address"] == USDT_ETH:
                return {"jsonrpc": "2.0", "id": body["id"], "result": [
                    evm_transfer_log("0x" + "01" * 32, EVM_SENDER, EVM_WALLET, 5)
                ]}
            return {"jsonrpc": "2.0", "id": body["id"], "result": []}

        calls = install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(99, 149), [USDT_ETH, SECOND_EVM_TOKEN])

        assert len(calls) == 2
        assert calls[0][3]["params"][0]["fromBlock"] == hex(100)
        assert calls[0][3]["params"][0]["toBlock"] == hex(149)
        assert [t.to_address for t in batch.transfers] == [EVM_WALLET]
        assert batch.effective_confirmed == 149

    @pytest.mark.asyncio
    async def test_rpc_error_is_failure(self, sleep, policy):
        """Test JSON-RPC error objects become failed outcomes."""
        adapter = EvmLogAdapter(Chain.POLYGON, RPC, retry_policy=policy, sleep=sleep)
        install_transport(adapter, lambda m, u, p, b: {"id": b["id"], "error": {"code": -32005, "message": "limit"}})

        batch = await adapter.fetch(ScanRange(0, 10), [USDT_ETH])

        assert "limit" in batch.failures[0].reason
        assert batch.effective_confirmed == 0

    @pytest.mark.asyncio
    async def test_latest_position(self, sleep):
        """Test eth_blockNumber is parsed from hex."""
        adapter = EvmLogAdapter(Chain.BSC, RPC, sleep=sleep)
        install_transport(adapter, lambda m, u, p, b: {"id": b["id"], "result": "0x1b4"})

        assert await adapter.latest_position() == 436
        assert adapter.name == "bsc_rpc"

    @pytest.mark.asyncio
    async def test_malformed_log_dropped(self, sleep):
        """Test a log with the wrong JSON shape is dropped and the rest of the contract kept."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, sleep=sleep)
        install_transport(adapter, lambda m, u, p, b: {"id": b["id"], "result": [
            "0xdeadbeef",
            evm_transfer_log("0x" + "02" * 32, EVM_SENDER, EVM_WALLET, 9),
        ]})

        batch = await adapter.fetch(ScanRange(0, 10), [USDT_ETH])

        assert batch.fully_succeeded
        assert [t.raw_amount for t in batch.transfers] == [9]

    @pytest.mark.asyncio
    async def test_native_coin_scans_blocks(self, sleep):
        """Test a tracked native coin costs one eth_getBlockByNumber per block."""
        adapter = EvmLogAdapter(Chain.BSC, RPC, sleep=sleep)

        def handler(method, url, params, body):
            if body["method"] == "eth_getLogs":
                return {"id": body["id"], "result": []}
            height_hex, full = body["params"]
            assert body["method"] == "eth_getBlockByNumber" and full is True
            height = int(height_hex, 16)
            return {"id": body["id"], "result": evm_block(height, [
                evm_native_tx(f"0x{height:064x}", EVM_SENDER, EVM_WALLET, height),
            ])}

        calls = install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(10, 13), ["native", USDT_ETH])

        methods = [c[3]["method"] for c in calls]
        assert methods.count("eth_getLogs") == 1
        assert methods.count("eth_getBlockByNumber") == 3
        native = [t for t in batch.transfers if t.contract_address == "native"]
        assert [t.raw_amount for t in native] == [11, 12, 13]
        assert batch.effective_confirmed == 13

    @pytest.mark.asyncio
    async def test_native_scan_stops_at_missing_block(self, sleep, policy):
        """Test blocks before the first unavailable one are confirmed."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, retry_policy=policy, sleep=sleep)

        def handler(method, url, params, body):
            height = int(body["params"][0], 16)
            if height == 12:
                return {"id": body["id"], "result": None}
            return {"id": body["id"], "result": evm_block(height, [])}

        install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(10, 14), ["native"])

        assert [o.unit for o in batch.failures] == ["block 12"]
        assert batch.effective_confirmed == 11

    @pytest.mark.asyncio
    async def test_native_scan_held_by_failed_logs(self, sleep, policy):
        """Test a failed token contract holds the whole range even when blocks succeed."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, retry_policy=policy, sleep=sleep)

        def handler(method, url, params, body):
            if body["method"] == "eth_getLogs":
                return FetchError("HTTP 503", status_code=503)
            return {"id": body["id"], "result": evm_block(int(body["params"][0], 16), [])}

        install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(10, 12), ["native", USDT_ETH])

        assert [o.unit for o in batch.failures] == [USDT_ETH]
        assert batch.effective_confirmed == 10

    def test_api_key_header(self):
        """Test a configured key is sent as x-api-key and nothing is sent without one."""
        assert EvmLogAdapter(Chain.ETHEREUM, RPC, api_key="k-123")._get_default_headers()["x-api-key"] == "k-123"
        assert "x-api-key" not in EvmLogAdapter(Chain.ETHEREUM, RPC)._get_default_headers()


# ============================================================
# RETRY TESTS
# ============================================================

class TestRetry:
    """Tests for per-unit retry and backoff."""

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, sleep, policy):
        """Test a unit that fails once then succeeds is a success."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, retry_policy=policy, sleep=sleep)
        attempts = []

        def handler(method, url, params, body):
            attempts.append(1)
            if len(attempts) == 1:
                return FetchError("HTTP 502", status_code=502)
            return {"id": body["id"], "result": []}

        install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(0, 1), [USDT_ETH])

        assert batch.fully_succeeded
        assert batch.outcomes[0].attempts == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, sleep, policy):
        """Test 4xx responses fail immediately."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, retry_policy=policy, sleep=sleep)
        calls = install_transport(adapter, lambda *a: FetchError("HTTP 400", status_code=400))

        batch = await adapter.fetch(ScanRange(0, 1), [USDT_ETH])

        assert len(calls) == 1
        assert batch.outcomes[0].attempts == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, sleep, policy):
        """Test Retry-After stretches the backoff delay."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, retry_policy=policy, sleep=sleep)
        responses = [RateLimitError("slow down", retry_after_seconds=4)]

        def handler(method, url, params, body):
            return responses.pop(0) if responses else {"id": body["id"], "result": []}

        install_transport(adapter, handler)
        batch = await adapter.fetch(ScanRange(0, 1), [USDT_ETH])

        assert batch.fully_succeeded
        sleep.assert_awaited_once_with(4.0)

    @pytest.mark.asyncio
    async def test_timeout_is_fetch_failure(self, sleep):
        """Test a unit exceeding the timeout fails instead of hanging the cycle."""
        adapter = EvmLogAdapter(
            Chain.ETHEREUM, RPC, timeout=0.01,
            retry_policy=RetryPolicy(max_attempts=2, base_delay_seconds=0), sleep=sleep,
        )

        async def never(method, url, params=None, json_body=None):
            await asyncio.sleep(5)

        adapter._make_request = never
        batch = await adapter.fetch(ScanRange(0, 1), [USDT_ETH])

        assert not batch.fully_succeeded
        assert "Timed out" in batch.failures[0].reason
        assert batch.failures[0].attempts == 2


# ============================================================
# HTTP LAYER TESTS
# ============================================================

class TestMakeRequest:
    """Tests for status and body mapping."""

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        """Test 429 maps to RateLimitError with Retry-After."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, session=_response(429, headers={"Retry-After": "2"}))

        with pytest.raises(RateLimitError) as exc:
            await adapter._make_request("POST", RPC, json_body={})

        assert exc.value.retry_after_seconds == 2
        assert adapter.request_count == 1

    @pytest.mark.asyncio
    async def test_server_error(self):
        """Test 5xx maps to a retryable FetchError."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, session=_response(503, text="unavailable"))

        with pytest.raises(FetchError) as exc:
            await adapter._make_request("POST", RPC, json_body={})

        assert exc.value.status_code == 503
        assert not exc.value.is_client_error

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        """Test an unparseable body maps to FetchError."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, session=_response(200, json_error=ValueError("bad json")))

        with pytest.raises(FetchError, match="Malformed JSON"):
            await adapter._make_request("POST", RPC, json_body={})

    @pytest.mark.asyncio
    async def test_returns_json(self):
        """Test a 200 response returns the decoded body."""
        adapter = EvmLogAdapter(Chain.ETHEREUM, RPC, session=_response(200, json_body={"result": "0x1"}))

        assert await adapter._make_request("POST", RPC, json_body={}) == {"result": "0x1"}


# ============================================================
# REGISTRY TESTS
# ============================================================

class TestRegistry:
    """Tests for strategy selection."""

    def test_tron_block_strategy(self):
        """Test Tron with the block strategy builds the block adapter."""
        adapter = create_adapter(ChainSettings("tron", TRONGRID, "block", blocks_per_request=20))
        assert isinstance(adapter, TronBlockAdapter)
        assert adapter.range_unit == RangeUnit.HEIGHT

    def test_tron_token_strategy(self):
        """Test Tron with the token strategy builds the event feed adapter."""
        adapter = create_adapter(ChainSettings("tron", TRONGRID, "token"))
        assert isinstance(adapter, TronTokenFeedAdapter)
        assert adapter.range_unit == RangeUnit.TIMESTAMP_MS

    def test_evm_logs_strategy(self):
        """Test EVM chains use eth_getLogs."""
        adapter = create_adapter(ChainSettings("polygon", RPC, "logs"))
        assert isinstance(adapter, EvmLogAdapter)
        assert adapter.chain == Chain.POLYGON

    def test_strategy_mismatch_raises(self):
        """Test a strategy that does not apply to the chain is a configuration error."""
        with pytest.raises(ConfigurationError):
            create_adapter(ChainSettings("ethereum", RPC, "block"))

    def test_unknown_chain_raises(self):
        """Test unsupported chain names are configuration errors."""
        with pytest.raises(ConfigurationError):
            create_adapter(ChainSettings("solana", RPC, "logs"))

    def test_get_unregistered_chain(self):
        """Test looking up a chain with no adapter."""
        registry = AdapterRegistry()
        registry.register(create_adapter(ChainSettings("tron", TRONGRID, "block")))

        assert registry.chains() == [Chain.TRON]
        with pytest.raises(ChainNotSupportedError):
            registry.get(Chain.ETHEREUM)
