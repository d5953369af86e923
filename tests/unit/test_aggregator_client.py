"""
Unit tests for execution/aggregator_client.py.

All tests mock HTTP responses via aioresponses and the token resolver via
unittest.mock. Tests verify request construction, response validation,
chain-id guarding, transient/permanent error tagging, swap assembly, and
session lifecycle.
"""

from __future__ import annotations

import asyncio
import re
from decimal import Decimal
from unittest.mock import MagicMock, PropertyMock, patch

import aiohttp
import pytest
from aioresponses import aioresponses

from config.validate import ConfigurationError
from execution.aggregator_client import AggregatorError
from shared.types import ChainContext, QuoteInputToken, QuoteOutputToken, QuoteRequest
from tests.conftest import (
    DUSD_TOKEN,
    FLASH_MINT_LIQUIDATOR,
    ODOS_ROUTER,
    STANDARD_AGGREGATOR_CONFIG,
    WS_TOKEN,
)

# ---------------------------------------------------------------------------
# Test constants
# ---------------------------------------------------------------------------

QUOTE_URL = "https://api.odos.xyz/sor/quote/v2"
ASSEMBLE_URL = "https://api.odos.xyz/sor/assemble"

RE_QUOTE = re.compile(r"https://api\.odos\.xyz/sor/quote/v2")
RE_ASSEMBLE = re.compile(r"https://api\.odos\.xyz/sor/assemble")

SAMPLE_OUT_AMOUNT = 157 * 10**6


def _quote_response(out_amount: int = SAMPLE_OUT_AMOUNT, path_id: str = "abc") -> dict:
    return {
        "inTokens": [WS_TOKEN],
        "outTokens": [DUSD_TOKEN],
        "inAmounts": [str(78_750_000_000_000_000_000)],
        "outAmounts": [str(out_amount)],
        "gasEstimate": 350000,
        "pathId": path_id,
        "priceImpact": -0.12,
        "netOutValue": 156.8,
    }


def _assemble_response(data: str = "0xabcdef") -> dict:
    return {
        "transaction": {
            "to": ODOS_ROUTER,
            "data": data,
            "gas": 500000,
            "value": "0",
        },
        "simulation": None,
    }


def _make_client(resolver, expected_chain_id=146, agg_config=None):
    """Create an AggregatorClient with patched config and logger."""
    if agg_config is None:
        agg_config = STANDARD_AGGREGATOR_CONFIG

    with (
        patch("execution.aggregator_client.get_config") as mock_cfg,
        patch("execution.aggregator_client.setup_module_logger") as mock_logger,
    ):
        mock_loader = MagicMock()
        mock_loader.get_aggregator_config.return_value = agg_config
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from execution.aggregator_client import AggregatorClient

        return AggregatorClient(resolver, expected_chain_id=expected_chain_id)


@pytest.fixture
async def aggregator_client(mock_token_resolver):
    client = _make_client(mock_token_resolver)
    yield client
    await client.close()


def _sent_bodies(mocked) -> list[dict]:
    return [call.kwargs["json"] for calls in mocked.requests.values() for call in calls]


# ---------------------------------------------------------------------------
# A. Quote requests
# ---------------------------------------------------------------------------


class TestGetSwapQuote:

    async def test_returns_validated_quote(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response())
            quote = await aggregator_client.get_swap_quote(
                WS_TOKEN, DUSD_TOKEN, "78.75", Decimal("0.5"), chain_ctx
            )

        assert quote.path_id == "abc"
        assert quote.out_amount == SAMPLE_OUT_AMOUNT
        assert quote.out_tokens == [DUSD_TOKEN]

    async def test_request_body_uses_base_units(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response())
            await aggregator_client.get_swap_quote(
                WS_TOKEN, DUSD_TOKEN, "78.75", 0.5, chain_ctx, user_addr=FLASH_MINT_LIQUIDATOR
            )
            bodies = _sent_bodies(mocked)

        assert len(bodies) == 1
        body = bodies[0]
        assert body["chainId"] == 146
        assert body["inputTokens"] == [
            {"tokenAddress": WS_TOKEN, "amount": "78750000000000000000"}
        ]
        assert body["outputTokens"] == [{"tokenAddress": DUSD_TOKEN, "proportion": 1}]
        assert body["userAddr"] == FLASH_MINT_LIQUIDATOR
        assert body["slippageLimitPercent"] == 0.5

    async def test_truncates_amount_to_token_decimals(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response())
            await aggregator_client.get_swap_quote(
                DUSD_TOKEN, WS_TOKEN, "1.23456789", 0.5, chain_ctx
            )
            body = _sent_bodies(mocked)[0]

        assert body["inputTokens"][0]["amount"] == "1234567"

    async def test_invalid_amount_raises(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            with pytest.raises(AggregatorError, match="Invalid quote input amount"):
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "abc", 0.5, chain_ctx)
            assert len(mocked.requests) == 0

    async def test_malformed_response_raises(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload={"pathId": "abc"})
            with pytest.raises(AggregatorError, match="Missing required fields") as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is False

    async def test_empty_path_id_rejected(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response(path_id=""))
            with pytest.raises(AggregatorError):
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

    async def test_mismatched_out_lengths_rejected(self, aggregator_client, chain_ctx):
        payload = {**_quote_response(), "outAmounts": ["1", "2"]}
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=payload)
            with pytest.raises(AggregatorError):
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

    async def test_non_json_body_is_permanent(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, status=200, body="<html>oops</html>")
            with pytest.raises(AggregatorError, match="not JSON") as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is False


# ---------------------------------------------------------------------------
# B. Chain-id guard
# ---------------------------------------------------------------------------


class TestChainGuard:

    async def test_mismatch_raises_before_any_request(self, mock_token_resolver, mock_w3):
        client = _make_client(mock_token_resolver, expected_chain_id=146)
        ctx = ChainContext(w3=mock_w3, chain_id=1)

        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response())
            with pytest.raises(ConfigurationError, match="mismatch"):
                await client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, ctx)
            assert len(mocked.requests) == 0
        mock_token_resolver.get_decimals.assert_not_awaited()
        await client.close()

    async def test_prepared_request_for_other_chain_rejected(self, aggregator_client):
        request = QuoteRequest(
            chain_id=1,
            input_tokens=[QuoteInputToken(token_address=WS_TOKEN, amount="1")],
            output_tokens=[QuoteOutputToken(token_address=DUSD_TOKEN)],
            user_addr=FLASH_MINT_LIQUIDATOR,
            slippage_limit_percent=0.5,
        )
        with aioresponses() as mocked:
            with pytest.raises(ConfigurationError):
                await aggregator_client.get_quote(request)
            assert len(mocked.requests) == 0

    async def test_missing_chain_id_raises(self, aggregator_client, mock_w3):
        async def _no_chain():
            return 0

        type(mock_w3.eth).chain_id = PropertyMock(side_effect=lambda: _no_chain())
        ctx = ChainContext(w3=mock_w3, chain_id=None)

        with pytest.raises(ConfigurationError, match="ChainId not found"):
            await aggregator_client.check_chain(ctx)

    async def test_chain_id_lookup_failure_raises(self, aggregator_client, mock_w3):
        async def _boom():
            raise ConnectionError("rpc down")

        type(mock_w3.eth).chain_id = PropertyMock(side_effect=lambda: _boom())
        ctx = ChainContext(w3=mock_w3, chain_id=None)

        with pytest.raises(ConfigurationError, match="ChainId not found"):
            await aggregator_client.check_chain(ctx)

    async def test_resolves_chain_id_from_rpc(self, aggregator_client, mock_w3):
        async def _chain():
            return 146

        type(mock_w3.eth).chain_id = PropertyMock(side_effect=lambda: _chain())
        ctx = ChainContext(w3=mock_w3, chain_id=None)

        assert await aggregator_client.check_chain(ctx) == 146
        assert ctx.chain_id == 146

    async def test_unpinned_client_accepts_any_chain(self, mock_token_resolver, mock_w3):
        client = _make_client(mock_token_resolver, expected_chain_id=None)
        ctx = ChainContext(w3=mock_w3, chain_id=57054)

        assert await client.check_chain(ctx) == 57054


# ---------------------------------------------------------------------------
# C. Error classification
# ---------------------------------------------------------------------------


class TestErrorClassification:

    @pytest.mark.parametrize("status", [500, 502, 503, 429])
    async def test_server_errors_are_transient(self, aggregator_client, chain_ctx, status):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, status=status, body="unavailable")
            with pytest.raises(AggregatorError) as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is True
        assert exc_info.value.status == status

    @pytest.mark.parametrize("status", [400, 404, 422])
    async def test_client_errors_are_permanent(self, aggregator_client, chain_ctx, status):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, status=status, body='{"detail":"bad request"}')
            with pytest.raises(AggregatorError) as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is False
        assert exc_info.value.status == status

    async def test_timeout_is_transient(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, exception=asyncio.TimeoutError())
            with pytest.raises(AggregatorError, match="timed out") as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is True

    async def test_connection_error_is_transient(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, exception=aiohttp.ClientConnectionError("refused"))
            with pytest.raises(AggregatorError) as exc_info:
                await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert exc_info.value.transient is True


# ---------------------------------------------------------------------------
# D. Swap assembly
# ---------------------------------------------------------------------------


class TestAssembleSwap:

    async def test_parses_transaction(self, aggregator_client):
        with aioresponses() as mocked:
            mocked.post(RE_ASSEMBLE, payload=_assemble_response())
            swap = await aggregator_client.assemble_swap("abc", FLASH_MINT_LIQUIDATOR)
            body = _sent_bodies(mocked)[0]

        assert swap.router_address.lower() == ODOS_ROUTER.lower()
        assert swap.calldata == bytes.fromhex("abcdef")
        assert swap.gas == 500000
        assert body == {"userAddr": FLASH_MINT_LIQUIDATOR, "pathId": "abc", "simulate": False}

    async def test_missing_transaction_raises(self, aggregator_client):
        with aioresponses() as mocked:
            mocked.post(RE_ASSEMBLE, payload={"simulation": None})
            with pytest.raises(AggregatorError, match="transaction.to/data"):
                await aggregator_client.assemble_swap("abc", FLASH_MINT_LIQUIDATOR)

    async def test_invalid_calldata_raises(self, aggregator_client):
        with aioresponses() as mocked:
            mocked.post(RE_ASSEMBLE, payload=_assemble_response(data="0xzz"))
            with pytest.raises(AggregatorError, match="Invalid calldata"):
                await aggregator_client.assemble_swap("abc", FLASH_MINT_LIQUIDATOR)

    async def test_expired_path_is_permanent(self, aggregator_client):
        with aioresponses() as mocked:
            mocked.post(RE_ASSEMBLE, status=400, body='{"detail":"Path not found"}')
            with pytest.raises(AggregatorError) as exc_info:
                await aggregator_client.assemble_swap("stale", FLASH_MINT_LIQUIDATOR)

        assert exc_info.value.transient is False


# ---------------------------------------------------------------------------
# E. Session lifecycle
# ---------------------------------------------------------------------------


class TestSessionLifecycle:

    async def test_close_closes_session(self, aggregator_client, chain_ctx):
        with aioresponses() as mocked:
            mocked.post(RE_QUOTE, payload=_quote_response())
            await aggregator_client.get_swap_quote(WS_TOKEN, DUSD_TOKEN, "1", 0.5, chain_ctx)

        assert aggregator_client._session is not None
        await aggregator_client.close()
        assert aggregator_client._session is None

    async def test_close_without_session_is_noop(self, mock_token_resolver):
        client = _make_client(mock_token_resolver)
        await client.close()
        assert client._session is None
