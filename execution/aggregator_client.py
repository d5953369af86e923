"""
Odos smart-order-router client for the dLEND Odos Liquidation Bot.

Requests swap quotes from ``/sor/quote/v2`` and assembles router calldata via
``/sor/assemble``. Responses are validated against a typed schema at this
boundary; every failure surfaces as ``AggregatorError`` tagged transient or
permanent so callers can decide whether to retry.

Usage:
    client = AggregatorClient(token_resolver, expected_chain_id=146)
    quote = await client.get_swap_quote(collateral, debt, "100", 0.5, ctx)
    swap = await client.assemble_swap(quote.path_id, liquidator_address)
    await client.close()
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any, cast

import aiohttp
from pydantic import ValidationError
from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from config.validate import ConfigurationError
from shared.constants import (
    DEFAULT_QUOTE_TIMEOUT_SECONDS,
    ODOS_ASSEMBLE_PATH,
    ODOS_BASE_URL,
    ODOS_QUOTE_PATH,
    QUOTE_PLACEHOLDER_USER,
)
from shared.types import (
    AssembledSwap,
    ChainContext,
    QuoteInputToken,
    QuoteOutputToken,
    QuoteRequest,
    QuoteResponse,
)
from shared.units import parse_units

if TYPE_CHECKING:
    from execution.token_resolver import TokenResolver


class AggregatorError(Exception):
    """
    Raised when a quote or assemble call fails.

    ``transient`` is True for failures worth retrying (5xx, 429, timeouts,
    connection errors) and False for permanent ones (4xx, malformed bodies).
    """

    def __init__(self, message: str, transient: bool = False, status: int | None = None) -> None:
        super().__init__(message)
        self.transient = transient
        self.status = status


class AggregatorClient:
    """
    Async Odos client.

    One quote per call, no internal retries: a stale quote may need a fresh
    evaluation rather than a blind resend, so retry policy stays with the
    caller.
    """

    def __init__(
        self,
        token_resolver: TokenResolver,
        expected_chain_id: int | None = None,
    ) -> None:
        self._token_resolver = token_resolver
        self._expected_chain_id = expected_chain_id

        agg_cfg = get_config().get_aggregator_config()
        self._base_url: str = str(agg_cfg.get("base_url", ODOS_BASE_URL)).rstrip("/")
        self._quote_timeout: float = agg_cfg.get(
            "quote_timeout_seconds", DEFAULT_QUOTE_TIMEOUT_SECONDS
        )
        self._assemble_timeout: float = agg_cfg.get(
            "assemble_timeout_seconds", self._quote_timeout
        )

        # Lazy-init aiohttp session
        self._session: aiohttp.ClientSession | None = None

        self._logger = setup_module_logger(
            "aggregator", "aggregator.log", module_folder="Aggregator_Logs"
        )

    @property
    def expected_chain_id(self) -> int | None:
        return self._expected_chain_id

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def check_chain(self, ctx: ChainContext) -> int:
        """
        Resolve the active chain id and check it against the expected one.

        Raises ``ConfigurationError`` when the chain id is unavailable or
        differs from the configured chain.
        """
        try:
            chain_id = await ctx.resolve_chain_id()
        except Exception as e:
            raise ConfigurationError(f"ChainId not found: {e}") from e
        if not chain_id:
            raise ConfigurationError("ChainId not found")
        self._check_chain_id(chain_id)
        return chain_id

    async def get_swap_quote(
        self,
        input_token: str,
        output_token: str,
        input_amount_human: str | Decimal,
        slippage_limit_percent: float | Decimal,
        ctx: ChainContext,
        user_addr: str = QUOTE_PLACEHOLDER_USER,
    ) -> QuoteResponse:
        """
        Quote selling ``input_amount_human`` of ``input_token`` for ``output_token``.

        The amount is converted to base units with the token's on-chain
        decimals (truncating). Raises ``ConfigurationError`` for chain-id
        problems and ``AggregatorError`` for everything the API does wrong.
        """
        chain_id = await self.check_chain(ctx)

        decimals = await self._token_resolver.get_decimals(input_token)
        try:
            amount = parse_units(input_amount_human, decimals)
        except ValueError as e:
            raise AggregatorError(f"Invalid quote input amount: {e}") from e

        request = QuoteRequest(
            chain_id=chain_id,
            input_tokens=[QuoteInputToken(token_address=input_token, amount=str(amount))],
            output_tokens=[QuoteOutputToken(token_address=output_token, proportion=1)],
            user_addr=user_addr,
            slippage_limit_percent=float(slippage_limit_percent),
        )
        return await self.get_quote(request)

    async def get_quote(self, request: QuoteRequest) -> QuoteResponse:
        """POST a prepared request to the quote endpoint and validate the body."""
        self._check_chain_id(request.chain_id)

        data = await self._post(
            f"{self._base_url}{ODOS_QUOTE_PATH}", request.to_wire(), self._quote_timeout
        )
        try:
            quote = QuoteResponse.model_validate(data)
        except ValidationError as e:
            self._logger.error("Malformed quote response: %s", e)
            raise AggregatorError(
                f"Invalid response from Odos API: Missing required fields "
                f"(pathId/outTokens/outAmounts): {e.error_count()} validation error(s)"
            ) from e

        self._logger.info(
            "Quote: chain=%d in=%s out=%s amount_in=%s amount_out=%d path=%s",
            request.chain_id,
            request.input_tokens[0].token_address,
            quote.out_tokens[0],
            request.input_tokens[0].amount,
            quote.out_amount,
            quote.path_id,
        )
        return quote

    async def assemble_swap(self, path_id: str, user_addr: str) -> AssembledSwap:
        """Turn a quoted ``path_id`` into router calldata executable by ``user_addr``."""
        body = {
            "userAddr": Web3.to_checksum_address(user_addr),
            "pathId": path_id,
            "simulate": False,
        }
        data = await self._post(
            f"{self._base_url}{ODOS_ASSEMBLE_PATH}", body, self._assemble_timeout
        )

        tx = data.get("transaction") if isinstance(data, dict) else None
        if not isinstance(tx, dict) or not tx.get("to") or not tx.get("data"):
            self._logger.error("Malformed assemble response for path %s: %s", path_id, data)
            raise AggregatorError(
                "Invalid response from Odos API: Missing required fields (transaction.to/data)"
            )
        try:
            calldata = bytes.fromhex(str(tx["data"]).removeprefix("0x"))
        except ValueError as e:
            raise AggregatorError(f"Invalid calldata in assemble response: {e}") from e

        swap = AssembledSwap(
            router_address=Web3.to_checksum_address(tx["to"]),
            calldata=calldata,
            gas=max(int(tx.get("gas") or 0), 0),
        )
        self._logger.info(
            "Assembled path %s: router=%s calldata=%d bytes",
            path_id,
            swap.router_address,
            len(swap.calldata),
        )
        return swap

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    async def _post(self, url: str, json_data: dict[str, Any], timeout_seconds: float) -> Any:
        """POST with timeout; maps transport and HTTP failures onto AggregatorError."""
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        try:
            async with session.post(url, json=json_data, timeout=timeout) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    transient = resp.status >= 500 or resp.status == 429
                    self._logger.warning(
                        "Odos HTTP %d from %s: %s", resp.status, url, text[:200]
                    )
                    raise AggregatorError(
                        f"Odos API error {resp.status}: {text[:200]}",
                        transient=transient,
                        status=resp.status,
                    )
                try:
                    return cast(Any, await resp.json(content_type=None))
                except ValueError as e:
                    raise AggregatorError(
                        f"Invalid response from Odos API: body is not JSON ({e})",
                        status=resp.status,
                    ) from e
        except AggregatorError:
            raise
        except asyncio.TimeoutError as e:
            self._logger.warning("Odos request to %s timed out after %ss", url, timeout_seconds)
            raise AggregatorError(
                f"Odos request timed out after {timeout_seconds}s", transient=True
            ) from e
        except aiohttp.ClientError as e:
            self._logger.warning("Odos request to %s failed: %s", url, e)
            raise AggregatorError(f"Odos request failed: {e}", transient=True) from e

    def _check_chain_id(self, chain_id: int) -> None:
        if self._expected_chain_id is not None and chain_id != self._expected_chain_id:
            raise ConfigurationError(
                f"ChainId mismatch: request for {chain_id}, "
                f"client configured for {self._expected_chain_id}"
            )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Lazy-init aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session
