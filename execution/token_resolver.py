"""
ERC-20 metadata resolver.

Reads ``decimals()`` and ``symbol()`` and caches them for the process
lifetime, keyed by (chain id, lowercase address). Token metadata is
immutable for a deployed token, so the cache is never invalidated.

Usage:
    resolver = TokenResolver(ctx)
    decimals = await resolver.get_decimals(token_address)
"""

from __future__ import annotations

import asyncio
from typing import Any

from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from execution.pool_client import ContractCallError
from shared.constants import DEFAULT_RPC_CALL_TIMEOUT_SECONDS
from shared.types import ChainContext, TokenInfo


class TokenResolver:
    """Cached ERC-20 decimals / symbol lookups over a shared ChainContext."""

    def __init__(self, ctx: ChainContext) -> None:
        self._ctx = ctx
        cfg = get_config()
        self._erc20_abi = cfg.get_abi("erc20")
        self._call_timeout: float = (
            cfg.get_timing_config()
            .get("rpc", {})
            .get("call_timeout_seconds", DEFAULT_RPC_CALL_TIMEOUT_SECONDS)
        )

        self._decimals: dict[tuple[int | None, str], int] = {}
        self._infos: dict[tuple[int | None, str], TokenInfo] = {}

        self._logger = setup_module_logger(
            "token_resolver", "token_resolver.log", module_folder="Token_Resolver_Logs"
        )

    async def get_decimals(self, token_address: str) -> int:
        """Return ``decimals()`` for ``token_address``. Raises ContractCallError."""
        key = await self._cache_key(token_address)
        cached = self._decimals.get(key)
        if cached is not None:
            return cached

        contract = self._contract(token_address)
        try:
            decimals = int(await self._call(contract.functions.decimals()))
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("decimals() failed for %s: %s", token_address, e)
            raise ContractCallError(f"decimals() failed for {token_address}: {e}") from e

        self._decimals[key] = decimals
        self._logger.debug("Resolved decimals for %s: %d", token_address, decimals)
        return decimals

    async def get_token_info(self, token_address: str) -> TokenInfo:
        """Return address, symbol and decimals for ``token_address``."""
        key = await self._cache_key(token_address)
        cached = self._infos.get(key)
        if cached is not None:
            return cached

        decimals = await self.get_decimals(token_address)
        contract = self._contract(token_address)
        try:
            symbol = await self._call(contract.functions.symbol())
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("symbol() failed for %s: %s", token_address, e)
            raise ContractCallError(f"symbol() failed for {token_address}: {e}") from e

        if isinstance(symbol, bytes):
            # Some legacy tokens return bytes32
            symbol = symbol.rstrip(b"\x00").decode("utf-8", errors="replace")

        info = TokenInfo(
            address=Web3.to_checksum_address(token_address),
            symbol=str(symbol),
            decimals=decimals,
        )
        self._infos[key] = info
        return info

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _cache_key(self, token_address: str) -> tuple[int | None, str]:
        return (await self._ctx.resolve_chain_id(), token_address.lower())

    def _contract(self, token_address: str) -> Any:
        try:
            checksum = Web3.to_checksum_address(token_address)
        except ValueError as e:
            raise ContractCallError(f"Invalid token address: {token_address}") from e
        return self._ctx.w3.eth.contract(address=checksum, abi=self._erc20_abi)

    async def _call(self, fn: Any) -> Any:
        try:
            return await asyncio.wait_for(fn.call(), timeout=self._call_timeout)
        except asyncio.TimeoutError as e:
            raise ContractCallError(f"RPC call timed out after {self._call_timeout}s") from e
