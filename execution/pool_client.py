"""
dLEND pool client: thin read wrapper over the lending market contracts.

Reads on-chain state (user positions, reserve data, oracle prices) via async
calls against the Pool, PoolDataProvider and price oracle resolved from the
PoolAddressesProvider. No transaction submission; that is handled by
TxSubmitter.

Usage:
    from execution.pool_client import PoolClient

    client = await PoolClient.from_addresses_provider(ctx, provider_address)
    position = await client.get_borrower_position(user_address)
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import BPS, DEFAULT_RPC_CALL_TIMEOUT_SECONDS, WAD
from shared.types import (
    BorrowerPosition,
    ChainContext,
    ReserveConfiguration,
    UserAccountData,
    UserReserveData,
)
from shared.units import format_units


class ContractCallError(Exception):
    """Raised when a read call against a contract reverts or times out."""


class PoolClient:
    """
    Async read wrapper for the dLEND Pool, PoolDataProvider and oracle.

    Accepts a ChainContext via dependency injection so the same connection
    can be shared across clients. Every read is bounded by the configured
    RPC call timeout and surfaces failures as ``ContractCallError``.
    """

    def __init__(
        self,
        ctx: ChainContext,
        pool_address: str,
        data_provider_address: str,
        oracle_address: str,
    ) -> None:
        self._ctx = ctx
        w3 = ctx.w3
        cfg = get_config()

        self._pool = w3.eth.contract(
            address=Web3.to_checksum_address(pool_address),
            abi=cfg.get_abi("pool"),
        )
        self._data_provider = w3.eth.contract(
            address=Web3.to_checksum_address(data_provider_address),
            abi=cfg.get_abi("pool_data_provider"),
        )
        self._oracle = w3.eth.contract(
            address=Web3.to_checksum_address(oracle_address),
            abi=cfg.get_abi("price_oracle"),
        )

        rpc_timing = cfg.get_timing_config().get("rpc", {})
        self._call_timeout: float = rpc_timing.get(
            "call_timeout_seconds", DEFAULT_RPC_CALL_TIMEOUT_SECONDS
        )

        self._base_currency_unit: Decimal | None = None
        self._logger = setup_module_logger(
            "pool_client", "pool_client.log", module_folder="Pool_Client_Logs"
        )

    @classmethod
    async def from_addresses_provider(
        cls, ctx: ChainContext, provider_address: str
    ) -> PoolClient:
        """Resolve Pool, PoolDataProvider and oracle from the addresses provider."""
        cfg = get_config()
        provider = ctx.w3.eth.contract(
            address=Web3.to_checksum_address(provider_address),
            abi=cfg.get_abi("pool_addresses_provider"),
        )
        try:
            pool_address = await provider.functions.getPool().call()
            data_provider_address = await provider.functions.getPoolDataProvider().call()
            oracle_address = await provider.functions.getPriceOracle().call()
        except Exception as e:
            raise ContractCallError(
                f"PoolAddressesProvider lookup failed for {provider_address}: {e}"
            ) from e
        return cls(ctx, pool_address, data_provider_address, oracle_address)

    # ------------------------------------------------------------------
    # Read operations (async RPC calls)
    # ------------------------------------------------------------------

    async def get_user_account_data(self, user: str) -> UserAccountData:
        """
        Query the Pool for a user's aggregate position data.

        Values are converted from base-currency units / basis points / WAD.
        """
        try:
            checksum = Web3.to_checksum_address(user)
            result = await self._call(self._pool.functions.getUserAccountData(checksum))
            unit = await self.get_base_currency_unit()
            return UserAccountData(
                total_collateral_usd=Decimal(result[0]) / unit,
                total_debt_usd=Decimal(result[1]) / unit,
                available_borrow_usd=Decimal(result[2]) / unit,
                current_liquidation_threshold=Decimal(result[3]) / BPS,
                ltv=Decimal(result[4]) / BPS,
                health_factor=Decimal(result[5]) / WAD,
            )
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get user account data for %s: %s", user, e)
            raise ContractCallError(f"getUserAccountData failed for {user}: {e}") from e

    async def get_health_factor(self, user: str) -> Decimal:
        account = await self.get_user_account_data(user)
        return account.health_factor

    async def get_reserves_list(self) -> list[str]:
        try:
            reserves = await self._call(self._pool.functions.getReservesList())
            return [Web3.to_checksum_address(r) for r in reserves]
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get reserves list: %s", e)
            raise ContractCallError(f"getReservesList failed: {e}") from e

    async def get_user_reserve_data(self, asset: str, user: str) -> UserReserveData:
        """
        PoolDataProvider.getUserReserveData → 9 flat values.

        [0] aToken balance, [1] stable debt, [2] variable debt,
        [8] usageAsCollateralEnabled.
        """
        try:
            result = await self._call(
                self._data_provider.functions.getUserReserveData(
                    Web3.to_checksum_address(asset), Web3.to_checksum_address(user)
                )
            )
            return UserReserveData(
                current_atoken_balance=int(result[0]),
                current_stable_debt=int(result[1]),
                current_variable_debt=int(result[2]),
                usage_as_collateral_enabled=bool(result[8]),
            )
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get user reserve data %s/%s: %s", asset, user, e)
            raise ContractCallError(f"getUserReserveData failed for {asset}: {e}") from e

    async def get_reserve_configuration(self, asset: str) -> ReserveConfiguration:
        """PoolDataProvider.getReserveConfigurationData → 10 flat values (bps-scaled)."""
        try:
            result = await self._call(
                self._data_provider.functions.getReserveConfigurationData(
                    Web3.to_checksum_address(asset)
                )
            )
            return ReserveConfiguration(
                decimals=int(result[0]),
                ltv=Decimal(result[1]) / BPS,
                liquidation_threshold=Decimal(result[2]) / BPS,
                liquidation_bonus=Decimal(result[3]) / BPS,
                usage_as_collateral_enabled=bool(result[5]),
            )
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get reserve configuration for %s: %s", asset, e)
            raise ContractCallError(
                f"getReserveConfigurationData failed for {asset}: {e}"
            ) from e

    async def get_base_currency_unit(self) -> Decimal:
        """Oracle BASE_CURRENCY_UNIT (1e8 for USD feeds). Cached."""
        if self._base_currency_unit is not None:
            return self._base_currency_unit
        try:
            raw = await self._call(self._oracle.functions.BASE_CURRENCY_UNIT())
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get base currency unit: %s", e)
            raise ContractCallError(f"BASE_CURRENCY_UNIT failed: {e}") from e
        self._base_currency_unit = Decimal(raw)
        return self._base_currency_unit

    async def get_asset_price(self, asset: str) -> Decimal:
        """Get asset price in USD from the pool oracle."""
        try:
            checksum = Web3.to_checksum_address(asset)
            raw_price = await self._call(self._oracle.functions.getAssetPrice(checksum))
            price = Decimal(raw_price) / await self.get_base_currency_unit()
            self._logger.debug("Asset price for %s: $%s", asset, price)
            return price
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get asset price for %s: %s", asset, e)
            raise ContractCallError(f"getAssetPrice failed for {asset}: {e}") from e

    async def get_assets_prices(self, assets: list[str]) -> list[Decimal]:
        """Get multiple asset prices in a single batched oracle call."""
        try:
            checksums = [Web3.to_checksum_address(a) for a in assets]
            raw_prices = await self._call(self._oracle.functions.getAssetsPrices(checksums))
            unit = await self.get_base_currency_unit()
            return [Decimal(p) / unit for p in raw_prices]
        except ContractCallError:
            raise
        except Exception as e:
            self._logger.error("Failed to get assets prices: %s", e)
            raise ContractCallError(f"getAssetsPrices failed: {e}") from e

    # ------------------------------------------------------------------
    # Position assembly
    # ------------------------------------------------------------------

    async def get_borrower_position(self, user: str) -> BorrowerPosition:
        """
        Read a fresh position for ``user``.

        Selects the collateral-enabled reserve with the largest USD value and
        the debt reserve with the largest USD value. Either side is reported
        with an empty token address and zero amount when absent.
        """
        account = await self.get_user_account_data(user)
        reserves = await self.get_reserves_list()

        holdings: list[tuple[str, UserReserveData, ReserveConfiguration]] = []
        for asset in reserves:
            reserve_data = await self.get_user_reserve_data(asset, user)
            if reserve_data.current_atoken_balance == 0 and reserve_data.total_debt == 0:
                continue
            config = await self.get_reserve_configuration(asset)
            holdings.append((asset, reserve_data, config))

        prices: dict[str, Decimal] = {}
        if holdings:
            assets = [h[0] for h in holdings]
            prices = dict(zip(assets, await self.get_assets_prices(assets)))

        best_collateral: tuple[Decimal, str, int, ReserveConfiguration] | None = None
        best_debt: tuple[Decimal, str, int] | None = None
        for asset, reserve_data, config in holdings:
            price = prices[asset]
            if reserve_data.current_atoken_balance > 0 and reserve_data.usage_as_collateral_enabled:
                value = format_units(reserve_data.current_atoken_balance, config.decimals) * price
                if best_collateral is None or value > best_collateral[0]:
                    best_collateral = (value, asset, reserve_data.current_atoken_balance, config)
            if reserve_data.total_debt > 0:
                value = format_units(reserve_data.total_debt, config.decimals) * price
                if best_debt is None or value > best_debt[0]:
                    best_debt = (value, asset, reserve_data.total_debt)

        collateral_token, collateral_amount = "", 0
        collateral_price = Decimal("0")
        liquidation_bonus = Decimal("1")
        if best_collateral is not None:
            _, collateral_token, collateral_amount, collateral_config = best_collateral
            collateral_price = prices[collateral_token]
            liquidation_bonus = collateral_config.liquidation_bonus

        debt_token, debt_amount = "", 0
        debt_price = Decimal("0")
        if best_debt is not None:
            _, debt_token, debt_amount = best_debt
            debt_price = prices[debt_token]

        position = BorrowerPosition(
            address=Web3.to_checksum_address(user),
            health_factor=account.health_factor,
            collateral_token=collateral_token,
            debt_token=debt_token,
            collateral_amount=collateral_amount,
            debt_amount=debt_amount,
            collateral_price_usd=collateral_price,
            debt_price_usd=debt_price,
            liquidation_bonus=liquidation_bonus,
        )
        self._logger.debug(
            "Position %s: hf=%s collateral=%s(%d) debt=%s(%d)",
            position.address,
            position.health_factor,
            collateral_token,
            collateral_amount,
            debt_token,
            debt_amount,
        )
        return position

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call(self, fn: Any) -> Any:
        try:
            return await asyncio.wait_for(fn.call(), timeout=self._call_timeout)
        except asyncio.TimeoutError as e:
            raise ContractCallError(f"RPC call timed out after {self._call_timeout}s") from e
