"""
Unit tests for execution/pool_client.py.

Pool, PoolDataProvider and oracle contracts are mocked. Tests verify unit
conversion, error wrapping and borrower position assembly.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from execution.pool_client import ContractCallError
from tests.conftest import (
    DUSD_TOKEN,
    SAMPLE_BORROWER,
    STANDARD_TIMING_CONFIG,
    USDCE_TOKEN,
    WS_TOKEN,
)

POOL = "0x4444444444444444444444444444444444444444"
DATA_PROVIDER = "0x5555555555555555555555555555555555555555"
ORACLE = "0x6666666666666666666666666666666666666666"


def _fn(value=None, side_effect=None):
    """A bound contract function whose ``.call()`` resolves to ``value``."""
    fn = MagicMock()
    fn.call = AsyncMock(return_value=value, side_effect=side_effect)
    return fn


@pytest.fixture
def contracts(mock_w3):
    by_abi = {"pool": MagicMock(), "pool_data_provider": MagicMock(), "price_oracle": MagicMock()}
    by_abi["pool"].address = POOL
    mock_w3.eth.contract.side_effect = lambda address, abi: by_abi[abi]
    by_abi["price_oracle"].functions.BASE_CURRENCY_UNIT.return_value = _fn(10**8)
    return by_abi


def _make_pool_client(ctx, timing_config=None):
    """Create a PoolClient with patched config and logger."""
    with (
        patch("execution.pool_client.get_config") as mock_cfg,
        patch("execution.pool_client.setup_module_logger") as mock_logger,
    ):
        mock_loader = MagicMock()
        mock_loader.get_abi.side_effect = lambda name: name
        mock_loader.get_timing_config.return_value = timing_config or STANDARD_TIMING_CONFIG
        mock_cfg.return_value = mock_loader
        mock_logger.return_value = MagicMock()

        from execution.pool_client import PoolClient

        return PoolClient(ctx, POOL, DATA_PROVIDER, ORACLE)


def _account_data(hf_wad: int) -> tuple:
    return (1000 * 10**8, 500 * 10**8, 100 * 10**8, 8250, 8000, hf_wad)


def _user_reserve(atoken: int = 0, variable_debt: int = 0, collateral_enabled: bool = True) -> tuple:
    return (atoken, 0, variable_debt, 0, 0, 0, 0, 0, collateral_enabled)


def _reserve_config(decimals: int, bonus_bps: int = 10500) -> tuple:
    return (decimals, 7500, 8000, bonus_bps, 1000, True, True, False, True, False)


def _wire_positions(contracts, reserves: dict[str, tuple], configs: dict[str, tuple], prices: dict[str, int]):
    """Register reserve list, per-asset user data, configs and prices."""
    pool = contracts["pool"].functions
    provider = contracts["pool_data_provider"].functions
    oracle = contracts["price_oracle"].functions

    pool.getReservesList.return_value = _fn(list(reserves))
    provider.getUserReserveData.side_effect = lambda asset, user: _fn(reserves[_key(reserves, asset)])
    provider.getReserveConfigurationData.side_effect = lambda asset: _fn(configs[_key(configs, asset)])
    oracle.getAssetsPrices.side_effect = lambda assets: _fn([prices[_key(prices, a)] for a in assets])


def _key(mapping: dict, address: str) -> str:
    return next(k for k in mapping if k.lower() == address.lower())


# ---------------------------------------------------------------------------
# Account data
# ---------------------------------------------------------------------------


class TestAccountData:

    async def test_converts_units(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            _account_data(95 * 10**16)
        )
        client = _make_pool_client(chain_ctx)

        account = await client.get_user_account_data(SAMPLE_BORROWER)

        assert account.total_collateral_usd == Decimal("1000")
        assert account.total_debt_usd == Decimal("500")
        assert account.current_liquidation_threshold == Decimal("0.825")
        assert account.ltv == Decimal("0.8")
        assert account.health_factor == Decimal("0.95")

    async def test_health_factor(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            _account_data(12 * 10**17)
        )
        client = _make_pool_client(chain_ctx)

        assert await client.get_health_factor(SAMPLE_BORROWER) == Decimal("1.2")

    async def test_revert_raises_contract_call_error(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            side_effect=Exception("execution reverted")
        )
        client = _make_pool_client(chain_ctx)

        with pytest.raises(ContractCallError, match="getUserAccountData"):
            await client.get_user_account_data(SAMPLE_BORROWER)

    async def test_timeout_raises_contract_call_error(self, chain_ctx, contracts):
        async def _hang():
            await asyncio.sleep(1)

        contracts["pool"].functions.getUserAccountData.return_value = _fn(side_effect=_hang)
        client = _make_pool_client(
            chain_ctx, timing_config={"rpc": {"call_timeout_seconds": 0.01}}
        )

        with pytest.raises(ContractCallError, match="timed out"):
            await client.get_user_account_data(SAMPLE_BORROWER)

    async def test_base_currency_unit_is_cached(self, chain_ctx, contracts):
        oracle_fn = contracts["price_oracle"].functions.BASE_CURRENCY_UNIT.return_value
        contracts["price_oracle"].functions.getAssetPrice.return_value = _fn(2 * 10**8)
        client = _make_pool_client(chain_ctx)

        assert await client.get_asset_price(WS_TOKEN) == Decimal("2")
        assert await client.get_asset_price(WS_TOKEN) == Decimal("2")
        assert oracle_fn.call.await_count == 1


class TestAddressesProvider:

    async def test_resolves_pool_contracts(self, chain_ctx, mock_w3):
        provider = MagicMock()
        provider.functions.getPool.return_value = _fn(POOL)
        provider.functions.getPoolDataProvider.return_value = _fn(DATA_PROVIDER)
        provider.functions.getPriceOracle.return_value = _fn(ORACLE)
        created = []

        def _contract(address, abi):
            created.append((address, abi))
            return provider if abi == "pool_addresses_provider" else MagicMock()

        mock_w3.eth.contract.side_effect = _contract

        with (
            patch("execution.pool_client.get_config") as mock_cfg,
            patch("execution.pool_client.setup_module_logger"),
        ):
            mock_loader = MagicMock()
            mock_loader.get_abi.side_effect = lambda name: name
            mock_loader.get_timing_config.return_value = STANDARD_TIMING_CONFIG
            mock_cfg.return_value = mock_loader

            from execution.pool_client import PoolClient

            await PoolClient.from_addresses_provider(chain_ctx, "0x" + "33" * 20)

        assert [abi for _, abi in created] == [
            "pool_addresses_provider",
            "pool",
            "pool_data_provider",
            "price_oracle",
        ]
        assert created[1][0] == POOL

    async def test_lookup_failure_raises(self, chain_ctx, mock_w3):
        provider = MagicMock()
        provider.functions.getPool.return_value = _fn(side_effect=Exception("no code"))
        mock_w3.eth.contract.return_value = provider

        with (
            patch("execution.pool_client.get_config") as mock_cfg,
            patch("execution.pool_client.setup_module_logger"),
        ):
            mock_cfg.return_value = MagicMock()

            from execution.pool_client import PoolClient

            with pytest.raises(ContractCallError, match="PoolAddressesProvider"):
                await PoolClient.from_addresses_provider(chain_ctx, "0x" + "33" * 20)


# ---------------------------------------------------------------------------
# Borrower position
# ---------------------------------------------------------------------------


class TestBorrowerPosition:

    async def test_selects_largest_collateral_and_debt(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            _account_data(95 * 10**16)
        )
        _wire_positions(
            contracts,
            reserves={
                WS_TOKEN: _user_reserve(atoken=100 * 10**18),
                USDCE_TOKEN: _user_reserve(atoken=50 * 10**6, variable_debt=10 * 10**6),
                DUSD_TOKEN: _user_reserve(variable_debt=150 * 10**6, collateral_enabled=False),
            },
            configs={
                WS_TOKEN: _reserve_config(18, bonus_bps=10500),
                USDCE_TOKEN: _reserve_config(6, bonus_bps=10400),
                DUSD_TOKEN: _reserve_config(6),
            },
            prices={WS_TOKEN: 2 * 10**8, USDCE_TOKEN: 10**8, DUSD_TOKEN: 10**8},
        )
        client = _make_pool_client(chain_ctx)

        position = await client.get_borrower_position(SAMPLE_BORROWER)

        assert position.health_factor == Decimal("0.95")
        assert position.collateral_token.lower() == WS_TOKEN.lower()
        assert position.collateral_amount == 100 * 10**18
        assert position.collateral_price_usd == Decimal("2")
        assert position.liquidation_bonus == Decimal("1.05")
        assert position.debt_token.lower() == DUSD_TOKEN.lower()
        assert position.debt_amount == 150 * 10**6
        assert position.debt_price_usd == Decimal("1")

    async def test_collateral_disabled_reserve_is_ignored(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            _account_data(95 * 10**16)
        )
        _wire_positions(
            contracts,
            reserves={
                WS_TOKEN: _user_reserve(atoken=100 * 10**18, collateral_enabled=False),
                USDCE_TOKEN: _user_reserve(atoken=50 * 10**6),
                DUSD_TOKEN: _user_reserve(variable_debt=40 * 10**6),
            },
            configs={
                WS_TOKEN: _reserve_config(18),
                USDCE_TOKEN: _reserve_config(6, bonus_bps=10400),
                DUSD_TOKEN: _reserve_config(6),
            },
            prices={WS_TOKEN: 2 * 10**8, USDCE_TOKEN: 10**8, DUSD_TOKEN: 10**8},
        )
        client = _make_pool_client(chain_ctx)

        position = await client.get_borrower_position(SAMPLE_BORROWER)

        assert position.collateral_token.lower() == USDCE_TOKEN.lower()
        assert position.liquidation_bonus == Decimal("1.04")

    async def test_empty_reserves_skip_config_reads(self, chain_ctx, contracts):
        contracts["pool"].functions.getUserAccountData.return_value = _fn(
            _account_data(2 * 10**18)
        )
        _wire_positions(
            contracts,
            reserves={WS_TOKEN: _user_reserve()},
            configs={WS_TOKEN: _reserve_config(18)},
            prices={WS_TOKEN: 2 * 10**8},
        )
        client = _make_pool_client(chain_ctx)

        position = await client.get_borrower_position(SAMPLE_BORROWER)

        assert position.collateral_token == ""
        assert position.debt_token == ""
        assert position.collateral_amount == 0
        assert position.debt_amount == 0
        contracts["pool_data_provider"].functions.getReserveConfigurationData.assert_not_called()
