"""
Shared pytest configuration and fixtures for dLEND Odos Liquidation Bot tests.

Provides common helpers used across the unit test suite.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.types import (
    BorrowerPosition,
    ChainContext,
    FundingMode,
    LiquidationPlan,
    QuoteResponse,
    TokenInfo,
)

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


# ---------------------------------------------------------------------------
# Sample addresses (Sonic mainnet tokens, arbitrary accounts)
# ---------------------------------------------------------------------------

SAMPLE_BORROWER = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"
SAMPLE_BORROWER_2 = "0xAb5801a7D398351b8bE11C439e05C5B3259aeC9B"
SAMPLE_BORROWER_3 = "0x71C7656EC7ab88b098defB751B7401B5f6d8976F"
SAMPLE_OPERATOR = "0x1234567890abcdef1234567890abcdef12345678"

WS_TOKEN = "0x039e2fB66102314Ce7b64Ce5Ce3E5183bc94aD38"
USDCE_TOKEN = "0x29219dd400f2Bf60E5a23d13Be72B486D4038894"
DUSD_TOKEN = "0x53a6aBb52B2F968fA80dF6A894e4f1b1020DA975"

FLASH_MINT_LIQUIDATOR = "0x1111111111111111111111111111111111111111"
FLASH_LOAN_LIQUIDATOR = "0x2222222222222222222222222222222222222222"
ODOS_ROUTER = "0xaC041Df48dF9791B0654f1Dbbf2CC8450C5f2e9D"

WS_INFO = TokenInfo(address=WS_TOKEN, symbol="wS", decimals=18)
DUSD_INFO = TokenInfo(address=DUSD_TOKEN, symbol="dUSD", decimals=6)
USDCE_INFO = TokenInfo(address=USDCE_TOKEN, symbol="USDC.e", decimals=6)


# ---------------------------------------------------------------------------
# Standard mock configs (can be overridden per test)
# ---------------------------------------------------------------------------

STANDARD_LIQUIDATOR_CONFIG = {
    "dry_run": True,
    "flash_minter": DUSD_TOKEN,
    "odos_router": ODOS_ROUTER,
    "slippage_tolerance": "0.5",
    "health_factor_batch_size": 10,
    "health_factor_threshold": "1.0",
    "profitable_threshold_usd": "1",
    "close_factor": "0.5",
    "close_factor_hf_threshold": "0.95",
    "close_factor_hf_inclusive": True,
    "flash_loan_premium": "0.0005",
    "liquidation_gas_limit": 2500000,
    "fallback_gas_cost_usd": "0.5",
    "max_gas_price_gwei": 500,
    "max_liquidations_per_run": 50,
    "token_proxy_contract_map": {},
}

STANDARD_CHAIN_CONFIG = {
    "chain_id": 146,
    "name": "sonic_mainnet",
    "explorer_url": "https://sonicscan.org",
    "rpc": {"http_url": "https://rpc.soniclabs.com"},
    "contracts": {
        "pool_addresses_provider": "0x3333333333333333333333333333333333333333",
        "flash_mint_liquidator": FLASH_MINT_LIQUIDATOR,
        "flash_loan_liquidator": FLASH_LOAN_LIQUIDATOR,
    },
    "wrapped_native_token": "",
}

STANDARD_AGGREGATOR_CONFIG = {
    "name": "odos",
    "base_url": "https://api.odos.xyz",
    "quote_timeout_seconds": 10,
    "assemble_timeout_seconds": 10,
    "retry": {"max_attempts": 3, "backoff_seconds": 0},
}

STANDARD_TIMING_CONFIG = {
    "rpc": {"call_timeout_seconds": 15},
    "transaction": {
        "confirmation_timeout_seconds": 60,
        "simulation_timeout_seconds": 15,
        "confirmations": 1,
        "receipt_poll_interval_seconds": 0,
    },
}


def make_quote(out_amount: int, out_token: str = DUSD_TOKEN, path_id: str = "path-1") -> QuoteResponse:
    return QuoteResponse.model_validate(
        {"pathId": path_id, "outTokens": [out_token], "outAmounts": [str(out_amount)]}
    )


def make_position(
    health_factor="0.95",
    collateral_amount: int = 100 * 10**18,
    debt_amount: int = 150 * 10**6,
    collateral_price="2.00",
    debt_price="1.00",
    bonus="1.05",
    collateral_token: str = WS_TOKEN,
    debt_token: str = DUSD_TOKEN,
    address: str = SAMPLE_BORROWER,
) -> BorrowerPosition:
    return BorrowerPosition(
        address=address,
        health_factor=_d(health_factor),
        collateral_token=collateral_token,
        debt_token=debt_token,
        collateral_amount=collateral_amount,
        debt_amount=debt_amount,
        collateral_price_usd=_d(collateral_price),
        debt_price_usd=_d(debt_price),
        liquidation_bonus=_d(bonus),
    )


def make_plan(
    borrower: str = SAMPLE_BORROWER,
    funding_mode: FundingMode = FundingMode.FLASH_MINT,
    profit="6.5",
) -> LiquidationPlan:
    return LiquidationPlan(
        borrower=borrower,
        collateral_token=WS_INFO,
        debt_token=DUSD_INFO,
        debt_to_cover=150 * 10**6,
        expected_collateral_out=78_750_000_000_000_000_000,
        swap_quote=make_quote(157 * 10**6),
        expected_profit_usd=_d(profit),
        funding_mode=funding_mode,
        health_factor=_d("0.95"),
        estimated_gas_cost_usd=_d("0.5"),
    )


# ---------------------------------------------------------------------------
# Config loader fixture (patched singleton)
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_liquidator_config.return_value = {...}
    """
    loader = MagicMock()
    loader.get_liquidator_config.return_value = STANDARD_LIQUIDATOR_CONFIG.copy()
    loader.get_chain_config.return_value = STANDARD_CHAIN_CONFIG.copy()
    loader.get_aggregator_config.return_value = STANDARD_AGGREGATOR_CONFIG.copy()
    loader.get_timing_config.return_value = STANDARD_TIMING_CONFIG.copy()
    loader.get_app_config.return_value = {"logging": {"log_dir": "logs"}}
    loader.get_abi.return_value = []
    return loader


# ---------------------------------------------------------------------------
# Chain context fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_w3():
    w3 = MagicMock()
    w3.eth = MagicMock()
    return w3


@pytest.fixture
def chain_ctx(mock_w3):
    return ChainContext(
        w3=mock_w3,
        chain_id=146,
        operator_address=SAMPLE_OPERATOR,
        private_key="0x" + "ab" * 32,
    )


@pytest.fixture
def mock_token_resolver():
    infos = {WS_TOKEN.lower(): WS_INFO, DUSD_TOKEN.lower(): DUSD_INFO, USDCE_TOKEN.lower(): USDCE_INFO}
    resolver = MagicMock()
    resolver.get_token_info = AsyncMock(side_effect=lambda addr: infos[addr.lower()])
    resolver.get_decimals = AsyncMock(side_effect=lambda addr: infos[addr.lower()].decimals)
    return resolver
