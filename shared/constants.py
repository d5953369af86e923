"""
Shared constants for the dLEND Odos Liquidation Bot.

Numeric constants, Odos API paths, and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

WAD = Decimal("1_000_000_000_000_000_000")  # 1e18 (health factor, native gas token)
USD_DECIMALS = Decimal("100_000_000")  # 1e8 (Aave oracle base currency unit fallback)
BPS = Decimal("10000")

# Health factor returned by the pool for accounts without debt (uint256 max)
MAX_UINT256 = 2**256 - 1

# ---------------------------------------------------------------------------
# Odos Aggregator
# ---------------------------------------------------------------------------

ODOS_BASE_URL = "https://api.odos.xyz"
ODOS_QUOTE_PATH = "/sor/quote/v2"
ODOS_ASSEMBLE_PATH = "/sor/assemble"
ODOS_ROUTER_V2_SONIC = "0xaC041Df48dF9791B0654f1Dbbf2CC8450C5f2e9D"

# Placeholder user for quote-only requests (no funds move at quoting time)
QUOTE_PLACEHOLDER_USER = "0x000000000000000000000000000000000000dEaD"

# ---------------------------------------------------------------------------
# Chains
# ---------------------------------------------------------------------------

SONIC_MAINNET_CHAIN_ID = 146
SONIC_TESTNET_CHAIN_ID = 57054

# ---------------------------------------------------------------------------
# Liquidation Parameters (Aave V3 semantics)
# ---------------------------------------------------------------------------

DEFAULT_CLOSE_FACTOR = Decimal("0.5")
MAX_CLOSE_FACTOR = Decimal("1.0")
CLOSE_FACTOR_HF_THRESHOLD = Decimal("0.95")
DEFAULT_LIQUIDATION_BONUS = Decimal("1.05")
DEFAULT_HEALTH_FACTOR_THRESHOLD = Decimal("1.0")
DEFAULT_PROFITABLE_THRESHOLD_USD = Decimal("1")
DEFAULT_HEALTH_FACTOR_BATCH_SIZE = 10
DEFAULT_SLIPPAGE_PERCENT = Decimal("0.5")
DEFAULT_FLASH_LOAN_PREMIUM = Decimal("0.0005")  # 5 bps
DEFAULT_LIQUIDATION_GAS_LIMIT = 2_500_000
DEFAULT_PROXY_CONFIG_GAS_LIMIT = 200_000
DEFAULT_FALLBACK_GAS_COST_USD = Decimal("0.5")

# ---------------------------------------------------------------------------
# Default Safety / Timing Values
# ---------------------------------------------------------------------------

DEFAULT_DRY_RUN = True
DEFAULT_MAX_GAS_PRICE_GWEI = 500
DEFAULT_MAX_LIQUIDATIONS_PER_RUN = 50
DEFAULT_QUOTE_TIMEOUT_SECONDS = 10
DEFAULT_RPC_CALL_TIMEOUT_SECONDS = 15
DEFAULT_CONFIRMATION_TIMEOUT_SECONDS = 120
DEFAULT_CONFIRMATIONS = 1
DEFAULT_QUOTE_RETRY_ATTEMPTS = 3
DEFAULT_QUOTE_RETRY_BACKOFF_SECONDS = 1.0
