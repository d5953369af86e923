"""
Shared data types for the dLEND Odos Liquidation Bot.

Centralized dataclasses and enums used across all modules. The Odos wire
schema is expressed as pydantic models so that aggregator responses are
validated once, at the client boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

if TYPE_CHECKING:
    from web3 import AsyncWeb3

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class FundingMode(Enum):
    FLASH_MINT = "flash_mint"  # Debt token minted by the flash minter (dUSD)
    FLASH_LOAN = "flash_loan"  # Debt token flash-borrowed from the pool


class SkipReason(Enum):
    NOT_ELIGIBLE = "not_eligible"  # HF at or above threshold
    UNPROFITABLE = "unprofitable"  # Expected profit below threshold
    NO_COLLATERAL = "no_collateral"  # No seizable collateral or no debt reserve


class BatchOutcome(Enum):
    SKIPPED = "skipped"
    LIQUIDATED = "liquidated"
    FAILED = "failed"


class TxStatus(Enum):
    SUCCESS = "success"
    REVERTED = "reverted"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# Chain Context
# ---------------------------------------------------------------------------


@dataclass
class ChainContext:
    """Explicit chain connection threaded through every component."""

    w3: AsyncWeb3
    chain_id: int | None = None
    operator_address: str = ""
    private_key: str = ""

    async def resolve_chain_id(self) -> int | None:
        """Return the configured chain id, falling back to ``eth_chainId``."""
        if self.chain_id:
            return self.chain_id
        chain_id = await self.w3.eth.chain_id
        if chain_id:
            self.chain_id = int(chain_id)
        return self.chain_id


# ---------------------------------------------------------------------------
# Token / Pool Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class UserAccountData:
    total_collateral_usd: Decimal
    total_debt_usd: Decimal
    available_borrow_usd: Decimal
    current_liquidation_threshold: Decimal
    ltv: Decimal
    health_factor: Decimal


@dataclass(frozen=True)
class UserReserveData:
    current_atoken_balance: int
    current_stable_debt: int
    current_variable_debt: int
    usage_as_collateral_enabled: bool

    @property
    def total_debt(self) -> int:
        return self.current_stable_debt + self.current_variable_debt


@dataclass(frozen=True)
class ReserveConfiguration:
    decimals: int
    ltv: Decimal
    liquidation_threshold: Decimal
    liquidation_bonus: Decimal  # e.g. Decimal("1.05") for a 5% bonus
    usage_as_collateral_enabled: bool


@dataclass(frozen=True)
class BorrowerPosition:
    address: str
    health_factor: Decimal
    collateral_token: str
    debt_token: str
    collateral_amount: int  # base units
    debt_amount: int  # base units
    collateral_price_usd: Decimal
    debt_price_usd: Decimal
    liquidation_bonus: Decimal


# ---------------------------------------------------------------------------
# Aggregator Wire Types (Odos SOR v2)
# ---------------------------------------------------------------------------


class QuoteInputToken(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    token_address: str = Field(alias="tokenAddress")
    amount: str  # base units, decimal string


class QuoteOutputToken(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    token_address: str = Field(alias="tokenAddress")
    proportion: float = 1


class QuoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    chain_id: int = Field(alias="chainId")
    input_tokens: list[QuoteInputToken] = Field(alias="inputTokens")
    output_tokens: list[QuoteOutputToken] = Field(alias="outputTokens")
    user_addr: str = Field(alias="userAddr")
    slippage_limit_percent: float = Field(alias="slippageLimitPercent")

    def to_wire(self) -> dict:
        """Serialize to the camelCase JSON body expected by Odos."""
        return self.model_dump(by_alias=True)


class QuoteResponse(BaseModel):
    """Validated subset of the Odos quote response."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    path_id: str = Field(alias="pathId", min_length=1)
    out_tokens: list[str] = Field(alias="outTokens", min_length=1)
    out_amounts: list[int] = Field(alias="outAmounts", min_length=1)
    in_tokens: list[str] = Field(default_factory=list, alias="inTokens")
    in_amounts: list[int] = Field(default_factory=list, alias="inAmounts")
    gas_estimate: float = Field(default=0, alias="gasEstimate")
    price_impact: float | None = Field(default=None, alias="priceImpact")
    net_out_value: float | None = Field(default=None, alias="netOutValue")

    @model_validator(mode="after")
    def _check_out_lengths(self) -> QuoteResponse:
        if len(self.out_tokens) != len(self.out_amounts):
            raise ValueError(
                f"outTokens ({len(self.out_tokens)}) and outAmounts "
                f"({len(self.out_amounts)}) length mismatch"
            )
        return self

    @property
    def out_amount(self) -> int:
        """Amount of the first (only) output token in base units."""
        return self.out_amounts[0]


@dataclass(frozen=True)
class AssembledSwap:
    router_address: str
    calldata: bytes
    gas: int


# ---------------------------------------------------------------------------
# Liquidation Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LiquidationPlan:
    borrower: str
    collateral_token: TokenInfo
    debt_token: TokenInfo
    debt_to_cover: int  # base units of debt token
    expected_collateral_out: int  # base units of collateral token
    swap_quote: QuoteResponse
    expected_profit_usd: Decimal
    funding_mode: FundingMode
    health_factor: Decimal
    estimated_gas_cost_usd: Decimal = Decimal("0")


@dataclass(frozen=True)
class SkippedLiquidation:
    borrower: str
    reason: SkipReason
    health_factor: Decimal
    collateral_token: TokenInfo | None = None
    debt_token: TokenInfo | None = None
    expected_profit_usd: Decimal | None = None


@dataclass(frozen=True)
class TxOutcome:
    status: TxStatus
    tx_hash: str = ""
    realized_profit_usd: Decimal = Decimal("0")
    reason: str = ""
    gas_used: int = 0


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient aggregator failures."""

    max_attempts: int = 1
    backoff_seconds: float = 0.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.backoff_seconds * (2 ** (attempt - 1))


@dataclass(frozen=True)
class SafetyCheck:
    can_proceed: bool
    reason: str


# ---------------------------------------------------------------------------
# Batch Result Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchResult:
    borrower: str
    outcome: BatchOutcome
    skip_reason: SkipReason | None = None
    tx_hash: str = ""
    profit_usd: Decimal = Decimal("0")
    error: str = ""
    error_kind: str = ""

    @classmethod
    def skipped(cls, borrower: str, reason: SkipReason) -> BatchResult:
        return cls(borrower=borrower, outcome=BatchOutcome.SKIPPED, skip_reason=reason)

    @classmethod
    def liquidated(cls, borrower: str, tx_hash: str, profit_usd: Decimal) -> BatchResult:
        return cls(
            borrower=borrower,
            outcome=BatchOutcome.LIQUIDATED,
            tx_hash=tx_hash,
            profit_usd=profit_usd,
        )

    @classmethod
    def failed(cls, borrower: str, error: str, error_kind: str) -> BatchResult:
        return cls(
            borrower=borrower,
            outcome=BatchOutcome.FAILED,
            error=error,
            error_kind=error_kind,
        )


@dataclass(frozen=True)
class BatchSummary:
    total: int
    liquidated: int
    skipped: int
    failed: int
    total_profit_usd: Decimal
