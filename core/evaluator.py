"""
Price / health-factor evaluator for the dLEND Odos Liquidation Bot.

Turns a borrower address into either a ``LiquidationPlan`` or a
``SkippedLiquidation``. Pool state is read fresh on every call; the Odos
quote is only requested for positions below the health-factor threshold.

Sizing follows the Aave v3 rules:
  close factor   100% at HF <= 0.95, else 50%
  debt to cover  min(debt * close_factor, collateral * p_c / (p_d * bonus))
  collateral out debt_to_cover * p_d * bonus / p_c

Profit (USD) = collateral value − debt value − gas − slippage − flash fee,
where slippage is the shortfall of the quoted swap output against the
oracle value of the seized collateral.

Usage:
    evaluator = LiquidationEvaluator(ctx, pool_client, resolver, aggregator)
    result = await evaluator.evaluate(
        borrower, Decimal("1.0"), Decimal("1"),
        liquidators={FundingMode.FLASH_MINT: mint_liquidator, FundingMode.FLASH_LOAN: loan_liquidator},
    )
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, localcontext
from typing import TYPE_CHECKING, Mapping

from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from execution.aggregator_client import AggregatorError
from execution.pool_client import ContractCallError
from shared.constants import (
    CLOSE_FACTOR_HF_THRESHOLD,
    DEFAULT_CLOSE_FACTOR,
    DEFAULT_FALLBACK_GAS_COST_USD,
    DEFAULT_FLASH_LOAN_PREMIUM,
    DEFAULT_HEALTH_FACTOR_THRESHOLD,
    DEFAULT_LIQUIDATION_GAS_LIMIT,
    DEFAULT_PROFITABLE_THRESHOLD_USD,
    DEFAULT_SLIPPAGE_PERCENT,
    MAX_CLOSE_FACTOR,
    QUOTE_PLACEHOLDER_USER,
    WAD,
)
from shared.types import (
    FundingMode,
    LiquidationPlan,
    QuoteResponse,
    RetryPolicy,
    SkippedLiquidation,
    SkipReason,
)
from shared.units import UINT256_PRECISION, format_units, parse_units, to_plain_string

if TYPE_CHECKING:
    from execution.aggregator_client import AggregatorClient
    from execution.pool_client import PoolClient
    from execution.token_resolver import TokenResolver
    from shared.types import ChainContext


# ---------------------------------------------------------------------------
# Pure sizing helpers
# ---------------------------------------------------------------------------


def close_factor_for(
    health_factor: Decimal,
    hf_threshold: Decimal = CLOSE_FACTOR_HF_THRESHOLD,
    default_close_factor: Decimal = DEFAULT_CLOSE_FACTOR,
    inclusive: bool = True,
) -> Decimal:
    """Fraction of the debt liquidatable in one call at ``health_factor``."""
    below = health_factor <= hf_threshold if inclusive else health_factor < hf_threshold
    return MAX_CLOSE_FACTOR if below else default_close_factor


@dataclass(frozen=True)
class LiquidationSize:
    debt_to_cover: int  # debt token base units
    expected_collateral_out: int  # collateral token base units


def size_liquidation(
    collateral_amount: int,
    collateral_decimals: int,
    collateral_price_usd: Decimal,
    debt_amount: int,
    debt_decimals: int,
    debt_price_usd: Decimal,
    liquidation_bonus: Decimal,
    close_factor: Decimal,
) -> LiquidationSize:
    """
    Size a liquidation in base units, truncating toward zero on both sides.

    The collateral bound keeps ``expected_collateral_out`` within what the
    borrower actually holds. Arithmetic runs at uint256 precision and rounds
    down, so no intermediate result exceeds its exact value.
    """
    with localcontext() as dctx:
        dctx.prec = UINT256_PRECISION
        dctx.rounding = ROUND_DOWN

        collateral = format_units(collateral_amount, collateral_decimals)
        debt = format_units(debt_amount, debt_decimals)

        debt_to_cover_human = min(debt * close_factor, debt)
        max_by_collateral = collateral * collateral_price_usd / (debt_price_usd * liquidation_bonus)
        debt_to_cover_human = min(debt_to_cover_human, max_by_collateral)

        debt_to_cover = parse_units(debt_to_cover_human, debt_decimals)
        covered = format_units(debt_to_cover, debt_decimals)
        collateral_out_human = covered * debt_price_usd * liquidation_bonus / collateral_price_usd
    collateral_out = min(parse_units(collateral_out_human, collateral_decimals), collateral_amount)
    return LiquidationSize(debt_to_cover=debt_to_cover, expected_collateral_out=collateral_out)


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class LiquidationEvaluator:
    """
    Decides liquidate vs. skip for one borrower at a time.

    Unprofitable and healthy positions come back as ``SkippedLiquidation``;
    read and quote failures propagate as ``ContractCallError`` /
    ``AggregatorError`` for the scheduler to isolate.
    """

    def __init__(
        self,
        ctx: ChainContext,
        pool_client: PoolClient,
        token_resolver: TokenResolver,
        aggregator_client: AggregatorClient,
    ) -> None:
        self._ctx = ctx
        self._pool = pool_client
        self._token_resolver = token_resolver
        self._aggregator = aggregator_client

        cfg = get_config()
        liq_cfg = cfg.get_liquidator_config()
        self._flash_minter: str = str(liq_cfg.get("flash_minter", "")).lower()
        self._slippage_percent = Decimal(
            str(liq_cfg.get("slippage_tolerance", DEFAULT_SLIPPAGE_PERCENT))
        )
        self._default_hf_threshold = Decimal(
            str(liq_cfg.get("health_factor_threshold", DEFAULT_HEALTH_FACTOR_THRESHOLD))
        )
        self._default_profit_threshold = Decimal(
            str(liq_cfg.get("profitable_threshold_usd", DEFAULT_PROFITABLE_THRESHOLD_USD))
        )
        self._close_factor = Decimal(str(liq_cfg.get("close_factor", DEFAULT_CLOSE_FACTOR)))
        self._close_factor_hf_threshold = Decimal(
            str(liq_cfg.get("close_factor_hf_threshold", CLOSE_FACTOR_HF_THRESHOLD))
        )
        self._close_factor_inclusive: bool = liq_cfg.get("close_factor_hf_inclusive", True)
        self._flash_loan_premium = Decimal(
            str(liq_cfg.get("flash_loan_premium", DEFAULT_FLASH_LOAN_PREMIUM))
        )
        self._gas_limit: int = liq_cfg.get("liquidation_gas_limit", DEFAULT_LIQUIDATION_GAS_LIMIT)
        self._fallback_gas_cost_usd = Decimal(
            str(liq_cfg.get("fallback_gas_cost_usd", DEFAULT_FALLBACK_GAS_COST_USD))
        )

        self._wrapped_native: str = ""
        if ctx.chain_id is not None:
            self._wrapped_native = cfg.get_chain_config(ctx.chain_id).get(
                "wrapped_native_token", ""
            )

        self._logger = setup_module_logger(
            "evaluator", "evaluator.log", module_folder="Evaluator_Logs"
        )

    def funding_mode_for(self, debt_token: str) -> FundingMode:
        """Debt in the flash-minter token is flash-minted, anything else flash-loaned."""
        if self._flash_minter and debt_token.lower() == self._flash_minter:
            return FundingMode.FLASH_MINT
        return FundingMode.FLASH_LOAN

    async def evaluate(
        self,
        borrower: str,
        health_factor_threshold: Decimal | None = None,
        profit_threshold_usd: Decimal | None = None,
        liquidators: Mapping[FundingMode, str] | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> LiquidationPlan | SkippedLiquidation:
        """
        Evaluate ``borrower`` against fresh pool state.

        Returns a plan only when HF is below the threshold and the expected
        profit clears ``profit_threshold_usd``. ``liquidators`` maps each
        funding mode to its contract; the quote is requested on behalf of
        the contract that will execute it.
        """
        hf_threshold = (
            self._default_hf_threshold
            if health_factor_threshold is None
            else Decimal(str(health_factor_threshold))
        )
        profit_threshold = (
            self._default_profit_threshold
            if profit_threshold_usd is None
            else Decimal(str(profit_threshold_usd))
        )

        # 1. Fresh position
        position = await self._pool.get_borrower_position(borrower)
        hf = position.health_factor

        # 2. Eligibility
        if hf >= hf_threshold:
            self._logger.debug("Borrower %s not eligible: hf=%s >= %s", borrower, hf, hf_threshold)
            return SkippedLiquidation(
                borrower=position.address, reason=SkipReason.NOT_ELIGIBLE, health_factor=hf
            )

        if (
            not position.collateral_token
            or not position.debt_token
            or position.collateral_amount == 0
            or position.debt_amount == 0
        ):
            self._logger.info("Borrower %s has no seizable collateral or debt", borrower)
            return SkippedLiquidation(
                borrower=position.address, reason=SkipReason.NO_COLLATERAL, health_factor=hf
            )

        if position.collateral_price_usd <= 0 or position.debt_price_usd <= 0:
            raise ContractCallError(
                f"Oracle returned non-positive price for {borrower}: "
                f"collateral=${position.collateral_price_usd} debt=${position.debt_price_usd}"
            )

        collateral_info = await self._token_resolver.get_token_info(position.collateral_token)
        debt_info = await self._token_resolver.get_token_info(position.debt_token)

        # 3-4. Sizing
        close_factor = close_factor_for(
            hf,
            self._close_factor_hf_threshold,
            self._close_factor,
            self._close_factor_inclusive,
        )
        size = size_liquidation(
            collateral_amount=position.collateral_amount,
            collateral_decimals=collateral_info.decimals,
            collateral_price_usd=position.collateral_price_usd,
            debt_amount=position.debt_amount,
            debt_decimals=debt_info.decimals,
            debt_price_usd=position.debt_price_usd,
            liquidation_bonus=position.liquidation_bonus,
            close_factor=close_factor,
        )
        if size.debt_to_cover == 0 or size.expected_collateral_out == 0:
            return SkippedLiquidation(
                borrower=position.address,
                reason=SkipReason.NO_COLLATERAL,
                health_factor=hf,
                collateral_token=collateral_info,
                debt_token=debt_info,
            )

        # 5. Quote collateral → debt for the liquidator that will execute it
        funding_mode = self.funding_mode_for(debt_info.address)
        target = (liquidators or {}).get(funding_mode) or QUOTE_PLACEHOLDER_USER
        collateral_out_human = format_units(size.expected_collateral_out, collateral_info.decimals)
        quote = await self._quote_with_retry(
            collateral_info.address,
            debt_info.address,
            to_plain_string(collateral_out_human),
            target,
            retry_policy or RetryPolicy(),
        )

        # 6. Profitability
        debt_covered_human = format_units(size.debt_to_cover, debt_info.decimals)
        collateral_value = collateral_out_human * position.collateral_price_usd
        debt_value = debt_covered_human * position.debt_price_usd
        quote_out_value = format_units(quote.out_amount, debt_info.decimals) * position.debt_price_usd
        slippage_cost = max(Decimal("0"), collateral_value - quote_out_value)
        flash_fee = (
            debt_value * self._flash_loan_premium
            if funding_mode == FundingMode.FLASH_LOAN
            else Decimal("0")
        )
        gas_cost = await self._estimate_gas_cost_usd()
        profit = collateral_value - debt_value - gas_cost - slippage_cost - flash_fee

        self._logger.info(
            "Borrower %s: hf=%s cf=%s cover=%s %s seize=%s %s value=$%s/$%s "
            "slippage=$%s fee=$%s gas=$%s profit=$%s (%s)",
            position.address,
            hf,
            close_factor,
            debt_covered_human,
            debt_info.symbol,
            collateral_out_human,
            collateral_info.symbol,
            collateral_value,
            debt_value,
            slippage_cost,
            flash_fee,
            gas_cost,
            profit,
            funding_mode.value,
        )

        # 7. Economic filter
        if profit < profit_threshold:
            self._logger.info(
                "Not profitable: borrower=%s collateral=%s debt=%s profit=$%s < $%s",
                position.address,
                collateral_info.symbol,
                debt_info.symbol,
                profit,
                profit_threshold,
            )
            return SkippedLiquidation(
                borrower=position.address,
                reason=SkipReason.UNPROFITABLE,
                health_factor=hf,
                collateral_token=collateral_info,
                debt_token=debt_info,
                expected_profit_usd=profit,
            )

        return LiquidationPlan(
            borrower=position.address,
            collateral_token=collateral_info,
            debt_token=debt_info,
            debt_to_cover=size.debt_to_cover,
            expected_collateral_out=size.expected_collateral_out,
            swap_quote=quote,
            expected_profit_usd=profit,
            funding_mode=funding_mode,
            health_factor=hf,
            estimated_gas_cost_usd=gas_cost,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _quote_with_retry(
        self,
        input_token: str,
        output_token: str,
        amount_human: str,
        user_addr: str,
        retry_policy: RetryPolicy,
    ) -> QuoteResponse:
        attempt = 1
        while True:
            try:
                return await self._aggregator.get_swap_quote(
                    input_token,
                    output_token,
                    amount_human,
                    self._slippage_percent,
                    self._ctx,
                    user_addr=user_addr,
                )
            except AggregatorError as e:
                if not e.transient or attempt >= retry_policy.max_attempts:
                    raise
                delay = retry_policy.delay_for(attempt)
                self._logger.warning(
                    "Transient quote failure (attempt %d/%d), retrying in %.1fs: %s",
                    attempt,
                    retry_policy.max_attempts,
                    delay,
                    e,
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _estimate_gas_cost_usd(self) -> Decimal:
        """Gas limit × current gas price, priced in USD via the native token oracle."""
        if not self._wrapped_native:
            return self._fallback_gas_cost_usd
        gas_price = await self._ctx.w3.eth.gas_price
        gas_cost_native = Decimal(self._gas_limit * int(gas_price)) / WAD
        native_price = await self._pool.get_asset_price(
            Web3.to_checksum_address(self._wrapped_native)
        )
        return gas_cost_native * native_price
