"""
Batch scheduler for the dLEND Odos Liquidation Bot.

Partitions candidate borrowers into fixed-size batches and walks them
strictly in order: evaluate → liquidate or skip → record. Every
per-borrower error is converted into a ``BatchResult``; only configuration
errors escape, and they do so before any borrower is touched.

Usage:
    bot = LiquidationBot(ctx, pool_client, evaluator, executor, aggregator, safety)
    results = await bot.run_bot_batch(
        0, borrowers, operator, flash_mint_liquidator, flash_loan_liquidator,
        batch_size=10, health_factor_threshold=Decimal("1"), profit_threshold_usd=Decimal("1"),
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import TYPE_CHECKING, TypeVar

from bot_logging.logger_manager import log_batch_result, setup_module_logger
from config.validate import ConfigurationError
from execution.aggregator_client import AggregatorError
from execution.pool_client import ContractCallError
from execution.tx_submitter import (
    TransactionRevertedError,
    TransactionTimeoutError,
    TxSubmitterError,
)
from shared.types import (
    BatchOutcome,
    BatchResult,
    BatchSummary,
    FundingMode,
    LiquidationPlan,
    RetryPolicy,
    SkippedLiquidation,
    TxStatus,
)

if TYPE_CHECKING:
    from core.evaluator import LiquidationEvaluator
    from core.safety import SafetyState
    from execution.aggregator_client import AggregatorClient
    from execution.liquidation_executor import LiquidationExecutor
    from execution.pool_client import PoolClient
    from notifications.slack import SlackNotifier
    from shared.types import ChainContext

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def partition_batches(items: Sequence[T], batch_size: int) -> list[list[T]]:
    """Split ``items`` into consecutive chunks of ``batch_size`` (last may be shorter)."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


def classify_error(exc: Exception) -> str:
    """Map a per-borrower exception to the ``error_kind`` recorded in results."""
    if isinstance(exc, ContractCallError):
        return "contract_call"
    if isinstance(exc, AggregatorError):
        return "aggregator"
    if isinstance(exc, TransactionRevertedError):
        return "reverted"
    if isinstance(exc, TransactionTimeoutError):
        return "timeout"
    if isinstance(exc, TxSubmitterError):
        return "submission"
    return "unexpected"


def summarize_results(results: Sequence[BatchResult]) -> BatchSummary:
    liquidated = [r for r in results if r.outcome == BatchOutcome.LIQUIDATED]
    return BatchSummary(
        total=len(results),
        liquidated=len(liquidated),
        skipped=sum(1 for r in results if r.outcome == BatchOutcome.SKIPPED),
        failed=sum(1 for r in results if r.outcome == BatchOutcome.FAILED),
        total_profit_usd=sum((r.profit_usd for r in liquidated), Decimal("0")),
    )


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class LiquidationBot:
    """
    Sequential liquidation scheduler.

    Borrowers are processed one at a time, in the order supplied: liquidation
    transactions from one operator share a nonce sequence, and the Odos API
    and RPC endpoint are rate-limited.
    """

    def __init__(
        self,
        ctx: ChainContext,
        pool_client: PoolClient,
        evaluator: LiquidationEvaluator,
        executor: LiquidationExecutor,
        aggregator_client: AggregatorClient,
        safety: SafetyState,
        notifier: SlackNotifier | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._ctx = ctx
        self._pool = pool_client
        self._evaluator = evaluator
        self._executor = executor
        self._aggregator = aggregator_client
        self._safety = safety
        self._notifier = notifier
        self._retry_policy = retry_policy or RetryPolicy()

        self._logger = setup_module_logger(
            "batch_runner", "batch_runner.log", module_folder="Batch_Runner_Logs"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def log_health_factors(
        self, log_index: int, borrower_addresses: Sequence[str]
    ) -> dict[str, Decimal | None]:
        """Log one ``User: <addr>, Health Factor: <hf>`` line per borrower."""
        health_factors: dict[str, Decimal | None] = {}
        for address in borrower_addresses:
            try:
                hf = await self._pool.get_health_factor(address)
            except ContractCallError as e:
                self._logger.warning("[%d] User: %s, Health Factor: unavailable (%s)", log_index, address, e)
                health_factors[address] = None
                continue
            self._logger.info("[%d] User: %s, Health Factor: %s", log_index, address, hf)
            health_factors[address] = hf
        return health_factors

    async def run_bot_batch(
        self,
        log_index: int,
        borrower_addresses: Sequence[str],
        operator_address: str,
        flash_mint_contract: str,
        flash_loan_contract: str,
        batch_size: int,
        health_factor_threshold: Decimal,
        profit_threshold_usd: Decimal,
    ) -> list[BatchResult]:
        """
        Evaluate and liquidate ``borrower_addresses`` in batches of ``batch_size``.

        Returns one ``BatchResult`` per borrower, in input order. Raises
        ``ConfigurationError`` (fatal) and nothing else.
        """
        # Pre-flight: a wrong chain aborts before any borrower is touched
        chain_id = await self._aggregator.check_chain(self._ctx)
        try:
            batches = partition_batches(list(borrower_addresses), batch_size)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        liquidators = {
            FundingMode.FLASH_MINT: flash_mint_contract,
            FundingMode.FLASH_LOAN: flash_loan_contract,
        }
        missing = [mode.value for mode, address in liquidators.items() if not address]
        if missing:
            raise ConfigurationError(f"No liquidator contract configured for: {', '.join(missing)}")
        self._safety.reset_run()

        self._logger.info(
            "[%d] Starting run on chain %d: %d borrowers in %d batches of %d "
            "(hf < %s, profit >= $%s)",
            log_index,
            chain_id,
            len(borrower_addresses),
            len(batches),
            batch_size,
            health_factor_threshold,
            profit_threshold_usd,
        )

        results: list[BatchResult] = []
        for batch_number, batch in enumerate(batches):
            self._logger.info(
                "[%d] Batch %d/%d: %d borrowers", log_index, batch_number + 1, len(batches), len(batch)
            )
            for borrower in batch:
                result = await self._process_borrower(
                    log_index,
                    borrower,
                    operator_address,
                    liquidators,
                    health_factor_threshold,
                    profit_threshold_usd,
                )
                results.append(result)
                log_batch_result(
                    log_index,
                    borrower,
                    result.outcome.value,
                    {
                        "skip_reason": result.skip_reason.value if result.skip_reason else None,
                        "tx_hash": result.tx_hash,
                        "profit_usd": str(result.profit_usd),
                        "error": result.error,
                        "error_kind": result.error_kind,
                    },
                )

        summary = summarize_results(results)
        self._logger.info(
            "[%d] Run complete: total=%d liquidated=%d skipped=%d failed=%d profit=$%s",
            log_index,
            summary.total,
            summary.liquidated,
            summary.skipped,
            summary.failed,
            summary.total_profit_usd,
        )
        return results

    # ------------------------------------------------------------------
    # Per-borrower state machine
    # ------------------------------------------------------------------

    async def _process_borrower(
        self,
        log_index: int,
        borrower: str,
        operator_address: str,
        liquidators: dict[FundingMode, str],
        health_factor_threshold: Decimal,
        profit_threshold_usd: Decimal,
    ) -> BatchResult:
        try:
            evaluation = await self._evaluator.evaluate(
                borrower,
                health_factor_threshold,
                profit_threshold_usd,
                liquidators=liquidators,
                retry_policy=self._retry_policy,
            )
            if isinstance(evaluation, SkippedLiquidation):
                self._log_skip(log_index, evaluation)
                return BatchResult.skipped(borrower, evaluation.reason)

            return await self._execute(log_index, evaluation, operator_address, liquidators)
        except ConfigurationError:
            raise
        except Exception as e:
            error_kind = classify_error(e)
            log = self._logger.error if error_kind == "unexpected" else self._logger.warning
            log(
                "[%d] Borrower %s failed (%s): %s",
                log_index,
                borrower,
                error_kind,
                e,
                exc_info=error_kind == "unexpected",
            )
            await self._notify_failure(log_index, borrower, str(e), error_kind)
            return BatchResult.failed(borrower, str(e), error_kind)

    async def _execute(
        self,
        log_index: int,
        plan: LiquidationPlan,
        operator_address: str,
        liquidators: dict[FundingMode, str],
    ) -> BatchResult:
        target = liquidators[plan.funding_mode]

        self._logger.info(
            "[%d] Executing liquidation: borrower=%s hf=%s collateral=%s debt=%s "
            "debt_to_cover=%d expected_profit=$%s via %s",
            log_index,
            plan.borrower,
            plan.health_factor,
            plan.collateral_token.symbol,
            plan.debt_token.symbol,
            plan.debt_to_cover,
            plan.expected_profit_usd,
            plan.funding_mode.value,
        )
        outcome = await self._executor.execute(plan, target, operator_address)

        if outcome.status == TxStatus.SUCCESS:
            self._logger.info(
                "[%d] Liquidated %s: tx=%s profit=$%s",
                log_index,
                plan.borrower,
                outcome.tx_hash or "(dry run)",
                outcome.realized_profit_usd,
            )
            if self._notifier is not None:
                await self._notifier.notify_liquidation(log_index, plan, outcome)
            return BatchResult.liquidated(plan.borrower, outcome.tx_hash, outcome.realized_profit_usd)

        error_kind = "reverted" if outcome.status == TxStatus.REVERTED else "timeout"
        error = outcome.reason or outcome.status.value
        if outcome.tx_hash:
            error = f"{error} (tx {outcome.tx_hash})"
        self._logger.warning(
            "[%d] Liquidation of %s %s: %s", log_index, plan.borrower, outcome.status.value, error
        )
        await self._notify_failure(log_index, plan.borrower, error, error_kind)
        return BatchResult.failed(plan.borrower, error, error_kind)

    def _log_skip(self, log_index: int, skipped: SkippedLiquidation) -> None:
        if skipped.collateral_token is not None and skipped.debt_token is not None:
            self._logger.info(
                "[%d] Skipped %s (%s): hf=%s collateral=%s debt=%s profit=%s",
                log_index,
                skipped.borrower,
                skipped.reason.value,
                skipped.health_factor,
                skipped.collateral_token.symbol,
                skipped.debt_token.symbol,
                skipped.expected_profit_usd,
            )
        else:
            self._logger.info(
                "[%d] Skipped %s (%s): hf=%s",
                log_index,
                skipped.borrower,
                skipped.reason.value,
                skipped.health_factor,
            )

    async def _notify_failure(self, log_index: int, borrower: str, error: str, error_kind: str) -> None:
        if self._notifier is not None:
            await self._notifier.notify_failure(log_index, borrower, error, error_kind)
