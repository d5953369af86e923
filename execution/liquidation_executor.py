"""
Liquidation execution adapter.

Wraps the flash-mint / flash-loan liquidator contracts: assembles the Odos
swap calldata for a plan, encodes ``liquidate(...)``, simulates, submits and
classifies the confirmed result as a ``TxOutcome``. Reverts and timeouts are
reported, never retried within the same pass.

Usage:
    executor = LiquidationExecutor(ctx, aggregator, tx_submitter, safety)
    outcome = await executor.execute(plan, flash_mint_liquidator, operator)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from web3 import Web3

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from config.validate import ConfigurationError
from execution.tx_submitter import (
    SimulationFailedError,
    TransactionRevertedError,
    TransactionTimeoutError,
    TxSubmitterError,
)
from shared.constants import DEFAULT_LIQUIDATION_GAS_LIMIT, DEFAULT_PROXY_CONFIG_GAS_LIMIT
from shared.types import LiquidationPlan, TxOutcome, TxStatus

if TYPE_CHECKING:
    from core.safety import SafetyState
    from execution.aggregator_client import AggregatorClient
    from execution.tx_submitter import TxSubmitter
    from shared.types import ChainContext


class LiquidationExecutor:
    """Submits liquidation calls against either liquidator contract variant."""

    def __init__(
        self,
        ctx: ChainContext,
        aggregator_client: AggregatorClient,
        tx_submitter: TxSubmitter,
        safety: SafetyState,
    ) -> None:
        self._ctx = ctx
        self._aggregator = aggregator_client
        self._tx_submitter = tx_submitter
        self._safety = safety

        cfg = get_config()
        self._liquidator_abi = cfg.get_abi("odos_liquidator")
        self._gas_limit: int = cfg.get_liquidator_config().get(
            "liquidation_gas_limit", DEFAULT_LIQUIDATION_GAS_LIMIT
        )

        self._logger = setup_module_logger(
            "executor", "liquidation_executor.log", module_folder="Executor_Logs"
        )

    # ------------------------------------------------------------------
    # Liquidation
    # ------------------------------------------------------------------

    async def execute(
        self, plan: LiquidationPlan, target_contract: str, operator_address: str
    ) -> TxOutcome:
        """
        Execute ``plan`` through ``target_contract`` from ``operator_address``.

        Returns SUCCESS / REVERTED / TIMEOUT. Raises ``TxSubmitterError`` when
        the safety gate blocks submission or the node rejects the transaction,
        and ``AggregatorError`` when calldata cannot be assembled.
        ``operator_address`` must be the signing account of the chain context.
        """
        if operator_address.lower() != self._ctx.operator_address.lower():
            raise ConfigurationError(
                f"Operator {operator_address} does not match signing account "
                f"{self._ctx.operator_address}"
            )

        # 1. Safety gate
        check = self._safety.can_liquidate()
        if not check.can_proceed:
            raise TxSubmitterError(f"Safety gate blocked: {check.reason}")

        # 2. Assemble swap calldata for the liquidator as swap user
        target = Web3.to_checksum_address(target_contract)
        swap = await self._aggregator.assemble_swap(plan.swap_quote.path_id, target)

        # 3. Encode liquidate(user, collateral, debt, debtToCover, swapData)
        liquidator = self._ctx.w3.eth.contract(address=target, abi=self._liquidator_abi)
        calldata = liquidator.encode_abi(
            "liquidate",
            args=[
                Web3.to_checksum_address(plan.borrower),
                Web3.to_checksum_address(plan.collateral_token.address),
                Web3.to_checksum_address(plan.debt_token.address),
                plan.debt_to_cover,
                swap.calldata,
            ],
        )

        tx: dict[str, Any] = {
            "from": Web3.to_checksum_address(self._ctx.operator_address),
            "to": target,
            "data": calldata,
            "gas": self._gas_limit,
            "value": 0,
        }

        # 4. Simulate
        try:
            await self._tx_submitter.simulate(tx)
        except SimulationFailedError as e:
            self._logger.warning("Simulation failed for %s: %s", plan.borrower, e)
            return TxOutcome(status=TxStatus.REVERTED, reason=str(e))
        self._logger.info(
            "Simulation passed for %s via %s (%s)",
            plan.borrower,
            target,
            plan.funding_mode.value,
        )

        # 5. Submit (if not dry run)
        if self._safety.is_dry_run:
            self._logger.info(
                "DRY RUN: Would liquidate %s debt_to_cover=%d %s expected_profit=$%s",
                plan.borrower,
                plan.debt_to_cover,
                plan.debt_token.symbol,
                plan.expected_profit_usd,
            )
            return TxOutcome(
                status=TxStatus.SUCCESS,
                realized_profit_usd=plan.expected_profit_usd,
                reason="dry run",
            )

        max_fee, _ = await self._tx_submitter.get_gas_price()
        gas_check = self._safety.can_submit_tx(max_fee)
        if not gas_check.can_proceed:
            raise TxSubmitterError(f"Safety gate blocked: {gas_check.reason}")

        tx_hash = await self._tx_submitter.submit(tx)
        self._safety.record_liquidation()

        # 6. Confirm and classify
        try:
            receipt = await self._tx_submitter.wait_for_receipt(tx_hash)
        except TransactionRevertedError as e:
            reason = await self._tx_submitter.replay_revert_reason(tx, e.block_number)
            self._logger.warning(
                "Liquidation reverted: borrower=%s tx=%s reason=%s", plan.borrower, tx_hash, reason
            )
            return TxOutcome(
                status=TxStatus.REVERTED, tx_hash=tx_hash, reason=reason, gas_used=e.gas_used
            )
        except TransactionTimeoutError as e:
            self._logger.warning("Liquidation timed out: borrower=%s tx=%s", plan.borrower, tx_hash)
            return TxOutcome(status=TxStatus.TIMEOUT, tx_hash=tx_hash, reason=str(e))

        receipt_hash = receipt.get("transactionHash")
        confirmed_hash = Web3.to_hex(receipt_hash) if receipt_hash else tx_hash
        gas_used = int(receipt.get("gasUsed", 0))
        self._logger.info(
            "Liquidation confirmed: borrower=%s tx=%s gasUsed=%d expected_profit=$%s",
            plan.borrower,
            confirmed_hash,
            gas_used,
            plan.expected_profit_usd,
        )
        return TxOutcome(
            status=TxStatus.SUCCESS,
            tx_hash=confirmed_hash,
            realized_profit_usd=plan.expected_profit_usd,
            gas_used=gas_used,
        )

    # ------------------------------------------------------------------
    # Proxy configuration
    # ------------------------------------------------------------------

    async def configure_proxy_contracts(
        self, contract_address: str, token_proxy_map: dict[str, str]
    ) -> list[str]:
        """
        Call ``setProxyContract(token, proxy)`` for every configured pair.

        Returns the confirmed transaction hashes (empty in dry-run mode).
        """
        target = Web3.to_checksum_address(contract_address)
        liquidator = self._ctx.w3.eth.contract(address=target, abi=self._liquidator_abi)
        tx_hashes: list[str] = []

        for token, proxy in token_proxy_map.items():
            self._logger.info("Setting proxy contract for %s to %s on %s", token, proxy, target)
            calldata = liquidator.encode_abi(
                "setProxyContract",
                args=[Web3.to_checksum_address(token), Web3.to_checksum_address(proxy)],
            )
            tx = {
                "from": Web3.to_checksum_address(self._ctx.operator_address),
                "to": target,
                "data": calldata,
                "gas": DEFAULT_PROXY_CONFIG_GAS_LIMIT,
                "value": 0,
            }

            if self._safety.is_dry_run:
                await self._tx_submitter.simulate(tx)
                self._logger.info("DRY RUN: Would set proxy %s -> %s", token, proxy)
                continue

            receipt = await self._tx_submitter.submit_and_wait(tx)
            receipt_hash = receipt.get("transactionHash")
            tx_hashes.append(Web3.to_hex(receipt_hash) if receipt_hash else "")

        return tx_hashes
