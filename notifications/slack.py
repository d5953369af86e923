"""
Slack incoming-webhook notifier for liquidation outcomes.

Best effort: a missing webhook URL disables notifications, and delivery
failures are logged without interrupting the batch.

Usage:
    notifier = SlackNotifier(webhook_url, explorer_url="https://sonicscan.org")
    await notifier.notify_liquidation(log_index, plan, outcome)
    await notifier.close()
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import aiohttp

from bot_logging.logger_manager import setup_module_logger
from shared.types import LiquidationPlan, TxOutcome

_POST_TIMEOUT_SECONDS = 10


class SlackNotifier:
    """Posts liquidation results and error alerts to a Slack webhook."""

    def __init__(
        self,
        webhook_url: str | None,
        explorer_url: str = "",
        network_name: str = "",
    ) -> None:
        self._webhook_url = webhook_url or ""
        self._explorer_url = explorer_url.rstrip("/")
        self._network_name = network_name
        self._session: aiohttp.ClientSession | None = None

        self._logger = setup_module_logger(
            "notification", "notification.log", module_folder="Notification_Logs"
        )

    @property
    def enabled(self) -> bool:
        return bool(self._webhook_url)

    async def notify_liquidation(
        self, log_index: int, plan: LiquidationPlan, outcome: TxOutcome
    ) -> bool:
        message = (
            ":moneybag: *Liquidation Completed* :moneybag:\n\n"
            f"*Liquidated Account*: `{plan.borrower}`\n"
            f"*Funding*: `{plan.funding_mode.value}`\n\n"
            "*Liquidation Details:*\n"
            f"• Debt repaid: {plan.debt_to_cover} {plan.debt_token.symbol} (base units)\n"
            f"• Collateral seized: {plan.expected_collateral_out} "
            f"{plan.collateral_token.symbol} (base units)\n"
            f"• Health factor: {plan.health_factor}\n"
            f"• Profit: ${outcome.realized_profit_usd}\n"
        )
        if outcome.tx_hash:
            message += f"• Transaction: {self._tx_link(outcome.tx_hash)}\n"
        else:
            message += "• Transaction: dry run, nothing submitted\n"
        return await self._post(self._decorate(log_index, message), ":robot_face:")

    async def notify_failure(
        self, log_index: int, borrower: str, error: str, error_kind: str
    ) -> bool:
        message = (
            ":rotating_light: *Liquidation Failed* :rotating_light:\n\n"
            f"*Account*: `{borrower}`\n"
            f"*Kind*: `{error_kind}`\n"
            f"*Error*: {error}\n"
        )
        return await self._post(self._decorate(log_index, message), ":warning:")

    async def notify_error(self, message: str) -> bool:
        text = f":rotating_light: *Error Notification* :rotating_light:\n\n{message}\n"
        return await self._post(self._decorate(None, text), ":warning:")

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _decorate(self, log_index: int | None, message: str) -> str:
        message += f"\nTime: `{time.strftime('%Y-%m-%d %H:%M:%S')}`"
        if self._network_name:
            message += f"\nNetwork: `{self._network_name}`"
        if log_index is not None:
            message += f"\nRun: `{log_index}`"
        return message

    def _tx_link(self, tx_hash: str) -> str:
        if not self._explorer_url:
            return f"`{tx_hash}`"
        return f"<{self._explorer_url}/tx/{tx_hash}|View Transaction on Explorer>"

    async def _post(self, text: str, icon_emoji: str) -> bool:
        if not self.enabled:
            return False

        payload: dict[str, Any] = {
            "text": text,
            "username": "Liquidation Bot",
            "icon_emoji": icon_emoji,
        }
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        timeout = aiohttp.ClientTimeout(total=_POST_TIMEOUT_SECONDS)
        try:
            async with self._session.post(self._webhook_url, json=payload, timeout=timeout) as resp:
                resp.raise_for_status()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._logger.warning("Failed to post Slack notification: %s", e)
            return False
        self._logger.debug("Slack notification posted")
        return True
