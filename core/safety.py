"""
Safety gate-keeper for the dLEND Odos Liquidation Bot.

Centralized kill switches checked before every liquidation submission.
Default-to-safe: if config is missing or corrupt, defaults to dry_run=True
and a zero gas-price ceiling.

Usage:
    from core.safety import SafetyState

    safety = SafetyState()
    check = safety.can_liquidate()
    if not check.can_proceed:
        print(f"Blocked: {check.reason}")
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import (
    DEFAULT_DRY_RUN,
    DEFAULT_MAX_GAS_PRICE_GWEI,
    DEFAULT_MAX_LIQUIDATIONS_PER_RUN,
)
from shared.types import SafetyCheck

_PROJECT_ROOT = Path(__file__).parent.parent
_SENTINEL_FILE = _PROJECT_ROOT / "PAUSE"


class SafetyState:
    """
    Centralized safety controls for liquidation submissions.

    Two tiers of defaults:
    - Config present but key missing: use DEFAULT_* constants
    - Config file missing/empty: lockdown (dry_run=True, max_gas_price=0)
    """

    def __init__(self, sentinel_file: Path = _SENTINEL_FILE) -> None:
        cfg = get_config().get_liquidator_config()
        self._sentinel_file = sentinel_file

        if cfg:
            self._dry_run: bool = cfg.get("dry_run", DEFAULT_DRY_RUN)
            self._max_gas_price_gwei: int = cfg.get(
                "max_gas_price_gwei", DEFAULT_MAX_GAS_PRICE_GWEI
            )
            self._max_liquidations_per_run: int = cfg.get(
                "max_liquidations_per_run", DEFAULT_MAX_LIQUIDATIONS_PER_RUN
            )
        else:
            # Config missing/corrupt: lockdown mode
            self._dry_run = True
            self._max_gas_price_gwei = 0
            self._max_liquidations_per_run = 0

        # Mutable state
        self._global_pause = False
        self._pause_reason = ""
        self._liquidations_this_run = 0

        self._logger = setup_module_logger(
            "safety", "safety.log", module_folder="Safety_Logs"
        )
        self._logger.info(
            "SafetyState initialized: dry_run=%s max_gas=%d gwei max_liquidations_per_run=%d",
            self._dry_run,
            self._max_gas_price_gwei,
            self._max_liquidations_per_run,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def is_paused(self) -> bool:
        """Check if liquidations are globally paused (includes sentinel file)."""
        self.check_pause_sentinel()
        return self._global_pause

    @property
    def is_dry_run(self) -> bool:
        return self._dry_run

    # ------------------------------------------------------------------
    # Gate checks
    # ------------------------------------------------------------------

    def can_liquidate(self) -> SafetyCheck:
        """Check whether another liquidation may be attempted in this run."""
        if self.is_paused:
            return SafetyCheck(
                can_proceed=False,
                reason=f"Global pause active: {self._pause_reason}",
            )

        if self._liquidations_this_run >= self._max_liquidations_per_run:
            return SafetyCheck(
                can_proceed=False,
                reason=(
                    f"Per-run liquidation limit reached: {self._liquidations_this_run}"
                    f"/{self._max_liquidations_per_run}"
                ),
            )

        return SafetyCheck(can_proceed=True, reason="All checks passed")

    def can_submit_tx(self, gas_price_wei: int) -> SafetyCheck:
        """Check whether a transaction can be submitted at the given gas price (wei)."""
        if self.is_paused:
            return SafetyCheck(
                can_proceed=False,
                reason=f"Global pause active: {self._pause_reason}",
            )

        if gas_price_wei > self._max_gas_price_gwei * 10**9:
            return SafetyCheck(
                can_proceed=False,
                reason=(
                    f"Gas price {Decimal(gas_price_wei) / 10**9} gwei exceeds "
                    f"max {self._max_gas_price_gwei} gwei"
                ),
            )

        return SafetyCheck(can_proceed=True, reason="Gas price acceptable")

    # ------------------------------------------------------------------
    # State mutations
    # ------------------------------------------------------------------

    def record_liquidation(self) -> None:
        """Record a submitted liquidation against the per-run limit."""
        self._liquidations_this_run += 1
        self._logger.debug("Liquidation recorded; run count: %d", self._liquidations_this_run)

    def reset_run(self) -> None:
        """Start a new scheduler pass."""
        self._liquidations_this_run = 0

    def trigger_global_pause(self, reason: str) -> None:
        """Activate the emergency kill switch."""
        self._global_pause = True
        self._pause_reason = reason
        self._logger.critical("GLOBAL PAUSE TRIGGERED: %s", reason)

    def check_pause_sentinel(self) -> bool:
        """Check for PAUSE file in project root (emergency manual override)."""
        exists = self._sentinel_file.exists()
        if exists and not self._global_pause:
            self.trigger_global_pause("PAUSE sentinel file detected")
        return exists
