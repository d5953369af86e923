"""
Transaction submission layer for the dLEND Odos Liquidation Bot.

Signs, simulates (eth_call), submits and confirms transactions for the
operator account with local nonce management.

Usage:
    submitter = TxSubmitter(ctx, safety)
    receipt = await submitter.submit_and_wait(tx)
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Any, cast

from eth_typing import HexStr
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.types import TxParams

from bot_logging.logger_manager import setup_module_logger
from config.loader import get_config
from shared.constants import DEFAULT_CONFIRMATION_TIMEOUT_SECONDS, DEFAULT_CONFIRMATIONS

if TYPE_CHECKING:
    from core.safety import SafetyState
    from shared.types import ChainContext

# Error(string) function selector: first 4 bytes of keccak256("Error(string)")
_ERROR_SELECTOR = bytes.fromhex("08c379a0")


class TxSubmitterError(Exception):
    """Base error for transaction submission failures."""


class SimulationFailedError(TxSubmitterError):
    """Raised when eth_call simulation reverts."""


class TransactionRevertedError(TxSubmitterError):
    """Raised when a confirmed transaction has status=0 (reverted)."""

    def __init__(
        self,
        message: str,
        tx_hash: str = "",
        gas_used: int = 0,
        block_number: int | None = None,
    ):
        super().__init__(message)
        self.tx_hash = tx_hash
        self.gas_used = gas_used
        self.block_number = block_number


class TransactionTimeoutError(TxSubmitterError):
    """Raised when a transaction is not confirmed within the timeout."""

    def __init__(self, message: str, tx_hash: str = ""):
        super().__init__(message)
        self.tx_hash = tx_hash


class TxSubmitter:
    """
    Transaction submitter with nonce management.

    Reads and simulation go through the context's RPC. When the chain config
    carries ``rpc.private_submission_url`` signed transactions are broadcast
    there instead.
    """

    def __init__(self, ctx: ChainContext, safety: SafetyState) -> None:
        self._ctx = ctx
        self._w3 = ctx.w3
        self._safety = safety
        self._private_key = ctx.private_key
        self._user_address = Web3.to_checksum_address(ctx.operator_address)

        cfg = get_config()
        tx_timing = cfg.get_timing_config().get("transaction", {})
        self._confirmation_timeout: float = tx_timing.get(
            "confirmation_timeout_seconds", DEFAULT_CONFIRMATION_TIMEOUT_SECONDS
        )
        self._simulation_timeout: float = tx_timing.get("simulation_timeout_seconds", 15)
        self._confirmations: int = tx_timing.get("confirmations", DEFAULT_CONFIRMATIONS)
        self._poll_interval: float = tx_timing.get("receipt_poll_interval_seconds", 1)

        submission_url = ""
        if ctx.chain_id is not None:
            submission_url = (
                cfg.get_chain_config(ctx.chain_id).get("rpc", {}).get("private_submission_url", "")
            )
        self._submit_w3 = AsyncWeb3(AsyncHTTPProvider(submission_url)) if submission_url else ctx.w3

        # Gas
        self._gas_price_buffer: float = 1.1  # 10% safety buffer

        # Nonce state
        self._nonce: int | None = None
        self._nonce_lock = asyncio.Lock()

        self._logger = setup_module_logger(
            "tx_submitter", "tx_submitter.log", module_folder="TX_Submitter_Logs"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def simulate(self, tx: dict[str, Any], block_identifier: Any = None) -> bytes:
        """
        Dry-run a transaction via eth_call.

        Returns output bytes on success.  Raises ``SimulationFailedError``
        on revert or timeout.
        """
        call_args: tuple[Any, ...] = (cast(TxParams, tx),)
        if block_identifier is not None:
            call_args += (block_identifier,)
        try:
            result = await asyncio.wait_for(
                self._w3.eth.call(*call_args),
                timeout=self._simulation_timeout,
            )
            self._logger.debug("Simulation succeeded: %d bytes output", len(result))
            return result
        except asyncio.TimeoutError as exc:
            raise SimulationFailedError(
                f"Simulation timed out after {self._simulation_timeout}s"
            ) from exc
        except Exception as exc:
            reason = self.extract_revert_reason(exc)
            raise SimulationFailedError(f"Simulation reverted: {reason}") from exc

    async def submit(self, tx: dict[str, Any]) -> str:
        """
        Sign and submit a transaction.

        Assigns nonce, chain ID, and gas price automatically.
        Returns the transaction hash as a hex string.
        """
        nonce = await self._get_next_nonce()
        max_fee, priority_fee = await self.get_gas_price()
        chain_id = await self._ctx.resolve_chain_id()

        tx = {
            **tx,
            "chainId": chain_id,
            "nonce": nonce,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": priority_fee,
            "type": 2,  # EIP-1559
        }

        signed = self._w3.eth.account.sign_transaction(tx, self._private_key)
        try:
            tx_hash = await self._submit_w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as exc:
            # The nonce was consumed locally but never reached the mempool
            await self._recover_nonce()
            raise TxSubmitterError(f"send_raw_transaction failed: {exc}") from exc

        tx_hash_hex = Web3.to_hex(tx_hash)
        self._logger.info(
            "TX submitted: hash=%s nonce=%d maxFee=%d priorityFee=%d",
            tx_hash_hex,
            nonce,
            max_fee,
            priority_fee,
        )
        return tx_hash_hex

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """
        Poll for a transaction receipt until it has ``confirmations`` blocks.

        Raises ``TransactionRevertedError`` if status=0,
        ``TransactionTimeoutError`` on timeout.
        """
        if timeout is None:
            timeout = self._confirmation_timeout

        start = time.monotonic()

        while True:
            try:
                receipt = await self._w3.eth.get_transaction_receipt(cast(HexStr, tx_hash))
            except Exception:
                # Not yet mined (TransactionNotFound) or a flaky RPC read
                receipt = None

            if receipt is not None:
                if receipt.get("status") == 0:
                    raise TransactionRevertedError(
                        f"TX reverted on-chain: {tx_hash}",
                        tx_hash=tx_hash,
                        gas_used=int(receipt.get("gasUsed", 0)),
                        block_number=receipt.get("blockNumber"),
                    )
                if await self._has_confirmations(receipt):
                    self._logger.info(
                        "TX confirmed: hash=%s block=%s gasUsed=%s",
                        tx_hash,
                        receipt.get("blockNumber"),
                        receipt.get("gasUsed"),
                    )
                    return dict(receipt)

            elapsed = time.monotonic() - start
            if elapsed >= timeout:
                raise TransactionTimeoutError(
                    f"TX {tx_hash} not confirmed after {timeout}s", tx_hash=tx_hash
                )

            await asyncio.sleep(self._poll_interval)

    async def submit_and_wait(self, tx: dict[str, Any]) -> dict[str, Any]:
        """
        Full submission flow: simulate → safety check → submit → wait.

        Returns the transaction receipt dict.
        """
        # 1. Simulate
        await self.simulate(tx)

        # 2. Safety gate
        max_fee, _ = await self.get_gas_price()
        check = self._safety.can_submit_tx(max_fee)
        if not check.can_proceed:
            raise TxSubmitterError(f"Safety gate blocked: {check.reason}")

        # 3. Submit
        tx_hash = await self.submit(tx)

        # 4. Wait for receipt
        return await self.wait_for_receipt(tx_hash)

    async def get_gas_price(self) -> tuple[int, int]:
        """
        Get current gas price as (maxFeePerGas, maxPriorityFeePerGas) in Wei.

        Applies a 10% buffer to the base gas price.
        """
        base_price = await self._w3.eth.gas_price
        max_fee = int(base_price * self._gas_price_buffer)
        priority_fee = max(int(base_price * 0.1), 1)
        max_fee = max(max_fee, priority_fee)
        return max_fee, priority_fee

    async def replay_revert_reason(self, tx: dict[str, Any], block_number: int | None) -> str:
        """Re-run a reverted call at its block to recover the revert reason."""
        try:
            await self.simulate(tx, block_identifier=block_number)
        except SimulationFailedError as exc:
            return str(exc).removeprefix("Simulation reverted: ")
        return "Unknown revert"

    # ------------------------------------------------------------------
    # Nonce management
    # ------------------------------------------------------------------

    async def _get_next_nonce(self) -> int:
        """Thread-safe nonce increment with asyncio.Lock."""
        async with self._nonce_lock:
            if self._nonce is None:
                self._nonce = await self._w3.eth.get_transaction_count(
                    self._user_address, "pending"
                )
                self._logger.info("Nonce initialized from chain: %d", self._nonce)
            nonce = self._nonce
            self._nonce += 1
            return nonce

    async def _recover_nonce(self) -> None:
        """Re-sync local nonce counter from chain state."""
        async with self._nonce_lock:
            pending = await self._w3.eth.get_transaction_count(self._user_address, "pending")
            old_nonce = self._nonce
            self._nonce = pending
            self._logger.warning("Nonce recovered: local=%s pending=%d", old_nonce, pending)

    async def _has_confirmations(self, receipt: Any) -> bool:
        if self._confirmations <= 1:
            return True
        latest = await self._w3.eth.block_number
        return latest - int(receipt["blockNumber"]) + 1 >= self._confirmations

    # ------------------------------------------------------------------
    # Revert decoding
    # ------------------------------------------------------------------

    @classmethod
    def extract_revert_reason(cls, exc: Exception) -> str:
        """Pull a readable revert reason out of a web3 call exception."""
        data = getattr(exc, "data", None)
        if isinstance(data, (bytes, str)) and data:
            return cls.decode_revert_reason(data)
        message = getattr(exc, "message", None) or str(exc)
        return message or "Unknown revert"

    @staticmethod
    def decode_revert_reason(data: bytes | str) -> str:
        """
        Decode a Solidity revert reason from raw data.

        Handles ``Error(string)`` selector (0x08c379a0).
        Returns "Unknown revert" for empty or unrecognized data.
        """
        if not data:
            return "Unknown revert"

        if isinstance(data, str):
            try:
                data = bytes.fromhex(data.removeprefix("0x"))
            except ValueError:
                return data

        if len(data) < 4:
            return data.hex()

        if data[:4] == _ERROR_SELECTOR and len(data) >= 68:
            # ABI-encoded Error(string): selector(4) + offset(32) + length(32) + data
            str_len = int.from_bytes(data[36:68], "big")
            return data[68 : 68 + str_len].decode("utf-8", errors="replace")

        return data.hex()
