"""
dLEND Odos Liquidation Bot: main entrypoint.

Single-process asyncio runner. Borrowers are evaluated and liquidated
strictly one at a time (see core/batch_runner.py); the only concurrency is
the event loop waiting on RPC and Odos I/O.

Subcommands:
    liquidate          Print per-user health factors, then run batches over
                       the given borrowers (optionally every --interval seconds).
    configure-proxies  Call setProxyContract(token, proxy) on both liquidator
                       contracts for every entry in token_proxy_contract_map.

Usage:
    python main.py liquidate 0xabc... 0xdef...
    python main.py liquidate --file borrowers.txt --interval 60 --report logs/report.json
    python main.py configure-proxies

Exit status is 1 on configuration failure, 0 otherwise; individual
liquidation failures are not process-fatal.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import signal
import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv
from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from bot_logging.logger_manager import (
    attach_console_handler,
    create_module_log_directories,
    setup_module_logger,
)
from config.loader import get_config, get_env_var
from config.validate import ConfigurationError, validate_all_configs
from core.batch_runner import LiquidationBot, summarize_results
from core.evaluator import LiquidationEvaluator
from core.safety import SafetyState
from execution import (
    AggregatorClient,
    ContractCallError,
    LiquidationExecutor,
    PoolClient,
    TokenResolver,
    TxSubmitter,
)
from notifications.slack import SlackNotifier
from shared.constants import (
    DEFAULT_QUOTE_RETRY_ATTEMPTS,
    DEFAULT_QUOTE_RETRY_BACKOFF_SECONDS,
    SONIC_MAINNET_CHAIN_ID,
)
from shared.serialization_utils import dump_batch_report
from shared.types import BatchResult, ChainContext, RetryPolicy

# ---------------------------------------------------------------------------
# Module logger (mirrored to stdout for CLI runs)
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log", module_folder="Main_Logs")
attach_console_handler(_logger)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


@dataclass
class BotComponents:
    ctx: ChainContext
    pool_client: PoolClient
    aggregator_client: AggregatorClient
    safety: SafetyState
    executor: LiquidationExecutor
    bot: LiquidationBot
    notifier: SlackNotifier
    flash_mint_liquidator: str
    flash_loan_liquidator: str

    async def close(self) -> None:
        await self.aggregator_client.close()
        await self.notifier.close()


def _log_banner(chain_id: int, rpc_url: str, operator: str, dry_run: bool, liq_cfg: dict) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("dLEND Odos Liquidation Bot starting")
    _logger.info("=" * 60)
    _logger.info("  chain_id          : %d", chain_id)
    _logger.info(
        "  rpc               : %s...%s", rpc_url[:25], rpc_url[-6:] if len(rpc_url) > 31 else ""
    )
    _logger.info("  operator          : %s", operator)
    _logger.info("  dry_run           : %s", dry_run)
    _logger.info("  batch_size        : %s", liq_cfg.get("health_factor_batch_size"))
    _logger.info("  hf_threshold      : %s", liq_cfg.get("health_factor_threshold"))
    _logger.info("  profit_threshold  : $%s", liq_cfg.get("profitable_threshold_usd"))
    _logger.info("=" * 60)


async def _build_components(chain_id: int) -> BotComponents:
    """Validate configuration and wire every component in dependency order."""
    validate_all_configs(chain_id)

    cfg = get_config()
    chain_cfg = cfg.get_chain_config(chain_id)
    liq_cfg = cfg.get_liquidator_config()
    agg_cfg = cfg.get_aggregator_config()

    operator_address: str = os.getenv("OPERATOR_ADDRESS", "")
    private_key: str = os.getenv("OPERATOR_PRIVATE_KEY", "")
    if not operator_address or not Web3.is_address(operator_address):
        raise ConfigurationError("OPERATOR_ADDRESS not set or invalid in environment")

    safety = SafetyState()
    if not safety.is_dry_run and not private_key:
        raise ConfigurationError("OPERATOR_PRIVATE_KEY is required when dry_run is disabled")

    rpc_url: str = chain_cfg["rpc"]["http_url"]
    _log_banner(chain_id, rpc_url, operator_address, safety.is_dry_run, liq_cfg)

    w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    if not await w3.is_connected():
        raise ConfigurationError(f"Cannot connect to RPC at {rpc_url}")

    ctx = ChainContext(
        w3=w3,
        chain_id=chain_id,
        operator_address=Web3.to_checksum_address(operator_address),
        private_key=private_key,
    )

    try:
        pool_client = await PoolClient.from_addresses_provider(
            ctx, chain_cfg["contracts"]["pool_addresses_provider"]
        )
    except ContractCallError as exc:
        raise ConfigurationError(f"Cannot resolve pool contracts: {exc}") from exc

    token_resolver = TokenResolver(ctx)
    aggregator_client = AggregatorClient(token_resolver, expected_chain_id=chain_id)
    tx_submitter = TxSubmitter(ctx, safety)
    executor = LiquidationExecutor(ctx, aggregator_client, tx_submitter, safety)
    evaluator = LiquidationEvaluator(ctx, pool_client, token_resolver, aggregator_client)
    notifier = SlackNotifier(
        os.getenv("SLACK_WEBHOOK_URL"),
        explorer_url=chain_cfg.get("explorer_url", ""),
        network_name=chain_cfg.get("name", str(chain_id)),
    )

    retry_cfg = agg_cfg.get("retry", {})
    retry_policy = RetryPolicy(
        max_attempts=retry_cfg.get("max_attempts", DEFAULT_QUOTE_RETRY_ATTEMPTS),
        backoff_seconds=retry_cfg.get("backoff_seconds", DEFAULT_QUOTE_RETRY_BACKOFF_SECONDS),
    )
    bot = LiquidationBot(
        ctx,
        pool_client,
        evaluator,
        executor,
        aggregator_client,
        safety,
        notifier=notifier,
        retry_policy=retry_policy,
    )

    return BotComponents(
        ctx=ctx,
        pool_client=pool_client,
        aggregator_client=aggregator_client,
        safety=safety,
        executor=executor,
        bot=bot,
        notifier=notifier,
        flash_mint_liquidator=chain_cfg["contracts"].get("flash_mint_liquidator", ""),
        flash_loan_liquidator=chain_cfg["contracts"].get("flash_loan_liquidator", ""),
    )


# ---------------------------------------------------------------------------
# Borrower input
# ---------------------------------------------------------------------------


def read_borrower_addresses(addresses: list[str], file_path: str | None) -> list[str]:
    """Collect borrowers from arguments and/or a file (one per line, '#' comments)."""
    collected = list(addresses)
    if file_path:
        try:
            text = Path(file_path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigurationError(f"Cannot read borrower file {file_path}: {exc}") from exc
        for line in text.splitlines():
            entry = line.split("#", 1)[0].strip()
            if entry:
                collected.append(entry)

    invalid = [a for a in collected if not Web3.is_address(a)]
    if invalid:
        raise ConfigurationError(f"Invalid borrower address(es): {', '.join(invalid)}")
    if not collected:
        raise ConfigurationError("No borrower addresses given")

    # Preserve caller order, drop duplicates
    seen: set[str] = set()
    ordered = []
    for address in collected:
        checksum = Web3.to_checksum_address(address)
        if checksum not in seen:
            seen.add(checksum)
            ordered.append(checksum)
    return ordered


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


async def _run_pass(
    components: BotComponents, log_index: int, borrowers: list[str], liq_cfg: dict
) -> list[BatchResult]:
    await components.bot.log_health_factors(log_index, borrowers)
    return await components.bot.run_bot_batch(
        log_index,
        borrowers,
        components.ctx.operator_address,
        components.flash_mint_liquidator,
        components.flash_loan_liquidator,
        int(liq_cfg["health_factor_batch_size"]),
        Decimal(str(liq_cfg["health_factor_threshold"])),
        Decimal(str(liq_cfg["profitable_threshold_usd"])),
    )


async def _run_liquidate(args: argparse.Namespace, chain_id: int) -> None:
    borrowers = read_borrower_addresses(args.addresses, args.file)
    components = await _build_components(chain_id)
    liq_cfg = get_config().get_liquidator_config()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    try:
        log_index = 0
        while not shutdown_event.is_set():
            pass_task = asyncio.create_task(
                _run_pass(components, log_index, borrowers, liq_cfg), name=f"pass-{log_index}"
            )
            stop_task = asyncio.create_task(shutdown_event.wait(), name="shutdown")
            await asyncio.wait({pass_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            stop_task.cancel()

            if not pass_task.done():
                # Interrupted mid-pass: remaining borrowers are re-evaluated next run
                _logger.info("Cancelling pass %d", log_index)
                pass_task.cancel()
                try:
                    await pass_task
                except asyncio.CancelledError:
                    pass
                break

            results = pass_task.result()
            summary = summarize_results(results)
            _logger.info(
                "Pass %d: liquidated=%d skipped=%d failed=%d profit=$%s",
                log_index,
                summary.liquidated,
                summary.skipped,
                summary.failed,
                summary.total_profit_usd,
            )
            if args.report:
                path = dump_batch_report(
                    args.report,
                    {
                        "log_index": log_index,
                        "chain_id": chain_id,
                        "summary": summary,
                        "results": results,
                    },
                )
                _logger.info("Report written to %s", path)

            if not args.interval:
                break
            log_index += 1
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=args.interval)
            except asyncio.TimeoutError:
                continue
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await components.close()
        _logger.info("Shutdown complete")


async def _run_configure_proxies(chain_id: int) -> None:
    components = await _build_components(chain_id)
    proxy_map: dict[str, str] = get_config().get_liquidator_config().get(
        "token_proxy_contract_map", {}
    )
    try:
        if not proxy_map:
            _logger.info("token_proxy_contract_map is empty, nothing to configure")
            return
        for name, contract in (
            ("flash-mint", components.flash_mint_liquidator),
            ("flash-loan", components.flash_loan_liquidator),
        ):
            if not contract:
                raise ConfigurationError(f"No {name} liquidator contract configured")
            tx_hashes = await components.executor.configure_proxy_contracts(contract, proxy_map)
            _logger.info("Configured %d proxies on %s liquidator %s", len(proxy_map), name, contract)
            for tx_hash in tx_hashes:
                _logger.info("  tx: %s", tx_hash)
    finally:
        await components.close()


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="dLEND Odos flash liquidation bot")
    parser.add_argument(
        "--chain-id",
        type=int,
        default=None,
        help="Chain id (default: CHAIN_ID env var, else Sonic mainnet)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    liquidate = subparsers.add_parser("liquidate", help="Liquidate the given borrowers")
    liquidate.add_argument("addresses", nargs="*", help="Borrower addresses")
    liquidate.add_argument("--file", type=str, default=None, help="File with one address per line")
    liquidate.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Repeat every N seconds until SIGINT/SIGTERM",
    )
    liquidate.add_argument("--report", type=str, default=None, help="Write a JSON batch report")

    subparsers.add_parser("configure-proxies", help="Set token proxy contracts on both liquidators")
    return parser


async def _run(args: argparse.Namespace) -> None:
    chain_id = args.chain_id or get_env_var("CHAIN_ID", SONIC_MAINNET_CHAIN_ID, int)
    if args.command == "liquidate":
        await _run_liquidate(args, chain_id)
    else:
        await _run_configure_proxies(chain_id)


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point. Returns the process exit code."""
    load_dotenv()
    create_module_log_directories()
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(_run(args))
    except ConfigurationError as exc:
        _logger.critical("Configuration error:\n%s", exc)
        return 1
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
    return 0


if __name__ == "__main__":
    sys.exit(main())
