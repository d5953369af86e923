"""
Centralized logging for the dLEND Odos Liquidation Bot.

Provides standardized logging with JSON and human-readable formatters,
per-module log files, and a structured JSON trace of liquidation outcomes.

Usage:
    from bot_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('evaluator', 'evaluator.log', module_folder='Evaluator_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from config.loader import get_config

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

_app_config = get_config().get_app_config()

_LOG_DIR = str(_PROJECT_ROOT / _app_config.get("logging", {}).get("log_dir", "logs"))
_MODULE_FOLDERS = _app_config.get("logging", {}).get(
    "module_folders",
    {
        "main": "Main_Logs",
        "batch_runner": "Batch_Runner_Logs",
        "evaluator": "Evaluator_Logs",
        "aggregator": "Aggregator_Logs",
        "pool_client": "Pool_Client_Logs",
        "token_resolver": "Token_Resolver_Logs",
        "executor": "Executor_Logs",
        "tx_submitter": "TX_Submitter_Logs",
        "safety": "Safety_Logs",
        "notification": "Notification_Logs",
    },
)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        # Include extra fields if present
        for key in (
            "log_index",
            "borrower",
            "outcome",
            "tx_hash",
            "chain_id",
            "error",
        ):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def create_module_log_directories() -> dict[str, str]:
    """
    Create organized log directory structure.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
) -> logging.Logger:
    """
    Create a module-specific logger with a file handler.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default INFO).
        module_folder: Subfolder within logs/ directory (e.g., 'Evaluator_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    if module_folder:
        log_path = os.path.join(_LOG_DIR, module_folder, log_file)
    else:
        log_path = os.path.join(_LOG_DIR, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    formatter: logging.Formatter
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


def attach_console_handler(logger: logging.Logger, level: int = logging.INFO) -> None:
    """Mirror a module logger to stdout (CLI runs)."""
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(
            handler, logging.FileHandler
        ):
            return
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(HumanReadableFormatter())
    logger.addHandler(console)


# ============================================================================
# LIQUIDATION TRACE (structured JSON lines)
# ============================================================================

_trace_logger: logging.Logger | None = None


def get_trace_logger() -> logging.Logger:
    """Get or create the JSON liquidation trace logger (lazy singleton)."""
    global _trace_logger
    if _trace_logger is None:
        _trace_logger = setup_module_logger(
            "liquidation_trace",
            "liquidation_trace.log",
            module_folder="Batch_Runner_Logs",
            use_json_formatter=True,
        )
    return _trace_logger


def log_batch_result(log_index: int, borrower: str, outcome: str, data: dict[str, Any]) -> None:
    """Record one borrower outcome to the structured trace log."""
    get_trace_logger().info(
        json.dumps(data, default=str),
        extra={"log_index": log_index, "borrower": borrower, "outcome": outcome},
    )
