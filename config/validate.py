"""
Configuration schema validation for the dLEND Odos Liquidation Bot.

Validates that all required config files exist, contain required keys, and
carry well-formed addresses and numeric ranges. Run at startup to fail fast
on misconfiguration, before any borrower is evaluated.
"""

from decimal import Decimal, InvalidOperation
from typing import Any

from web3 import Web3

from config.loader import get_config


class ConfigurationError(ValueError):
    """Raised when required configuration is missing or invalid (fatal)."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(f"missing: {key}")
                break
            current = current[part]
    return missing


def _check_address(value: Any, key: str) -> list[str]:
    if not isinstance(value, str) or not Web3.is_address(value):
        return [f"invalid address: {key}={value!r}"]
    return []


def _check_positive_decimal(value: Any, key: str, allow_zero: bool = False) -> list[str]:
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return [f"not a number: {key}={value!r}"]
    if parsed < 0 or (parsed == 0 and not allow_zero):
        return [f"out of range: {key}={value!r}"]
    return []


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chains/<chain_id>.json has required fields."""
    errors = _check_keys(
        config,
        [
            "chain_id",
            "rpc.http_url",
            "contracts.pool_addresses_provider",
            "contracts.flash_mint_liquidator",
            "contracts.flash_loan_liquidator",
        ],
        "chains/<chain_id>.json",
    )
    if errors:
        return errors
    # Liquidator addresses may be supplied through the environment instead
    for name, address in config["contracts"].items():
        if address:
            errors.extend(_check_address(address, f"contracts.{name}"))
        elif name == "pool_addresses_provider":
            errors.append(f"missing: contracts.{name}")
    wrapped_native = config.get("wrapped_native_token", "")
    if wrapped_native:
        errors.extend(_check_address(wrapped_native, "wrapped_native_token"))
    return errors


def validate_liquidator_config(config: dict[str, Any]) -> list[str]:
    """Validate liquidator.json has required fields and sane values."""
    errors = _check_keys(
        config,
        [
            "flash_minter",
            "odos_router",
            "slippage_tolerance",
            "health_factor_batch_size",
            "health_factor_threshold",
            "profitable_threshold_usd",
        ],
        "liquidator.json",
    )
    if errors:
        return errors

    errors.extend(_check_address(config["flash_minter"], "flash_minter"))
    errors.extend(_check_address(config["odos_router"], "odos_router"))

    batch_size = config["health_factor_batch_size"]
    if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size <= 0:
        errors.append(f"out of range: health_factor_batch_size={batch_size!r}")

    errors.extend(_check_positive_decimal(config["slippage_tolerance"], "slippage_tolerance"))
    errors.extend(
        _check_positive_decimal(config["health_factor_threshold"], "health_factor_threshold")
    )
    errors.extend(
        _check_positive_decimal(
            config["profitable_threshold_usd"], "profitable_threshold_usd", allow_zero=True
        )
    )

    for token, proxy in config.get("token_proxy_contract_map", {}).items():
        errors.extend(_check_address(token, "token_proxy_contract_map key"))
        errors.extend(_check_address(proxy, f"token_proxy_contract_map[{token}]"))
    return errors


def validate_aggregator_config(config: dict[str, Any]) -> list[str]:
    """Validate aggregator.json has required fields."""
    errors = _check_keys(config, ["base_url", "quote_timeout_seconds"], "aggregator.json")
    if not errors and not str(config["base_url"]).startswith(("http://", "https://")):
        errors.append(f"invalid url: base_url={config['base_url']!r}")
    return errors


def validate_all_configs(chain_id: int) -> None:
    """
    Validate all config files for ``chain_id``. Raises ConfigurationError with
    details if any required keys are missing or malformed.
    """
    loader = get_config()
    all_errors: dict[str, list[str]] = {}

    validators = {
        f"chains/{chain_id}.json": (lambda: loader.get_chain_config(chain_id), validate_chain_config),
        "liquidator.json": (loader.get_liquidator_config, validate_liquidator_config),
        "aggregator.json": (loader.get_aggregator_config, validate_aggregator_config),
    }

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - {error}")
        raise ConfigurationError("\n".join(lines))
