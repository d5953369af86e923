"""
Configuration loader for the dLEND Odos Liquidation Bot.

Provides centralized configuration management with .env overrides.
JSON files live next to this module; secrets come from the environment.

Usage:
    from config.loader import get_config

    config = get_config()
    chain_config = config.get_chain_config(146)
    liquidator_config = config.get_liquidator_config()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the liquidation bot.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self):
        self._config_dir = _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_chain_config(self, chain_id: int = 146) -> Dict[str, Any]:
        """Load chain-specific config (Sonic mainnet = 146)."""
        config = _load_json(self._config_dir / "chains" / f"{chain_id}.json")
        if not config:
            return config
        # Deployment-specific contract addresses may come from .env
        contracts = dict(config.get("contracts", {}))
        env_contracts = {
            "pool_addresses_provider": get_env_var("POOL_ADDRESSES_PROVIDER", None, str),
            "flash_mint_liquidator": get_env_var("FLASH_MINT_LIQUIDATOR", None, str),
            "flash_loan_liquidator": get_env_var("FLASH_LOAN_LIQUIDATOR", None, str),
        }
        contracts.update({k: v for k, v in env_contracts.items() if v})
        rpc = dict(config.get("rpc", {}))
        rpc_url = get_env_var("RPC_URL", None, str)
        if rpc_url:
            rpc["http_url"] = rpc_url
        return {**config, "contracts": contracts, "rpc": rpc}

    @lru_cache(maxsize=1)
    def get_liquidator_config(self) -> Dict[str, Any]:
        """Load liquidator bot settings (thresholds, batch size, flash minter, proxies)."""
        config = _load_json(self._config_dir / "liquidator.json")
        if not config:
            return config
        # .env overrides for operational knobs
        overrides = {
            "dry_run": get_env_var("LIQUIDATOR_DRY_RUN", None, bool),
            "flash_minter": get_env_var("FLASH_MINTER_ADDRESS", None, str),
            "health_factor_batch_size": get_env_var("HEALTH_FACTOR_BATCH_SIZE", None, int),
            "health_factor_threshold": get_env_var("HEALTH_FACTOR_THRESHOLD", None, str),
            "profitable_threshold_usd": get_env_var("PROFITABLE_THRESHOLD_USD", None, str),
        }
        return {**config, **{k: v for k, v in overrides.items() if v is not None}}

    @lru_cache(maxsize=1)
    def get_aggregator_config(self) -> Dict[str, Any]:
        """Load Odos aggregator settings (base URL, timeouts, retry policy)."""
        return _load_json(self._config_dir / "aggregator.json")

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load timing intervals and timeouts."""
        return _load_json(self._config_dir / "timing.json")

    # ------------------------------------------------------------------
    # ABI loader
    # ------------------------------------------------------------------

    @lru_cache(maxsize=32)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]}
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
