"""
Serialization utilities for the dLEND Odos Liquidation Bot.

JSON encoding for Decimal, HexBytes, Enum, dataclass results, and uint256
integers, used when writing batch reports.

Usage:
    from shared.serialization_utils import DecimalEncoder, dump_batch_report
    json.dumps(data, cls=DecimalEncoder)
"""

import dataclasses
import json
from decimal import Decimal
from enum import Enum
from json import JSONEncoder
from pathlib import Path
from typing import Any

from hexbytes import HexBytes


class DecimalEncoder(JSONEncoder):
    """
    JSON encoder handling Decimal, HexBytes, Enum, dataclasses and large integers.

    Integers beyond the IEEE 754 safe range are emitted as strings so that
    uint256 token amounts survive a round trip through JavaScript tooling.
    """

    _MAX_SAFE_INTEGER = 2**53 - 1

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (HexBytes, bytes)):
            return "0x" + bytes(obj).hex()
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return self._convert_large_ints(dataclasses.asdict(obj))
        # web3.py AttributeDict (receipts, blocks)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)

    def encode(self, obj: Any) -> str:
        """Convert large integers to strings before JSON serialization."""
        return super().encode(self._convert_large_ints(obj))

    def _convert_large_ints(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: self._convert_large_ints(v) for k, v in obj.items()}
        elif isinstance(obj, (list, tuple)):
            return [self._convert_large_ints(item) for item in obj]
        elif isinstance(obj, bool):
            return obj
        elif isinstance(obj, int) and (obj > self._MAX_SAFE_INTEGER or obj < -self._MAX_SAFE_INTEGER):
            return str(obj)
        return obj


def dump_batch_report(path: str | Path, payload: dict[str, Any]) -> Path:
    """Write a batch report (results + summary) as pretty-printed JSON."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        f.write(json.dumps(payload, cls=DecimalEncoder, indent=2))
    return target
