from execution.aggregator_client import AggregatorClient, AggregatorError
from execution.liquidation_executor import LiquidationExecutor
from execution.pool_client import ContractCallError, PoolClient
from execution.token_resolver import TokenResolver
from execution.tx_submitter import (
    SimulationFailedError,
    TransactionRevertedError,
    TransactionTimeoutError,
    TxSubmitter,
    TxSubmitterError,
)

__all__ = [
    "AggregatorClient",
    "AggregatorError",
    "ContractCallError",
    "LiquidationExecutor",
    "PoolClient",
    "SimulationFailedError",
    "TokenResolver",
    "TransactionRevertedError",
    "TransactionTimeoutError",
    "TxSubmitter",
    "TxSubmitterError",
]
