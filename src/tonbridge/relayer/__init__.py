"""Relayer: pays accepted transfers on the destination chain and attests them."""

from tonbridge.relayer.base import BridgeClient, RequestEvent, TransferRecord
from tonbridge.relayer.local import LocalBridgeClient
from tonbridge.relayer.retry import RetryExhausted, RetryPolicy, call_with_retry
from tonbridge.relayer.runner import CycleResult, ReconciliationLoop
from tonbridge.relayer.state import RelayerStateStore

__all__ = [
    "BridgeClient",
    "CycleResult",
    "LocalBridgeClient",
    "ReconciliationLoop",
    "RelayerStateStore",
    "RequestEvent",
    "RetryExhausted",
    "RetryPolicy",
    "TransferRecord",
    "call_with_retry",
]
