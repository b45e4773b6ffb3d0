"""Ledger module for transfers, attestations and custody."""

from tonbridge.ledger.database import get_db, init_db
from tonbridge.ledger.models import (
    AccountBalance,
    Attestation,
    BridgeEvent,
    BridgeEventType,
    BridgeState,
    CollectedFee,
    OutstandingStage,
    OutstandingTransfer,
    ProcessedRelease,
    RelayerCursor,
    Role,
    RoleGrant,
    SupportedAsset,
    Transfer,
)
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.ledger.service import BridgeLedger

__all__ = [
    # Models
    "AccountBalance",
    "Attestation",
    "BridgeEvent",
    "BridgeState",
    "CollectedFee",
    "OutstandingTransfer",
    "ProcessedRelease",
    "RelayerCursor",
    "RoleGrant",
    "SupportedAsset",
    "Transfer",
    # Enums
    "BridgeEventType",
    "OutstandingStage",
    "Role",
    # Database
    "get_db",
    "init_db",
    "LedgerRepository",
    "BridgeLedger",
]
