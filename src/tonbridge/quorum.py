"""Quorum confirmation protocol.

A transfer moves ``pending -> completed`` once the number of distinct relayer
attestations reaches the relayer threshold in force at the moment of the
attestation. The decision logic lives here; the ledger applies it inside its
transaction.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from tonbridge.exceptions import (
    AlreadyAttested,
    AlreadyCompleted,
    BridgePaused,
    TransferNotFound,
    Unauthorized,
)


class TransferStatus(str, Enum):
    """Status of a transfer."""

    PENDING = "pending"
    COMPLETED = "completed"


@dataclass(frozen=True)
class QuorumDecision:
    """Outcome of one accepted attestation."""

    confirmation_count: int
    threshold: int
    completed: bool


def check_attestation(
    *,
    paused: bool,
    authorized: bool,
    exists: bool,
    status: Optional[TransferStatus],
    already_attested: bool,
    transfer_id: str,
    relayer: str,
) -> None:
    """Raise the error kind that rejects an attestation, if any."""
    if paused:
        raise BridgePaused("Bridge is paused; attestations are blocked")
    if not authorized:
        raise Unauthorized(f"{relayer} does not hold the relayer role")
    if not exists:
        raise TransferNotFound(f"Transfer {transfer_id} not found")
    if status == TransferStatus.COMPLETED:
        raise AlreadyCompleted(f"Transfer {transfer_id} is already completed")
    if already_attested:
        raise AlreadyAttested(f"{relayer} already attested transfer {transfer_id}")


def decide(current_count: int, threshold: int) -> QuorumDecision:
    """Apply one new attestation to a pending transfer."""
    new_count = current_count + 1
    return QuorumDecision(
        confirmation_count=new_count,
        threshold=threshold,
        completed=new_count >= threshold,
    )
