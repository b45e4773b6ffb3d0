"""First-run initialization of the ledger from settings."""

import logging

from tonbridge.config import Settings
from tonbridge.ledger.service import BridgeLedger

logger = logging.getLogger(__name__)


async def bootstrap_ledger(ledger: BridgeLedger, settings: Settings) -> bool:
    """Initialize the ledger unless it already is.

    Returns True if the ledger was initialized by this call. Without
    BRIDGE_ADMIN the ledger stays uninitialized and every operation answers
    ``not_initialized``.
    """
    if await ledger.is_initialized():
        return False

    if not settings.bridge_admin:
        logger.warning("BRIDGE_ADMIN not set - ledger left uninitialized")
        return False

    await ledger.initialize(
        admin=settings.bridge_admin,
        policy=settings.initial_policy(),
        fee_collector=settings.fee_collector or None,
        relayers=settings.relayer_ids,
        max_fee_basis_points=settings.max_fee_basis_points,
    )
    return True
