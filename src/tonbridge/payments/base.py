"""Base interfaces for destination-chain payments.

Payment flow (driven by the relayer):
1. Relayer reads an accepted transfer back from the ledger
2. Executor pays ``net_amount`` to the destination recipient on TON
3. The transfer id is passed as dedupe key, so a retried payment is not sent twice
4. Relayer attests the transfer once the payment succeeded
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Transient destination payment failure; the caller may retry."""

    pass


@dataclass
class PaymentResult:
    """Result of a destination payment."""
    success: bool
    reference_id: Optional[str] = None  # Destination transaction reference
    error: Optional[str] = None


class PaymentExecutor(ABC):
    """Abstract destination-chain payment executor."""

    name = "base"

    @abstractmethod
    async def pay(self, recipient: str, amount: Decimal, dedupe_key: str) -> PaymentResult:
        """Pay ``amount`` to ``recipient`` on the destination chain.

        Args:
            recipient: Destination recipient address
            amount: Net amount to deliver
            dedupe_key: Key making repeated calls for one transfer idempotent

        Returns:
            PaymentResult with the destination reference if successful

        Raises:
            PaymentError: On transient failures
        """
        pass

    async def close(self) -> None:
        """Release executor resources."""
        pass
