"""Factory for creating destination payment executors.

In dry-run mode the simulated executor is always returned, so a development
relayer never moves real funds.
"""

import logging
from typing import Optional

from tonbridge.config import Settings, get_settings
from tonbridge.exceptions import InvalidConfiguration
from tonbridge.payments.base import PaymentExecutor

logger = logging.getLogger(__name__)


def get_payment_executor(settings: Optional[Settings] = None) -> PaymentExecutor:
    """Build the payment executor selected by the settings.

    Raises:
        InvalidConfiguration: Unknown executor or missing signer URL
    """
    settings = settings or get_settings()
    kind = settings.payment_executor.lower()

    if settings.dry_run or kind == "simulated":
        from tonbridge.payments.simulated import SimulatedPaymentExecutor

        if kind != "simulated":
            logger.info(f"Dry-run mode: using simulated executor instead of {kind}")
        return SimulatedPaymentExecutor()

    if kind == "remote":
        if not settings.payment_signer_url:
            raise InvalidConfiguration("PAYMENT_SIGNER_URL is required for the remote executor")
        from tonbridge.payments.remote import RemoteSignerExecutor

        return RemoteSignerExecutor(
            base_url=settings.payment_signer_url,
            token=settings.payment_signer_token,
        )

    raise InvalidConfiguration(f"Unknown payment executor: {settings.payment_executor}")
