"""Simulated destination payments for dry-run mode and tests."""

import logging
import secrets
from decimal import Decimal

from tonbridge.payments.base import PaymentError, PaymentExecutor, PaymentResult

logger = logging.getLogger(__name__)


class SimulatedPaymentExecutor(PaymentExecutor):
    """Records payments in memory instead of sending them.

    Repeated calls with the same dedupe key return the first result. Failures
    can be injected to exercise the relayer's retry path.
    """

    name = "simulated"

    def __init__(self, fail_times: int = 0, permanent_failure: bool = False):
        """Initialize the executor.

        Args:
            fail_times: Number of calls that raise PaymentError before succeeding
            permanent_failure: Return an unsuccessful result instead of paying
        """
        self.fail_times = fail_times
        self.permanent_failure = permanent_failure
        self.calls = 0
        self.payments: dict[str, PaymentResult] = {}
        self.sent: list[tuple[str, Decimal, str]] = []

    async def pay(self, recipient: str, amount: Decimal, dedupe_key: str) -> PaymentResult:
        self.calls += 1

        if dedupe_key in self.payments:
            logger.debug(f"[SIMULATED] Payment {dedupe_key} already sent")
            return self.payments[dedupe_key]

        if self.fail_times > 0:
            self.fail_times -= 1
            raise PaymentError(f"Simulated transient failure for {dedupe_key}")

        if self.permanent_failure:
            return PaymentResult(success=False, error="Simulated payment rejection")

        reference = f"sim_ton_{secrets.token_hex(16)}"
        result = PaymentResult(success=True, reference_id=reference)
        self.payments[dedupe_key] = result
        self.sent.append((recipient, amount, dedupe_key))

        logger.info(f"[SIMULATED] Paid {amount} to {recipient} (ref: {reference})")
        return result
