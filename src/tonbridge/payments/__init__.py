"""Destination-chain payment executors."""

from tonbridge.payments.base import PaymentError, PaymentExecutor, PaymentResult
from tonbridge.payments.factory import get_payment_executor
from tonbridge.payments.simulated import SimulatedPaymentExecutor

__all__ = [
    "PaymentError",
    "PaymentExecutor",
    "PaymentResult",
    "SimulatedPaymentExecutor",
    "get_payment_executor",
]
