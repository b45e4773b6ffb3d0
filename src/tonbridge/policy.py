"""Fee and validation policy.

Pure computations consulted by the ledger on every request: amount bounds,
fee basis points and policy validation. Amounts are Decimals with the EVM
18-decimal quantum, so flooring here matches integer wei arithmetic.
"""

from dataclasses import asdict, dataclass
from decimal import ROUND_DOWN, Decimal, localcontext

from tonbridge.exceptions import (
    ExceedsMaxAmount,
    InsufficientAmount,
    InvalidAmount,
    InvalidPolicy,
)

BASIS_POINTS = 10000
DEFAULT_MAX_FEE_BASIS_POINTS = 1000
AMOUNT_DECIMALS = 18
AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_DECIMALS)


@dataclass(frozen=True)
class FeeBreakdown:
    """Fee split of a gross amount."""

    fee: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class BridgePolicy:
    """Process-wide bridge policy, replaced only as a whole."""

    min_amount: Decimal
    max_amount: Decimal
    fee_basis_points: int
    relayer_threshold: int
    enabled: bool = True

    def validate(self, max_fee_basis_points: int = DEFAULT_MAX_FEE_BASIS_POINTS) -> None:
        """Raise InvalidPolicy unless the policy can be persisted."""
        if self.min_amount < 0:
            raise InvalidPolicy("min_amount must not be negative")
        if self.min_amount >= self.max_amount:
            raise InvalidPolicy(
                f"min_amount ({self.min_amount}) must be below max_amount ({self.max_amount})"
            )
        ceiling = min(max_fee_basis_points, BASIS_POINTS)
        if not 0 <= self.fee_basis_points <= ceiling:
            raise InvalidPolicy(
                f"fee_basis_points must be between 0 and {ceiling}, got {self.fee_basis_points}"
            )
        if self.relayer_threshold < 1:
            raise InvalidPolicy("relayer_threshold must be at least 1")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["min_amount"] = str(self.min_amount)
        data["max_amount"] = str(self.max_amount)
        return data


def quantize_amount(amount: Decimal) -> Decimal:
    """Floor an amount to the smallest representable unit."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(amount).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)


def to_base_units(amount: Decimal) -> int:
    """Convert an amount into integer base units (wei)."""
    with localcontext() as ctx:
        ctx.prec = 80
        return int(quantize_amount(amount).scaleb(AMOUNT_DECIMALS))


def from_base_units(units: int) -> Decimal:
    """Convert integer base units back into a Decimal amount."""
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(units).scaleb(-AMOUNT_DECIMALS)


def compute_fee(amount: Decimal, fee_basis_points: int) -> FeeBreakdown:
    """Split a gross amount into fee and net amount.

    fee = floor(amount * fee_basis_points / 10000); fee + net_amount == amount.
    Computed on integer base units so no rounding happens before the floor.
    """
    units = to_base_units(amount)
    fee_units = units * fee_basis_points // BASIS_POINTS
    return FeeBreakdown(
        fee=from_base_units(fee_units),
        net_amount=from_base_units(units - fee_units),
    )


def check_amount(amount: Decimal, policy: BridgePolicy) -> None:
    """Reject amounts outside the policy bounds."""
    if amount <= 0:
        raise InvalidAmount(f"Amount must be positive, got {amount}")
    if amount != quantize_amount(amount):
        raise InvalidAmount(f"Amount {amount} has more than {AMOUNT_DECIMALS} decimals")
    if amount < policy.min_amount:
        raise InsufficientAmount(f"Amount {amount} is below minimum {policy.min_amount}")
    if amount > policy.max_amount:
        raise ExceedsMaxAmount(f"Amount {amount} exceeds maximum {policy.max_amount}")
