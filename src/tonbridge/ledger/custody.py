"""Value custody for bridge transfers.

Moves funds between caller accounts and the bridge custody account. All
movements happen inside the caller's transaction, so a failed pull rolls back
together with the transfer record it was funding.
"""

import logging
from decimal import Decimal

from tonbridge.constants import CUSTODY_ACCOUNT, NATIVE_ASSET, normalize_identity
from tonbridge.exceptions import InsufficientFunds, InvalidAmount
from tonbridge.ledger.repository import LedgerRepository

logger = logging.getLogger(__name__)


class CustodyVault:
    """Funding interface consumed by the ledger."""

    def __init__(self, repo: LedgerRepository, custody_account: str = CUSTODY_ACCOUNT):
        self.repo = repo
        self.custody_account = custody_account

    async def lock_native_value(
        self, sender: str, amount: Decimal, attached_value: Decimal
    ) -> None:
        """Take the native value attached to a request into custody.

        The attached value must equal the requested amount exactly.
        """
        if attached_value != amount:
            raise InsufficientFunds(
                f"Attached value {attached_value} does not match amount {amount}"
            )
        await self.repo.debit_balance(sender, NATIVE_ASSET, amount)
        await self.repo.credit_balance(self.custody_account, NATIVE_ASSET, amount)

    async def pull_token(self, asset: str, sender: str, amount: Decimal) -> None:
        """Escrow exactly ``amount`` of a token from the sender into custody."""
        await self.repo.debit_balance(sender, asset, amount)
        await self.repo.credit_balance(self.custody_account, asset, amount)

    async def fund(
        self, asset: str, sender: str, amount: Decimal, attached_value: Decimal
    ) -> None:
        """Fund a request with native value or a token pull."""
        if normalize_identity(asset) == NATIVE_ASSET:
            await self.lock_native_value(sender, amount, attached_value)
        else:
            if attached_value:
                raise InsufficientFunds("Native value must not be attached to a token transfer")
            await self.pull_token(asset, sender, amount)

    async def pay_out(self, asset: str, to: str, amount: Decimal) -> None:
        """Pay ``amount`` out of custody."""
        custody = await self.repo.get_balance(self.custody_account, asset)
        available = custody.amount if custody else Decimal("0")
        if available < amount:
            raise InsufficientFunds(
                f"Custody holds {available} of {asset}, cannot pay out {amount}"
            )
        await self.repo.debit_balance(self.custody_account, asset, amount)
        await self.repo.credit_balance(to, asset, amount)
        logger.debug(f"Paid {amount} of {asset} out of custody to {to}")

    async def deposit(self, account: str, asset: str, amount: Decimal) -> Decimal:
        """Credit an account outside the bridge (funding for callers).

        Returns the new balance.
        """
        if amount <= 0:
            raise InvalidAmount(f"Deposit amount must be positive, got {amount}")
        balance = await self.repo.credit_balance(account, asset, amount)
        return balance.amount

    async def custody_balance(self, asset: str) -> Decimal:
        """Amount of an asset held in custody."""
        balance = await self.repo.get_balance(self.custody_account, asset)
        return balance.amount if balance else Decimal("0")
