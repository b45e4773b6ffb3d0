"""Persistent relayer state: scan cursor and outstanding transfers.

Stored through the ledger repository so it survives restarts; a standalone
relayer keeps it in its own database (``RELAYER_DATABASE_URL``).
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tonbridge.ledger.database import get_db
from tonbridge.ledger.models import OutstandingStage, OutstandingTransfer
from tonbridge.ledger.repository import LedgerRepository


class RelayerStateStore:
    """Cursor and outstanding-transfer storage for one relayer."""

    def __init__(
        self,
        relayer: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.relayer = relayer
        self._session_factory = session_factory

    async def get_cursor(self) -> Optional[int]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_cursor(self.relayer)

    async def set_cursor(self, position: int) -> None:
        async with get_db(self._session_factory) as session:
            await LedgerRepository(session).set_cursor(self.relayer, position)

    async def get_outstanding(self) -> list[OutstandingTransfer]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_outstanding(self.relayer)

    async def get(self, transfer_id: str) -> Optional[OutstandingTransfer]:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).get_outstanding_transfer(
                self.relayer, transfer_id
            )

    async def mark_outstanding(
        self,
        transfer_id: str,
        position: int,
        stage: OutstandingStage,
        payment_reference: Optional[str] = None,
        error: Optional[str] = None,
    ) -> OutstandingTransfer:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).save_outstanding(
                self.relayer, transfer_id, position, stage, payment_reference, error
            )

    async def resolve(self, transfer_id: str) -> bool:
        async with get_db(self._session_factory) as session:
            return await LedgerRepository(session).remove_outstanding(self.relayer, transfer_id)
