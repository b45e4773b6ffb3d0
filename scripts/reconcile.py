#!/usr/bin/env python3
"""Ledger Reconciliation Script.

Audits the ledger database for invariant violations:
- confirmation_count of every transfer equals its attestation rows
- completed transfers have at least as many attestations as the threshold
  in force (warning only: the threshold may have been raised since)
- pending transfers have fewer attestations than the current threshold
- custody holds at least the uncollected fees plus the net amount of
  requests not yet released (per asset)
- event log positions are contiguous

Usage:
    python scripts/reconcile.py [--json]

Exit code is 1 when any error-level finding is reported.
"""

import argparse
import asyncio
import json
import logging
import sys
from collections import defaultdict
from decimal import Decimal
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
from sqlalchemy import select

from tonbridge.constants import CUSTODY_ACCOUNT
from tonbridge.ledger.database import close_db, get_db, init_db
from tonbridge.ledger.models import (
    AccountBalance,
    BridgeEvent,
    CollectedFee,
    ProcessedRelease,
    Transfer,
)
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.quorum import TransferStatus

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


async def reconcile() -> dict:
    """Run every check and return the findings."""
    errors: list[str] = []
    warnings: list[str] = []

    async with get_db() as session:
        repo = LedgerRepository(session)
        state = await repo.get_state()
        if state is None:
            return {"errors": ["ledger is not initialized"], "warnings": [], "transfers": 0}

        transfers = (await session.execute(select(Transfer))).scalars().all()

        # Quorum bookkeeping
        for transfer in transfers:
            rows = await repo.count_attestations(transfer.id)
            if rows != transfer.confirmation_count:
                errors.append(
                    f"{transfer.id}: confirmation_count {transfer.confirmation_count} "
                    f"but {rows} attestations"
                )
            if transfer.status == TransferStatus.COMPLETED and rows < state.relayer_threshold:
                warnings.append(
                    f"{transfer.id}: completed with {rows} attestations "
                    f"(current threshold {state.relayer_threshold})"
                )
            if transfer.status == TransferStatus.PENDING and rows >= state.relayer_threshold:
                warnings.append(
                    f"{transfer.id}: pending with {rows} attestations "
                    f"(threshold {state.relayer_threshold} was lowered?)"
                )

        # Custody coverage per asset
        requested: dict[str, Decimal] = defaultdict(Decimal)
        for transfer in transfers:
            requested[transfer.asset] += transfer.amount

        released: dict[str, Decimal] = defaultdict(Decimal)
        for release in (await session.execute(select(ProcessedRelease))).scalars().all():
            released[release.asset] += release.amount

        fees = {
            record.asset: record
            for record in (await session.execute(select(CollectedFee))).scalars().all()
        }
        custody = {
            balance.asset: balance.amount
            for balance in (
                await session.execute(
                    select(AccountBalance).where(AccountBalance.account == CUSTODY_ACCOUNT)
                )
            ).scalars().all()
        }

        for asset in sorted(set(requested) | set(custody) | set(fees)):
            fee = fees.get(asset)
            uncollected = fee.amount if fee else Decimal("0")
            withdrawn = fee.total_withdrawn if fee else Decimal("0")
            held = custody.get(asset, Decimal("0"))
            expected = requested[asset] - released[asset] - withdrawn
            if held != expected:
                warnings.append(
                    f"asset {asset}: custody {held}, requests minus releases and "
                    f"withdrawn fees {expected}"
                )
            if held < uncollected:
                errors.append(f"asset {asset}: custody {held} below uncollected fees {uncollected}")

        # Event log contiguity
        positions = (
            await session.execute(select(BridgeEvent.position).order_by(BridgeEvent.position))
        ).scalars().all()
        for previous, current in zip(positions, positions[1:]):
            if current != previous + 1:
                warnings.append(f"event log gap between {previous} and {current}")

        return {
            "errors": errors,
            "warnings": warnings,
            "transfers": len(transfers),
            "events": len(positions),
            "nonce": state.nonce,
        }


async def main() -> int:
    parser = argparse.ArgumentParser(description="Audit ledger invariants")
    parser.add_argument("--json", action="store_true", help="Print findings as JSON")
    args = parser.parse_args()

    await init_db()
    try:
        findings = await reconcile()
    finally:
        await close_db()

    if args.json:
        print(json.dumps(findings, indent=2))
    else:
        logger.info(
            f"Checked {findings['transfers']} transfers, {findings.get('events', 0)} events"
        )
        for warning in findings["warnings"]:
            logger.warning(warning)
        for error in findings["errors"]:
            logger.error(error)
        if not findings["errors"]:
            logger.info("No invariant violations found")

    return 1 if findings["errors"] else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
