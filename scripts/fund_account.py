#!/usr/bin/env python3
"""Credit an account balance directly in the ledger database.

Used in development to give a sender funds to bridge.

Usage:
    python scripts/fund_account.py <account> <amount> [asset]

Example:
    python scripts/fund_account.py 0xabc... 5
    python scripts/fund_account.py 0xabc... 100 0xtoken...
"""

import asyncio
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dotenv import load_dotenv
load_dotenv()

from tonbridge.constants import NATIVE_ASSET
from tonbridge.exceptions import BridgeError
from tonbridge.ledger.database import close_db, init_db
from tonbridge.ledger.service import BridgeLedger


async def fund_account(account: str, amount: Decimal, asset: str) -> None:
    await init_db()
    ledger = BridgeLedger()
    try:
        balance = await ledger.credit_account(account, asset, amount)
        print(f"Credited {amount} of {asset} to {account}")
        print(f"New balance: {balance}")
    except BridgeError as e:
        print(f"Error: {e.message}")
        sys.exit(1)
    finally:
        await close_db()


if __name__ == "__main__":
    if len(sys.argv) not in (3, 4):
        print("Usage: python fund_account.py <account> <amount> [asset]")
        print("Example: python fund_account.py 0x1111111111111111111111111111111111111111 5")
        sys.exit(1)

    account = sys.argv[1]
    try:
        amount = Decimal(sys.argv[2])
    except InvalidOperation:
        print(f"Invalid amount: {sys.argv[2]}")
        sys.exit(1)
    asset = sys.argv[3] if len(sys.argv) == 4 else NATIVE_ASSET

    asyncio.run(fund_account(account, amount, asset))
