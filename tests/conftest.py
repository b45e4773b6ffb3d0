"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ["ADMIN_TOKEN"] = ""
os.environ["API_KEYS"] = ""
os.environ["BRIDGE_ADMIN"] = ""
os.environ["RELAYER_ENABLED"] = "false"

from tonbridge.config import get_settings
from tonbridge.constants import NATIVE_ASSET
from tonbridge.ledger.database import create_engine, create_session_factory, init_db
from tonbridge.ledger.repository import LedgerRepository
from tonbridge.ledger.service import BridgeLedger
from tonbridge.policy import BridgePolicy

ADMIN = "0xad00000000000000000000000000000000000001"
RELAYER_A = "0xa100000000000000000000000000000000000001"
RELAYER_B = "0xb200000000000000000000000000000000000002"
RELAYER_C = "0xc300000000000000000000000000000000000003"
USER = "0x5e00000000000000000000000000000000000001"
TOKEN = "0x70c0000000000000000000000000000000000001"
TON_RECIPIENT = "EQCD39VS5jcptHL8vMjEXrzGaRcCVYto7HUn4bpAOg8xqB2N"


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached; tests that change the environment need a fresh copy."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create a file-backed SQLite database for one test."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def policy() -> BridgePolicy:
    """Policy used by the worked examples: 0.1..1000, 30 bps, threshold 1."""
    return BridgePolicy(
        min_amount=Decimal("0.1"),
        max_amount=Decimal("1000"),
        fee_basis_points=30,
        relayer_threshold=1,
    )


@pytest_asyncio.fixture
async def ledger(session_factory, policy) -> BridgeLedger:
    """Initialized ledger with one relayer and a funded user."""
    bridge = BridgeLedger(session_factory)
    await bridge.initialize(admin=ADMIN, policy=policy, relayers=[RELAYER_A])
    await bridge.credit_account(USER, NATIVE_ASSET, Decimal("5000"))
    return bridge


@pytest_asyncio.fixture
async def quorum_ledger(session_factory, policy) -> BridgeLedger:
    """Initialized ledger with three relayers and a threshold of two."""
    bridge = BridgeLedger(session_factory)
    await bridge.initialize(
        admin=ADMIN,
        policy=BridgePolicy(
            min_amount=policy.min_amount,
            max_amount=policy.max_amount,
            fee_basis_points=policy.fee_basis_points,
            relayer_threshold=2,
        ),
        relayers=[RELAYER_A, RELAYER_B, RELAYER_C],
    )
    await bridge.credit_account(USER, NATIVE_ASSET, Decimal("5000"))
    return bridge
