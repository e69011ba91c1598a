"""Shared fixtures: a throwaway SQLite database per test, a fixed seed and a controllable clock."""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import create_async_engine

from paychannel.channels.allocator import AddressAllocator
from paychannel.core.errors import ExternalServiceError
from paychannel.db.models import Base, PaymentChannel
from paychannel.db.session import make_session_factory
from paychannel.keys.custody import KeyCustodyStore
from paychannel.keys.derivation import KeyDerivationEngine
from paychannel.keys.encryption import FernetKeyEncryptor
from paychannel.keys.seed import MasterSeed
from paychannel.pricing.calculator import TransferCost

# BIP32 test vector 1 seed
TEST_SEED_HEX = "000102030405060708090a0b0c0d0e0f"
TEST_ENCRYPTION_KEY = "11" * 32
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'paychannel.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def master_seed():
    return MasterSeed(bytes.fromhex(TEST_SEED_HEX), source="test")


@pytest.fixture
def derivation(master_seed):
    return KeyDerivationEngine(master_seed)


@pytest.fixture
def encryptor():
    return FernetKeyEncryptor(TEST_ENCRYPTION_KEY)


@pytest.fixture
def custody(encryptor):
    return KeyCustodyStore(encryptor)


@pytest.fixture
def allocator(derivation, custody, session_factory, clock):
    return AddressAllocator(derivation, custody, session_factory, clock=clock)


def channel_builder(username="alice", status="pending", now=T0, ttl=timedelta(hours=24)):
    """build_channel callback inserting a minimal PaymentChannel for the allocation."""
    def build(allocation):
        return PaymentChannel(
            channel_id=allocation.channel_id,
            username=username,
            crypto_type=allocation.chain_type.value,
            payment_address=allocation.address,
            amount_crypto=Decimal("0.001"),
            amount_usd=Decimal("1.35"),
            memo=f"test {allocation.channel_id}",
            status=status,
            created_at=now,
            expires_at=now + ttl,
        )
    return build


async def set_channel_status(session_factory, channel_id, status):
    async with session_factory() as session:
        async with session.begin():
            await session.execute(
                update(PaymentChannel).where(PaymentChannel.channel_id == channel_id).values(status=status)
            )


class StubFeeds:
    """Price feeds answering with the static fallback prices and fees."""

    def __init__(self, hive=Decimal("0.30"), fail=False, delay=0):
        self.hive = hive
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def fetch_hive_price(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        if self.fail:
            raise ExternalServiceError("hive price unavailable")
        return self.hive

    async def fetch_crypto_prices(self, chains):
        return {spec.chain_type: spec.fallback_price_usd for spec in chains}

    async def estimate_transfer_costs(self, chains, prices):
        return {
            spec.chain_type: TransferCost(spec.avg_transfer_fee, spec.avg_transfer_fee * prices[spec.chain_type])
            for spec in chains
        }
