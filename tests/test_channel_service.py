import re
from datetime import timedelta

import pytest
from sqlalchemy import select

from paychannel.channels.service import ChannelService
from paychannel.core.errors import ChannelNotFound, InvalidStatusTransition, UnsupportedChainError, UsernameInUse
from paychannel.db.models import AuditLog
from paychannel.pricing.engine import PricingEngine
from paychannel.utils.timeutils import as_utc

from conftest import StubFeeds

pytestmark = pytest.mark.asyncio


@pytest.fixture
def service(allocator, session_factory, clock):
    pricing = PricingEngine(StubFeeds(), session_factory, stale_after=timedelta(days=365), clock=clock)
    return ChannelService(allocator, pricing, session_factory, clock=clock)


async def test_create_channel(service, clock):
    created = await service.create_channel("Alice", "eth", public_keys={"owner": "STM..."})
    channel = created.channel
    assert re.fullmatch(r"CH_[0-9a-f]{32}", channel.channel_id)
    assert channel.username == "alice"
    assert channel.crypto_type == "ETH"
    assert channel.status == "pending"
    assert channel.memo == f"DLUX Account: alice | CH: {channel.channel_id}"
    assert channel.payment_address == created.allocation.address
    assert channel.amount_usd == created.rate.final_cost_usd
    assert channel.amount_crypto == created.rate.total_amount
    assert channel.expires_at == clock.now + timedelta(hours=24)

    stored = await service.get_channel(channel.channel_id)
    assert stored.public_keys == {"owner": "STM..."}
    assert as_utc(stored.expires_at) == clock.now + timedelta(hours=24)


async def test_username_in_flight_is_rejected(service):
    first = await service.create_channel("bob", "SOL")
    with pytest.raises(UsernameInUse) as exc_info:
        await service.create_channel("bob", "BTC")
    assert exc_info.value.channel_id == first.channel.channel_id
    assert exc_info.value.status == "pending"


async def test_unpriced_chain_rejected(service):
    with pytest.raises(UnsupportedChainError):
        await service.create_channel("carol", "XMR")


async def test_confirmation_path(service, clock):
    channel_id = (await service.create_channel("dave", "BTC")).channel.channel_id

    confirming = await service.advance_status(channel_id, "confirming", tx_hash="ab" * 32, confirmations=1)
    assert confirming.status == "confirming"
    assert confirming.confirmed_at is None
    await service.advance_status(channel_id, "confirming", confirmations=2)

    clock.advance(minutes=20)
    confirmed = await service.advance_status(channel_id, "confirmed", confirmations=3)
    assert confirmed.confirmed_at == clock.now
    assert confirmed.tx_hash == "ab" * 32

    completed = await service.advance_status(channel_id, "completed")
    assert completed.status == "completed"
    assert completed.completed_at == clock.now

    with pytest.raises(InvalidStatusTransition):
        await service.advance_status(channel_id, "pending")

    async with service._session_factory() as session:
        changes = (await session.execute(
            select(AuditLog).where(AuditLog.action == "channel_status_changed").order_by(AuditLog.id)
        )).scalars().all()
    assert [c.details["status"] for c in changes] == ["confirming", "confirming", "confirmed", "completed"]


async def test_pending_cannot_skip_to_completed(service):
    channel_id = (await service.create_channel("erin", "ETH")).channel.channel_id
    with pytest.raises(InvalidStatusTransition) as exc_info:
        await service.advance_status(channel_id, "completed")
    assert exc_info.value.current == "pending"


async def test_unknown_channel(service):
    with pytest.raises(ChannelNotFound):
        await service.advance_status("CH_missing", "confirmed")
    with pytest.raises(ChannelNotFound):
        await service.get_channel("CH_missing")


async def test_sweep_expires_only_pending(service, clock):
    stale = (await service.create_channel("frank", "SOL")).channel.channel_id
    paying = (await service.create_channel("grace", "SOL")).channel.channel_id
    await service.advance_status(paying, "confirming", confirmations=0)

    assert await service.sweep_expired() == []
    clock.advance(hours=25)
    assert await service.sweep_expired() == [stale]
    assert (await service.get_channel(stale)).status == "expired"
    assert (await service.get_channel(paying)).status == "confirming"
    assert await service.sweep_expired() == []

    # an expired channel no longer blocks the username
    again = await service.create_channel("frank", "SOL")
    assert again.channel.status == "pending"


async def test_expired_address_recycled_after_cooldown(service, clock):
    first = await service.create_channel("heidi", "DASH")
    clock.advance(hours=25)
    await service.sweep_expired()
    clock.advance(days=7)
    second = await service.create_channel("ivan", "DASH")
    assert second.allocation.reused
    assert second.channel.payment_address == first.channel.payment_address


async def test_cancel_and_retire_address(service):
    first = await service.create_channel("judy", "MATIC")
    cancelled = await service.cancel_channel(first.channel.channel_id, retire_address=True)
    assert cancelled.status == "cancelled"
    with pytest.raises(InvalidStatusTransition):
        await service.cancel_channel(first.channel.channel_id)

    second = await service.create_channel("mallory", "MATIC")
    assert second.allocation.reused
    assert second.channel.payment_address == first.channel.payment_address

