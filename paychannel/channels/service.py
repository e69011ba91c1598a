"""
ChannelService - PaymentChannel lifecycle.

pending --(monitor)--> confirming --> confirmed --> completed
pending --(monitor)--> confirmed
pending --(sweep, past expires_at)--> expired
pending | confirming --(admin)--> cancelled

Only pending and confirming channels own their address; every other status releases it
to the recycle pool once the address cool-down has passed. Status changes lock the
channel row (FOR UPDATE) and are audited.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from prometheus_client import Counter
from sqlalchemy import select

from paychannel.channels.allocator import AddressAllocation, AddressAllocator
from paychannel.core.chains import chain_spec
from paychannel.core.config import settings
from paychannel.core.errors import ChannelNotFound, InvalidStatusTransition, UnsupportedChainError, UsernameInUse
from paychannel.db.audit import record_audit
from paychannel.db.models import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_CONFIRMING,
    STATUS_EXPIRED,
    STATUS_PENDING,
    PaymentChannel,
)
from paychannel.pricing.calculator import ChainRate
from paychannel.pricing.engine import PricingEngine
from paychannel.utils.timeutils import as_utc, utcnow

logger = logging.getLogger("paychannel.channels.service")

MET_CHANNELS_CREATED = Counter("paychannel_channels_created_total", "Payment channels created", ["crypto_type"])
MET_CHANNELS_EXPIRED = Counter("paychannel_channels_expired_total", "Payment channels expired by the sweep")

CHANNEL_TTL = timedelta(hours=int(getattr(settings, "CHANNEL_TTL_HOURS", 24)))
MEMO_PREFIX = getattr(settings, "MEMO_PREFIX", "DLUX")

# a username with a channel in one of these cannot open another
USERNAME_BLOCKING_STATUSES = (STATUS_PENDING, STATUS_CONFIRMING, STATUS_CONFIRMED, STATUS_COMPLETED)

MONITOR_TRANSITIONS = {
    STATUS_PENDING: (STATUS_CONFIRMING, STATUS_CONFIRMED),
    # repeated confirming reports only update tx_hash / confirmations
    STATUS_CONFIRMING: (STATUS_CONFIRMING, STATUS_CONFIRMED),
    STATUS_CONFIRMED: (STATUS_COMPLETED,),
}
CANCELLABLE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMING)


def new_channel_id() -> str:
    return "CH_" + secrets.token_hex(16)


def build_memo(username: str, channel_id: str, prefix: str = MEMO_PREFIX) -> str:
    return f"{prefix} Account: {username} | CH: {channel_id}"


@dataclass(frozen=True)
class ChannelCreated:
    channel: PaymentChannel
    allocation: AddressAllocation
    rate: ChainRate


class ChannelService:
    def __init__(
        self,
        allocator: AddressAllocator,
        pricing: PricingEngine,
        session_factory,
        ttl: timedelta = CHANNEL_TTL,
        memo_prefix: str = MEMO_PREFIX,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.allocator = allocator
        self.pricing = pricing
        self._session_factory = session_factory
        self.ttl = ttl
        self.memo_prefix = memo_prefix
        self._clock = clock

    async def create_channel(self, username: str, chain_type, public_keys: Optional[dict] = None) -> ChannelCreated:
        username = (username or "").strip().lower()
        if not username:
            raise ValueError("username is required")
        spec = chain_spec(chain_type)
        if not spec.priced:
            raise UnsupportedChainError(spec.chain_type.value)

        async with self._session_factory() as session:
            blocking = (await session.execute(
                select(PaymentChannel.channel_id, PaymentChannel.status)
                .where(PaymentChannel.username == username, PaymentChannel.status.in_(USERNAME_BLOCKING_STATUSES))
                .limit(1)
            )).first()
        if blocking is not None:
            raise UsernameInUse(username, blocking.channel_id, blocking.status)

        pricing = await self.pricing.get_latest_pricing()
        rate = pricing.rate_for(spec.chain_type)

        channel_id = new_channel_id()
        now = self._clock()
        built = []

        def build_channel(allocation: AddressAllocation) -> PaymentChannel:
            row = PaymentChannel(
                channel_id=channel_id,
                username=username,
                crypto_type=spec.chain_type.value,
                payment_address=allocation.address,
                amount_crypto=rate.total_amount,
                amount_usd=rate.final_cost_usd,
                memo=build_memo(username, channel_id, self.memo_prefix),
                status=STATUS_PENDING,
                confirmations=0,
                public_keys=public_keys,
                created_at=now,
                expires_at=now + self.ttl,
            )
            built.append(row)
            return row

        allocation = await self.allocator.allocate(spec.chain_type, channel_id, build_channel=build_channel)
        MET_CHANNELS_CREATED.labels(spec.chain_type.value).inc()
        logger.info(
            "Created channel %s for %s: %s %s to %s (reused=%s, pricing snapshot %s)",
            channel_id, username, rate.total_amount, spec.chain_type.value, allocation.address, allocation.reused, pricing.id,
        )
        return ChannelCreated(channel=built[-1], allocation=allocation, rate=rate)

    async def get_channel(self, channel_id: str) -> PaymentChannel:
        async with self._session_factory() as session:
            row = (await session.execute(
                select(PaymentChannel).where(PaymentChannel.channel_id == channel_id)
            )).scalar_one_or_none()
        if row is None:
            raise ChannelNotFound(channel_id)
        return row

    async def _transition(self, channel_id: str, allowed: Callable[[str], bool], status: str,
                          actor: str, tx_hash: Optional[str] = None, confirmations: Optional[int] = None) -> PaymentChannel:
        async with self._session_factory() as session:
            async with session.begin():
                row = (await session.execute(
                    select(PaymentChannel).where(PaymentChannel.channel_id == channel_id).with_for_update()
                )).scalar_one_or_none()
                if row is None:
                    raise ChannelNotFound(channel_id)
                previous = row.status
                if not allowed(previous):
                    raise InvalidStatusTransition(channel_id, previous, status)

                now = self._clock()
                row.status = status
                if tx_hash:
                    row.tx_hash = tx_hash
                if confirmations is not None:
                    row.confirmations = int(confirmations)
                if status == STATUS_CONFIRMED and row.confirmed_at is None:
                    row.confirmed_at = now
                elif status == STATUS_COMPLETED:
                    row.completed_at = now
                record_audit(
                    session, actor, "channel_status_changed",
                    channel_id=channel_id, previous_status=previous, status=status,
                    tx_hash=row.tx_hash, confirmations=row.confirmations,
                )
        logger.info("Channel %s: %s -> %s", channel_id, previous, status)
        return row

    async def advance_status(self, channel_id: str, status: str, tx_hash: Optional[str] = None,
                             confirmations: Optional[int] = None) -> PaymentChannel:
        """Apply a monitor report. Only forward moves along the confirmation path are accepted."""
        return await self._transition(
            channel_id,
            lambda current: status in MONITOR_TRANSITIONS.get(current, ()),
            status,
            actor="monitor",
            tx_hash=tx_hash,
            confirmations=confirmations,
        )

    async def cancel_channel(self, channel_id: str, retire_address: bool = False) -> PaymentChannel:
        row = await self._transition(
            channel_id,
            lambda current: current in CANCELLABLE_STATUSES,
            STATUS_CANCELLED,
            actor="admin",
        )
        if retire_address:
            await self.allocator.mark_reusable(channel_id)
        return row

    async def mark_reusable(self, channel_id: str) -> int:
        return await self.allocator.mark_reusable(channel_id)

    async def sweep_expired(self, now: Optional[datetime] = None) -> list[str]:
        """Expire every pending channel whose expires_at has passed; return their ids."""
        now = now or self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                rows = (await session.execute(
                    select(PaymentChannel)
                    .where(PaymentChannel.status == STATUS_PENDING, PaymentChannel.expires_at < now)
                    .order_by(PaymentChannel.expires_at.asc())
                    .with_for_update(skip_locked=True)
                )).scalars().all()
                expired = []
                for row in rows:
                    row.status = STATUS_EXPIRED
                    expired.append(row.channel_id)
                    record_audit(
                        session, "sweeper", "channel_status_changed",
                        channel_id=row.channel_id, previous_status=STATUS_PENDING, status=STATUS_EXPIRED,
                        expires_at=as_utc(row.expires_at).isoformat(),
                    )
        if expired:
            MET_CHANNELS_EXPIRED.inc(len(expired))
            logger.info("Expired %s channel(s): %s", len(expired), ", ".join(expired))
        return expired
