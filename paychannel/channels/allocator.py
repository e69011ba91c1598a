"""
AddressAllocator - hands out one deposit address per payment channel.

Order of preference for allocate(chain_type, channel_id):
1) the address already bound to channel_id (idempotent retry, nothing written)
2) the oldest recyclable address of that chain (cool-down passed, owner terminal,
   not pointed at by any live channel) -> reassigned, reused=True
3) a fresh address at max(index)+1 -> derived, encrypted, appended

Steps 2 and 3 read then write, so each allocation runs in one transaction under a
per-chain lock: an asyncio.Lock inside the process and, on PostgreSQL, a transaction
scoped advisory lock plus FOR UPDATE SKIP LOCKED across processes. The unique
indexes on (crypto_type, derivation_index) and (crypto_type, address) are the last
line: an IntegrityError is treated as an AllocationConflict and retried once.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from prometheus_client import Counter
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from paychannel.core.chains import ChainFamily, ChainSpec, ChainType, chain_spec
from paychannel.core.config import settings
from paychannel.core.errors import AllocationConflict, ChannelCreationFailed, UnsupportedChainError
from paychannel.db.audit import record_audit
from paychannel.db.models import CryptoAddress
from paychannel.keys.custody import KeyCustodyStore
from paychannel.keys.derivation import KeyDerivationEngine
from paychannel.utils.timeutils import as_utc, utcnow

logger = logging.getLogger("paychannel.channels.allocator")

MET_ADDRESSES_DERIVED = Counter("paychannel_addresses_derived_total", "Fresh addresses derived", ["crypto_type"])
MET_ADDRESSES_REUSED = Counter("paychannel_addresses_reused_total", "Retired addresses recycled", ["crypto_type"])
MET_ALLOCATION_CONFLICTS = Counter("paychannel_allocation_conflicts_total", "Allocations rejected by store constraints", ["crypto_type"])

ADDRESS_COOLDOWN = timedelta(days=int(getattr(settings, "ADDRESS_COOLDOWN_DAYS", 7)))
MAX_ALLOCATION_ATTEMPTS = 2


@dataclass(frozen=True)
class AddressAllocation:
    chain_type: ChainType
    channel_id: str
    address: str
    public_key: Optional[str]
    derivation_path: str
    index: int
    address_type: str
    reusable_after: datetime
    reused: bool = False
    created: bool = False
    previous_channel_id: Optional[str] = None


def _is_postgres(session: AsyncSession) -> bool:
    bind = session.bind
    return bind is not None and bind.dialect.name == "postgresql"


class AddressAllocator:
    def __init__(
        self,
        engine: KeyDerivationEngine,
        custody: KeyCustodyStore,
        session_factory,
        cooldown: timedelta = ADDRESS_COOLDOWN,
        allow_placeholder_xmr: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._engine = engine
        self._custody = custody
        self._session_factory = session_factory
        self._cooldown = cooldown
        self._allow_placeholder_xmr = allow_placeholder_xmr
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, chain: str) -> asyncio.Lock:
        lock = self._locks.get(chain)
        if lock is None:
            lock = self._locks[chain] = asyncio.Lock()
        return lock

    def _resolve(self, chain_type) -> ChainSpec:
        spec = chain_spec(chain_type)
        if spec.family is ChainFamily.PRIVACY and not self._allow_placeholder_xmr:
            # placeholder addresses are not payable; see keys.derivation
            raise UnsupportedChainError(spec.chain_type.value)
        return spec

    async def allocate(self, chain_type, channel_id: str, build_channel: Optional[Callable] = None) -> AddressAllocation:
        """
        Return the address for channel_id, recycling or deriving as needed.

        build_channel(allocation) may return an ORM object (the PaymentChannel) to insert
        in the same transaction, so a failed channel insert also undoes the allocation.
        """
        spec = self._resolve(chain_type)
        if not channel_id:
            raise ValueError("channel_id is required")
        chain = spec.chain_type.value

        conflict: Optional[AllocationConflict] = None
        for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
            async with self._lock_for(chain):
                try:
                    allocation = await self._allocate_once(spec, channel_id, build_channel)
                except IntegrityError as exc:
                    MET_ALLOCATION_CONFLICTS.labels(chain).inc()
                    conflict = AllocationConflict(f"{chain} allocation for {channel_id} conflicted: {exc.orig}")
                    logger.warning("Allocation conflict chain=%s channel=%s attempt=%s", chain, channel_id, attempt)
                    continue
            if allocation.created:
                MET_ADDRESSES_DERIVED.labels(chain).inc()
                logger.info("Generated new %s address for channel %s: %s (index %s)", chain, channel_id, allocation.address, allocation.index)
            elif allocation.reused:
                MET_ADDRESSES_REUSED.labels(chain).inc()
                logger.info("Reusing %s address for channel %s: %s (was %s)", chain, channel_id, allocation.address, allocation.previous_channel_id)
            return allocation

        logger.error("Allocation failed chain=%s channel=%s after %s attempts", chain, channel_id, MAX_ALLOCATION_ATTEMPTS)
        raise ChannelCreationFailed(f"Could not allocate a {chain} address for channel {channel_id}") from conflict

    async def _allocate_once(self, spec: ChainSpec, channel_id: str, build_channel: Optional[Callable]) -> AddressAllocation:
        async with self._session_factory() as session:
            async with session.begin():
                postgres = _is_postgres(session)
                if postgres:
                    lock_key = func.hashtext(f"paychannel.allocate.{spec.chain_type.value}")
                    await session.execute(select(func.pg_advisory_xact_lock(lock_key)))
                allocation = await self._allocate_in(session, spec, channel_id, lock_rows=postgres)
                if build_channel is not None:
                    session.add(build_channel(allocation))
                    await session.flush()
            return allocation

    async def _allocate_in(self, session: AsyncSession, spec: ChainSpec, channel_id: str, lock_rows: bool) -> AddressAllocation:
        chain = spec.chain_type.value
        now = self._clock()

        existing = await self._custody.find_by_channel(session, chain, channel_id)
        if existing is not None:
            return self._to_allocation(spec, existing)

        candidate = await self._custody.find_recyclable(session, chain, now, lock=lock_rows)
        if candidate is not None:
            previous = candidate.channel_id
            await self._custody.reassign(session, candidate, channel_id, now + self._cooldown, now)
            record_audit(
                session, "allocator", "address_recycled",
                crypto_type=chain, address=candidate.address, derivation_index=candidate.derivation_index,
                channel_id=channel_id, previous_channel_id=previous,
            )
            return self._to_allocation(spec, candidate, reused=True, previous_channel_id=previous)

        index = await self._custody.next_index(session, chain)
        derived = self._engine.derive(spec.chain_type, index)
        row = await self._custody.persist_derived(session, derived, channel_id, now + self._cooldown)
        record_audit(
            session, "allocator", "address_derived",
            crypto_type=chain, address=row.address, derivation_index=index, channel_id=channel_id,
        )
        return self._to_allocation(spec, row, created=True)

    @staticmethod
    def _to_allocation(spec: ChainSpec, row: CryptoAddress, reused: bool = False, created: bool = False,
                       previous_channel_id: Optional[str] = None) -> AddressAllocation:
        return AddressAllocation(
            chain_type=spec.chain_type,
            channel_id=row.channel_id,
            address=row.address,
            public_key=row.public_key,
            derivation_path=row.derivation_path,
            index=row.derivation_index,
            address_type=row.address_type,
            reusable_after=as_utc(row.reusable_after),
            reused=reused,
            created=created,
            previous_channel_id=previous_channel_id,
        )

    async def mark_reusable(self, channel_id: str) -> int:
        """Skip the cool-down for every address of an administratively dead channel."""
        async with self._session_factory() as session:
            async with session.begin():
                count = await self._custody.mark_reusable(session, channel_id, self._clock())
                if count:
                    record_audit(session, "allocator", "address_marked_reusable", channel_id=channel_id, count=count)
        logger.info("Marked %s address(es) for channel %s as immediately reusable", count, channel_id)
        return count
