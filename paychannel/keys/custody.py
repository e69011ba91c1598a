"""
KeyCustodyStore - persistence for derived addresses and their encrypted private keys.

Every method works inside the caller's session/transaction; the allocator decides
when to commit. Plaintext key material only exists for the duration of
persist_derived (encrypt) and decrypt_private_key (authorized release).
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from paychannel.db.audit import record_audit
from paychannel.db.models import ACTIVE_STATUSES, TERMINAL_STATUSES, CryptoAddress, PaymentChannel
from paychannel.keys.derivation import DerivedKey
from paychannel.keys.encryption import KeyEncryptor

logger = logging.getLogger("paychannel.keys.custody")


class KeyCustodyStore:
    def __init__(self, encryptor: KeyEncryptor):
        self._encryptor = encryptor

    async def find_by_channel(self, session: AsyncSession, chain_type: str, channel_id: str) -> Optional[CryptoAddress]:
        stmt = select(CryptoAddress).where(
            CryptoAddress.channel_id == channel_id,
            CryptoAddress.crypto_type == chain_type,
        ).limit(1)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def next_index(self, session: AsyncSession, chain_type: str) -> int:
        stmt = select(func.max(CryptoAddress.derivation_index)).where(CryptoAddress.crypto_type == chain_type)
        current = (await session.execute(stmt)).scalar_one_or_none()
        return 0 if current is None else int(current) + 1

    async def find_recyclable(
        self,
        session: AsyncSession,
        chain_type: str,
        now: datetime,
        lock: bool = False,
        terminal_statuses: Iterable[str] = TERMINAL_STATUSES,
        active_statuses: Iterable[str] = ACTIVE_STATUSES,
    ) -> Optional[CryptoAddress]:
        """
        Oldest address of chain_type whose cool-down has passed, whose owning channel is
        terminal and which no live channel still points at.
        """
        owner = aliased(PaymentChannel)
        claimant = aliased(PaymentChannel)
        still_claimed = (
            select(claimant.id)
            .where(
                claimant.crypto_type == CryptoAddress.crypto_type,
                claimant.payment_address == CryptoAddress.address,
                claimant.status.in_(tuple(active_statuses)),
            )
            .exists()
        )
        stmt = (
            select(CryptoAddress)
            .join(owner, owner.channel_id == CryptoAddress.channel_id)
            .where(
                CryptoAddress.crypto_type == chain_type,
                CryptoAddress.reusable_after <= now,
                owner.status.in_(tuple(terminal_statuses)),
                ~still_claimed,
            )
            .order_by(CryptoAddress.reusable_after.asc(), CryptoAddress.id.asc())
            .limit(1)
        )
        if lock:
            stmt = stmt.with_for_update(of=CryptoAddress, skip_locked=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def persist_derived(
        self,
        session: AsyncSession,
        derived: DerivedKey,
        channel_id: str,
        reusable_after: datetime,
    ) -> CryptoAddress:
        """Encrypt and append a freshly derived key. Flushes so constraint violations surface here."""
        row = CryptoAddress(
            channel_id=channel_id,
            crypto_type=derived.chain_type.value,
            derivation_index=derived.index,
            address=derived.address,
            public_key=derived.public_key,
            private_key_encrypted=self._encryptor.encrypt(derived.private_key.encode("utf-8")),
            derivation_path=derived.derivation_path,
            address_type=derived.address_type,
            reusable_after=reusable_after,
        )
        session.add(row)
        await session.flush()
        return row

    async def reassign(self, session: AsyncSession, row: CryptoAddress, channel_id: str, reusable_after: datetime, now: datetime) -> CryptoAddress:
        # only ownership and cool-down move; key fields are never rewritten
        row.channel_id = channel_id
        row.reusable_after = reusable_after
        row.updated_at = now
        await session.flush()
        return row

    async def mark_reusable(self, session: AsyncSession, channel_id: str, now: datetime) -> int:
        stmt = (
            update(CryptoAddress)
            .where(CryptoAddress.channel_id == channel_id)
            .values(reusable_after=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount or 0

    async def list_addresses(self, session: AsyncSession, chain_type: str, addresses: Optional[Iterable[str]] = None) -> list[CryptoAddress]:
        stmt = select(CryptoAddress).where(CryptoAddress.crypto_type == chain_type)
        if addresses is not None:
            stmt = stmt.where(CryptoAddress.address.in_(list(addresses)))
        stmt = stmt.order_by(CryptoAddress.created_at.asc(), CryptoAddress.derivation_index.asc())
        return list((await session.execute(stmt)).scalars().all())

    def decrypt_private_key(self, session: AsyncSession, row: CryptoAddress, actor: str) -> str:
        """Release a plaintext key. Callers must be the authorized sweep path; every release is audited."""
        record_audit(
            session,
            actor=actor,
            action="private_key_released",
            crypto_type=row.crypto_type,
            address=row.address,
            derivation_index=row.derivation_index,
        )
        logger.warning("Private key released for %s address %s to %s", row.crypto_type, row.address, actor)
        return self._encryptor.decrypt(row.private_key_encrypted).decode("utf-8")
