"""
Async SQLAlchemy models for payment channels, custody addresses and pricing snapshots.
No ORM-side business logic. DB is the source-of-truth.
"""
import sqlalchemy as sa
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from paychannel.utils.timeutils import utcnow

Base = declarative_base()

# channel statuses
STATUS_PENDING = "pending"
STATUS_CONFIRMING = "confirming"
STATUS_CONFIRMED = "confirmed"
STATUS_COMPLETED = "completed"
STATUS_EXPIRED = "expired"
STATUS_CANCELLED = "cancelled"

# a channel in one of these owns its address exclusively
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMING)
TERMINAL_STATUSES = (STATUS_CONFIRMED, STATUS_COMPLETED, STATUS_EXPIRED, STATUS_CANCELLED)

_ACTIVE_WHERE = sa.text("status IN ('pending', 'confirming')")


# payment_channels
class PaymentChannel(Base):
    __tablename__ = "payment_channels"
    id = sa.Column(sa.Integer(), primary_key=True, autoincrement=True)
    channel_id = sa.Column(sa.String(100), nullable=False, unique=True)
    username = sa.Column(sa.String(50), nullable=False)
    crypto_type = sa.Column(sa.String(10), nullable=False)
    payment_address = sa.Column(sa.String(255), nullable=False)
    amount_crypto = sa.Column(sa.Numeric(36, 18), nullable=False)
    amount_usd = sa.Column(sa.Numeric(20, 6), nullable=False)
    memo = sa.Column(sa.String(255), nullable=True)
    status = sa.Column(sa.String(20), nullable=False, default=STATUS_PENDING, server_default=STATUS_PENDING)
    tx_hash = sa.Column(sa.String(255), nullable=True)
    confirmations = sa.Column(sa.Integer(), nullable=False, default=0, server_default="0")
    public_keys = sa.Column(sa.JSON(), nullable=True)
    created_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    confirmed_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=True)
    completed_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=True)
    expires_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False)

    __table_args__ = (
        sa.Index("idx_channels_status", "status"),
        sa.Index("idx_channels_username", "username"),
        sa.Index("idx_channels_expires", "expires_at"),
        sa.Index("idx_channels_payment_address", "payment_address"),
        sa.Index("ux_channels_active_address", "crypto_type", "payment_address", unique=True,
                 postgresql_where=_ACTIVE_WHERE, sqlite_where=_ACTIVE_WHERE),
    )


# crypto_addresses (never deleted; rows are the custody audit trail)
class CryptoAddress(Base):
    __tablename__ = "crypto_addresses"
    id = sa.Column(sa.Integer(), primary_key=True, autoincrement=True)
    channel_id = sa.Column(sa.String(100), nullable=True)
    crypto_type = sa.Column(sa.String(10), nullable=False)
    derivation_index = sa.Column(sa.Integer(), nullable=False)
    address = sa.Column(sa.String(255), nullable=False)
    public_key = sa.Column(sa.Text(), nullable=True)
    private_key_encrypted = sa.Column(sa.LargeBinary(), nullable=False)
    derivation_path = sa.Column(sa.String(64), nullable=False)
    address_type = sa.Column(sa.String(20), nullable=False)
    reusable_after = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False)
    created_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    updated_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        sa.Index("ux_crypto_addresses_type_index", "crypto_type", "derivation_index", unique=True),
        sa.Index("ux_crypto_addresses_type_address", "crypto_type", "address", unique=True),
        sa.Index("idx_crypto_addresses_channel", "channel_id"),
        sa.Index("idx_crypto_addresses_reusable", "crypto_type", "reusable_after"),
    )


# pricing_snapshots (append-only, pruned by age)
class PricingSnapshot(Base):
    __tablename__ = "pricing_snapshots"
    id = sa.Column(sa.Integer(), primary_key=True, autoincrement=True)
    hive_price_usd = sa.Column(sa.Numeric(20, 8), nullable=False)
    base_cost_usd = sa.Column(sa.Numeric(20, 6), nullable=False)
    account_creation_cost_usd = sa.Column(sa.Numeric(20, 6), nullable=False)
    crypto_rates = sa.Column(sa.JSON(), nullable=False)
    transfer_costs = sa.Column(sa.JSON(), nullable=False)
    updated_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        sa.Index("idx_pricing_snapshots_updated_at", "updated_at"),
    )


# audit_logs (append-only)
class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = sa.Column(sa.Integer(), primary_key=True, autoincrement=True)
    actor = sa.Column(sa.Text(), nullable=True)
    action = sa.Column(sa.Text(), nullable=False)
    details = sa.Column(sa.JSON(), nullable=True)
    created_at = sa.Column(sa.TIMESTAMP(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    __table_args__ = (
        sa.Index("idx_audit_logs_created_at", "created_at"),
    )
