"""Initial schema for the payment channel core

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # payment_channels
    op.create_table(
        'payment_channels',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('channel_id', sa.String(100), nullable=False, unique=True),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('crypto_type', sa.String(10), nullable=False),
        sa.Column('payment_address', sa.String(255), nullable=False),
        sa.Column('amount_crypto', sa.Numeric(36, 18), nullable=False),
        sa.Column('amount_usd', sa.Numeric(20, 6), nullable=False),
        sa.Column('memo', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('tx_hash', sa.String(255), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('public_keys', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('confirmed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index('idx_channels_status', 'payment_channels', ['status'])
    op.create_index('idx_channels_username', 'payment_channels', ['username'])
    op.create_index('idx_channels_expires', 'payment_channels', ['expires_at'])
    op.create_index('idx_channels_payment_address', 'payment_channels', ['payment_address'])
    # one live channel per address
    op.create_index('ux_channels_active_address', 'payment_channels', ['crypto_type', 'payment_address'], unique=True,
                    postgresql_where=sa.text("status IN ('pending', 'confirming')"))

    # crypto_addresses
    op.create_table(
        'crypto_addresses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('channel_id', sa.String(100), nullable=True),
        sa.Column('crypto_type', sa.String(10), nullable=False),
        sa.Column('derivation_index', sa.Integer(), nullable=False),
        sa.Column('address', sa.String(255), nullable=False),
        sa.Column('public_key', sa.Text(), nullable=True),
        sa.Column('private_key_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('derivation_path', sa.String(64), nullable=False),
        sa.Column('address_type', sa.String(20), nullable=False),
        sa.Column('reusable_after', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ux_crypto_addresses_type_index', 'crypto_addresses', ['crypto_type', 'derivation_index'], unique=True)
    op.create_index('ux_crypto_addresses_type_address', 'crypto_addresses', ['crypto_type', 'address'], unique=True)
    op.create_index('idx_crypto_addresses_channel', 'crypto_addresses', ['channel_id'])
    op.create_index('idx_crypto_addresses_reusable', 'crypto_addresses', ['crypto_type', 'reusable_after'])

    # pricing_snapshots
    op.create_table(
        'pricing_snapshots',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('hive_price_usd', sa.Numeric(20, 8), nullable=False),
        sa.Column('base_cost_usd', sa.Numeric(20, 6), nullable=False),
        sa.Column('account_creation_cost_usd', sa.Numeric(20, 6), nullable=False),
        sa.Column('crypto_rates', sa.JSON(), nullable=False),
        sa.Column('transfer_costs', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('idx_pricing_snapshots_updated_at', 'pricing_snapshots', ['updated_at'])

    # audit_logs
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('actor', sa.Text(), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('idx_audit_logs_created_at', 'audit_logs', ['created_at'])

    op.execute("""
    CREATE OR REPLACE FUNCTION prevent_update_delete() RETURNS trigger LANGUAGE plpgsql AS $$
    BEGIN
      RAISE EXCEPTION 'append-only table: updates/deletes are not allowed';
      RETURN NULL;
    END;
    $$;
    """)

    # custody rows may be recycled (UPDATE) but never removed
    op.execute("CREATE TRIGGER trg_crypto_addresses_prevent_delete BEFORE DELETE ON crypto_addresses FOR EACH ROW EXECUTE FUNCTION prevent_update_delete();")
    op.execute("CREATE TRIGGER trg_audit_prevent_update_delete BEFORE UPDATE OR DELETE ON audit_logs FOR EACH ROW EXECUTE FUNCTION prevent_update_delete();")


def downgrade():
    op.execute("DROP TRIGGER IF EXISTS trg_crypto_addresses_prevent_delete ON crypto_addresses;")
    op.execute("DROP TRIGGER IF EXISTS trg_audit_prevent_update_delete ON audit_logs;")
    op.execute("DROP FUNCTION IF EXISTS prevent_update_delete();")

    op.drop_index('idx_audit_logs_created_at', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('idx_pricing_snapshots_updated_at', table_name='pricing_snapshots')
    op.drop_table('pricing_snapshots')

    op.drop_index('idx_crypto_addresses_reusable', table_name='crypto_addresses')
    op.drop_index('idx_crypto_addresses_channel', table_name='crypto_addresses')
    op.drop_index('ux_crypto_addresses_type_address', table_name='crypto_addresses')
    op.drop_index('ux_crypto_addresses_type_index', table_name='crypto_addresses')
    op.drop_table('crypto_addresses')

    op.drop_index('ux_channels_active_address', table_name='payment_channels')
    op.drop_index('idx_channels_payment_address', table_name='payment_channels')
    op.drop_index('idx_channels_expires', table_name='payment_channels')
    op.drop_index('idx_channels_username', table_name='payment_channels')
    op.drop_index('idx_channels_status', table_name='payment_channels')
    op.drop_table('payment_channels')
