"""Add MFA security records, factors, trusted devices and security log

Revision ID: add_mfa_tables
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'add_mfa_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create user_security_records table
    op.create_table(
        'user_security_records',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('secret', sa.String()),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('backup_codes', sa.Text()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'user_id', name='uq_user_security_records_tenant_user'),
    )

    # Create mfa_devices table
    op.create_table(
        'mfa_devices',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('tenant_id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('factor_type', sa.String(), nullable=False, server_default='totp'),
        sa.Column('name', sa.String()),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('last_used_at', sa.DateTime(timezone=True)),
        sa.Column('total_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('tenant_id', 'user_id', 'factor_type', name='uq_mfa_devices_tenant_user_factor'),
    )

    # Create trusted_devices table
    op.create_table(
        'trusted_devices',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('tenant_id', sa.String()),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('device_id', sa.String(), nullable=False),
        sa.Column('device_name', sa.String()),
        sa.Column('device_type', sa.String(20)),
        sa.Column('user_agent', sa.Text()),
        sa.Column('ip_address', sa.String(45)),
        sa.Column('fingerprint', sa.String(64), nullable=False),
        sa.Column('is_trusted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('trust_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'device_id', name='uq_trusted_devices_user_device'),
    )

    # Create security_logs table (append-only)
    op.create_table(
        'security_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('tenant_id', sa.String()),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ip_address', sa.String(45)),
        sa.Column('user_agent', sa.String()),
        sa.Column('details', sa.JSON(), nullable=False),
    )

    # Create indexes for performance
    op.create_index('ix_user_security_records_tenant_id', 'user_security_records', ['tenant_id'])
    op.create_index('ix_user_security_records_user_id', 'user_security_records', ['user_id'])
    op.create_index('ix_mfa_devices_tenant_id', 'mfa_devices', ['tenant_id'])
    op.create_index('ix_mfa_devices_user_id', 'mfa_devices', ['user_id'])
    op.create_index('ix_trusted_devices_tenant_id', 'trusted_devices', ['tenant_id'])
    op.create_index('idx_trusted_devices_expires', 'trusted_devices', ['trust_expires_at'])

    op.create_index('idx_security_logs_user', 'security_logs', ['tenant_id', 'user_id'])
    op.create_index('idx_security_logs_type', 'security_logs', ['event_type'])
    op.create_index('idx_security_logs_created', 'security_logs', ['created_at'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('idx_security_logs_created')
    op.drop_index('idx_security_logs_type')
    op.drop_index('idx_security_logs_user')

    op.drop_index('idx_trusted_devices_expires')
    op.drop_index('ix_trusted_devices_tenant_id')
    op.drop_index('ix_mfa_devices_user_id')
    op.drop_index('ix_mfa_devices_tenant_id')
    op.drop_index('ix_user_security_records_user_id')
    op.drop_index('ix_user_security_records_tenant_id')

    # Drop tables
    op.drop_table('security_logs')
    op.drop_table('trusted_devices')
    op.drop_table('mfa_devices')
    op.drop_table('user_security_records')
