"""create otp_records table

Revision ID: c4e8a1f2b3d5
Revises:
Create Date: 2026-10-18

One table for every OTP flow, keyed by (purpose, scope_key):
  admin_login   — scope_key is the configured admin email
  order_return  — scope_key is "<user_id>:<order_id>"

uq_otp_records_active_scope is a partial UNIQUE index over the unconsumed rows.
It is what makes "at most one active code per scope" hold under concurrent
requests: a second insert while another code is active fails with a unique
violation instead of silently creating a duplicate.
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = 'c4e8a1f2b3d5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    otp_purpose = postgresql.ENUM('admin_login', 'order_return', name='otp_purpose')
    otp_purpose.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'otp_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            'purpose',
            postgresql.ENUM('admin_login', 'order_return', name='otp_purpose', create_type=False),
            nullable=False,
        ),
        sa.Column('scope_key', sa.String(255), nullable=False),
        sa.Column('code_hash', sa.String(64), nullable=False),
        sa.Column('code_salt', sa.String(64), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('consumed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('verified_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('requester_ip', sa.String(64), nullable=True),
        sa.Column('requester_user_agent', sa.String(512), nullable=True),
    )

    op.create_index(
        'uq_otp_records_active_scope',
        'otp_records',
        ['purpose', 'scope_key'],
        unique=True,
        postgresql_where=sa.text('consumed_at IS NULL'),
    )
    op.create_index(
        'ix_otp_records_scope_consumed',
        'otp_records',
        ['purpose', 'scope_key', 'consumed_at'],
    )


def downgrade() -> None:
    op.drop_index('ix_otp_records_scope_consumed', table_name='otp_records')
    op.drop_index('uq_otp_records_active_scope', table_name='otp_records')
    op.drop_table('otp_records')
    postgresql.ENUM(name='otp_purpose').drop(op.get_bind(), checkfirst=True)
