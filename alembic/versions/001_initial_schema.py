"""Initial bridge ledger schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Global state and policy (single row)
    op.create_table(
        'bridge_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin', sa.String(255), nullable=False),
        sa.Column('fee_collector', sa.String(255), nullable=False),
        sa.Column('nonce', sa.Integer(), nullable=False, default=0),
        sa.Column('paused', sa.Boolean(), nullable=False, default=False),
        sa.Column('min_amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('max_amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('fee_basis_points', sa.Integer(), nullable=False),
        sa.Column('relayer_threshold', sa.Integer(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, default=True),
        sa.Column('max_fee_basis_points', sa.Integer(), nullable=False),
        sa.Column('policy_version', sa.Integer(), nullable=False, default=1),
        sa.Column('schema_version', sa.Integer(), nullable=False),
        sa.Column('initialized_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Supported assets
    op.create_table(
        'supported_assets',
        sa.Column('asset', sa.String(255), nullable=False),
        sa.Column('supported', sa.Boolean(), nullable=False, default=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('asset')
    )

    # Role grants
    op.create_table(
        'role_grants',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('identity', sa.String(255), nullable=False),
        sa.Column('granted_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_role_grants_role_identity', 'role_grants', ['role', 'identity'], unique=True)

    # Transfers
    op.create_table(
        'transfers',
        sa.Column('id', sa.String(66), nullable=False),
        sa.Column('sender', sa.String(255), nullable=False),
        sa.Column('destination_recipient', sa.String(255), nullable=False),
        sa.Column('asset', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('fee', sa.Numeric(36, 18), nullable=False),
        sa.Column('net_amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('nonce', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('confirmation_count', sa.Integer(), nullable=False, default=0),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('nonce')
    )
    op.create_index('ix_transfers_sender', 'transfers', ['sender'])

    # Attestations
    op.create_table(
        'attestations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('transfer_id', sa.String(66), nullable=False),
        sa.Column('relayer', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_attestations_transfer_relayer', 'attestations', ['transfer_id', 'relayer'], unique=True
    )

    # Account balances (custody)
    op.create_table(
        'account_balances',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('account', sa.String(255), nullable=False),
        sa.Column('asset', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_account_balances_account_asset', 'account_balances', ['account', 'asset'], unique=True
    )

    # Collected fees
    op.create_table(
        'collected_fees',
        sa.Column('asset', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=True),
        sa.Column('total_withdrawn', sa.Numeric(36, 18), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('asset')
    )

    # Processed releases (replay guard)
    op.create_table(
        'processed_releases',
        sa.Column('release_id', sa.String(66), nullable=False),
        sa.Column('source_tx_ref', sa.String(255), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('asset', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(36, 18), nullable=False),
        sa.Column('released_by', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('release_id')
    )

    # Event log
    op.create_table(
        'bridge_events',
        sa.Column('position', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('transfer_id', sa.String(66), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('position')
    )
    op.create_index('ix_bridge_events_event_type', 'bridge_events', ['event_type'])
    op.create_index('ix_bridge_events_transfer_id', 'bridge_events', ['transfer_id'])

    # Relayer cursors
    op.create_table(
        'relayer_cursors',
        sa.Column('relayer', sa.String(255), nullable=False),
        sa.Column('last_position', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('relayer')
    )

    # Outstanding relayer work
    op.create_table(
        'outstanding_transfers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('relayer', sa.String(255), nullable=False),
        sa.Column('transfer_id', sa.String(66), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('stage', sa.String(20), nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, default=0),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_outstanding_relayer_transfer', 'outstanding_transfers', ['relayer', 'transfer_id'], unique=True
    )


def downgrade() -> None:
    op.drop_table('outstanding_transfers')
    op.drop_table('relayer_cursors')
    op.drop_table('bridge_events')
    op.drop_table('processed_releases')
    op.drop_table('collected_fees')
    op.drop_table('account_balances')
    op.drop_table('attestations')
    op.drop_table('transfers')
    op.drop_table('role_grants')
    op.drop_table('supported_assets')
    op.drop_table('bridge_state')
