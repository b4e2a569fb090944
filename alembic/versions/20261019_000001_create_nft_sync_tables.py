"""create nft sync tables

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create nft_tokens, nft_transfers, nft_sync_state and nft_sync_leases."""
    op.create_table(
        'nft_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('token_id', sa.BigInteger(), nullable=False),
        sa.Column('owner_address', sa.String(42), nullable=False),
        sa.Column('token_uri', sa.String(2048), nullable=True),
        sa.Column('last_transfer_block', sa.BigInteger(), nullable=False),
        sa.Column('last_transfer_tx_index', sa.Integer(), nullable=False),
        sa.Column('last_transfer_log_index', sa.Integer(), nullable=False),
        sa.Column('last_transfer_tx_hash', sa.String(66), nullable=False),
        sa.Column('last_synced_block', sa.BigInteger(), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('enriched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_address', 'token_id', name='uq_nft_tokens_contract_token'),
    )
    op.create_index('ix_nft_tokens_contract_address', 'nft_tokens', ['contract_address'])
    op.create_index('ix_nft_tokens_owner_address', 'nft_tokens', ['owner_address'])
    op.create_index('ix_nft_tokens_last_synced_block', 'nft_tokens', ['last_synced_block'])

    op.create_table(
        'nft_transfers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('token_id', sa.BigInteger(), nullable=False),
        sa.Column('from_address', sa.String(42), nullable=False),
        sa.Column('to_address', sa.String(42), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.String(66), nullable=False),
        sa.Column('block_timestamp', sa.BigInteger(), nullable=True),
        sa.Column('tx_index', sa.Integer(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', 'log_index', name='uq_nft_transfers_tx_hash_log_index'),
    )
    op.create_index('ix_nft_transfers_contract_token', 'nft_transfers', ['contract_address', 'token_id'])
    op.create_index('ix_nft_transfers_block_number', 'nft_transfers', ['block_number'])
    op.create_index('ix_nft_transfers_from_address', 'nft_transfers', ['from_address'])
    op.create_index('ix_nft_transfers_to_address', 'nft_transfers', ['to_address'])

    op.create_table(
        'nft_sync_state',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('start_block', sa.BigInteger(), nullable=False, default=0),
        sa.Column('current_block', sa.BigInteger(), nullable=False, default=0),
        sa.Column('finalized_to_block', sa.BigInteger(), nullable=False, default=0),
        sa.Column('head_block', sa.BigInteger(), nullable=False, default=0),
        sa.Column('tokens_discovered', sa.Integer(), nullable=False, default=0),
        sa.Column('tokens_enriched', sa.Integer(), nullable=False, default=0),
        sa.Column('transfers_processed', sa.Integer(), nullable=False, default=0),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmations', sa.Integer(), nullable=False),
        sa.Column('batch_size', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, default=0),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_address', 'sync_type', name='uq_nft_sync_state_contract_type'),
    )

    op.create_table(
        'nft_sync_leases',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('contract_address', sa.String(42), nullable=False),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('contract_address', 'sync_type', name='uq_nft_sync_leases_contract_type'),
    )


def downgrade() -> None:
    """Drop nft sync tables."""
    op.drop_table('nft_sync_leases')
    op.drop_table('nft_sync_state')
    op.drop_index('ix_nft_transfers_to_address', table_name='nft_transfers')
    op.drop_index('ix_nft_transfers_from_address', table_name='nft_transfers')
    op.drop_index('ix_nft_transfers_block_number', table_name='nft_transfers')
    op.drop_index('ix_nft_transfers_contract_token', table_name='nft_transfers')
    op.drop_table('nft_transfers')
    op.drop_index('ix_nft_tokens_last_synced_block', table_name='nft_tokens')
    op.drop_index('ix_nft_tokens_owner_address', table_name='nft_tokens')
    op.drop_index('ix_nft_tokens_contract_address', table_name='nft_tokens')
    op.drop_table('nft_tokens')
