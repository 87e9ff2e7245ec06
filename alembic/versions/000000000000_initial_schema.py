"""initial_schema

Revision ID: 000000000000
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create listings table
    op.create_table(
        'listings',
        sa.Column('id', sa.Text(), nullable=False, comment='Canonical listing id (parcel id, OBJECTID or generated token)'),
        sa.Column('parcel_id', sa.Text(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('address_lower', sa.Text(), nullable=True, comment='Lowercased address for prefix search'),
        sa.Column('address_keywords', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Whitespace tokens of the lowercased address'),
        sa.Column('neighborhood', sa.Text(), nullable=True),
        sa.Column('ward', sa.Float(), nullable=True),
        sa.Column('zip', sa.String(length=5), nullable=True),
        sa.Column('sqft', sa.Float(), nullable=True),
        sa.Column('usage', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=True),
        sa.Column('property_type', sa.Text(), nullable=True),
        sa.Column('removed', sa.Boolean(), nullable=False, comment='True once the listing left the source inventory'),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True, comment='When the listing was flagged removed'),
        sa.Column('content_hash', sa.String(length=64), nullable=True, comment='SHA-256 fingerprint of the normalized record'),
        sa.Column('document', postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment='Full listing document'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_listings_removed', 'listings', ['removed'], unique=False)
    op.create_index('idx_listings_parcel_id', 'listings', ['parcel_id'], unique=False)
    op.create_index('idx_listings_zip', 'listings', ['zip'], unique=False)
    op.create_index('idx_listings_ward', 'listings', ['ward'], unique=False)
    op.create_index('idx_listings_neighborhood', 'listings', ['neighborhood'], unique=False)
    op.create_index('idx_listings_status', 'listings', ['status'], unique=False)
    op.create_index('idx_listings_address_lower', 'listings', ['address_lower'], unique=False)

    # Create subscriptions table
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('user_id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('zip', 'parcel', 'ward', 'neighborhood')", name='check_subscription_type_valid')
    )
    op.create_index('idx_subscriptions_type_value', 'subscriptions', ['type', 'value'], unique=False)
    op.create_index('idx_subscriptions_user_id', 'subscriptions', ['user_id'], unique=False)

    # Create exports table
    op.create_table(
        'exports',
        sa.Column('id', sa.String(length=50), nullable=False),
        sa.Column('summary', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('csv', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('selections', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # Create data_ingestion_runs table
    op.create_table(
        'data_ingestion_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source_type', sa.String(length=50), nullable=False, comment='Source type, e.g. lra_listings'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Run status: running, success, failure, partial'),
        sa.Column('records_processed', sa.Integer(), nullable=False),
        sa.Column('records_added', sa.Integer(), nullable=False),
        sa.Column('records_changed', sa.Integer(), nullable=False),
        sa.Column('records_removed', sa.Integer(), nullable=False),
        sa.Column('records_unchanged', sa.Integer(), nullable=False),
        sa.Column('batches_committed', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('running', 'success', 'failure', 'partial')", name='check_status_valid')
    )
    op.create_index('idx_data_ingestion_runs_status', 'data_ingestion_runs', ['status'], unique=False)
    op.create_index('idx_data_ingestion_runs_started_at', 'data_ingestion_runs', ['started_at'], unique=False)


def downgrade() -> None:
    op.drop_table('data_ingestion_runs')
    op.drop_table('exports')
    op.drop_table('subscriptions')
    op.drop_table('listings')
