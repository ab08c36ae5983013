"""Create guardian_tokens table

Revision ID: 4f2a9c1e7b30
Revises:
Create Date: 2026-10-16 09:12:44.120583

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f2a9c1e7b30'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_ONLY = sa.text("status = 'ACTIVE'")


def upgrade() -> None:
    """Create the token table and its indexes."""
    op.create_table(
        'guardian_tokens',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('token_value', sa.String(length=16), nullable=False),
        sa.Column('token_type', sa.String(length=20), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=20), nullable=False),
        sa.Column('vendor_scope', sa.String(length=30), nullable=True),
        sa.Column('vendor_scope_key', sa.String(length=30), nullable=False, server_default=''),
        sa.Column('school_year', sa.String(length=9), nullable=False),
        sa.Column('salt', sa.String(length=64), nullable=False),
        sa.Column('checksum', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rotation_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('replaced_by_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_value'),
    )
    op.create_index('ix_guardian_token_entity', 'guardian_tokens', ['entity_type', 'entity_id'])
    op.create_index('ix_guardian_token_status_expires', 'guardian_tokens', ['status', 'expires_at'])
    op.create_index('ix_guardian_token_vendor_scope', 'guardian_tokens', ['vendor_scope'])
    op.create_index('ix_guardian_token_school_year', 'guardian_tokens', ['school_year'])
    # One ACTIVE token per entity and vendor scope
    op.create_index(
        'uq_guardian_token_active_key',
        'guardian_tokens',
        ['entity_type', 'entity_id', 'vendor_scope_key'],
        unique=True,
        postgresql_where=ACTIVE_ONLY,
        sqlite_where=ACTIVE_ONLY,
    )


def downgrade() -> None:
    """Drop the token table."""
    op.drop_index('uq_guardian_token_active_key', table_name='guardian_tokens')
    op.drop_index('ix_guardian_token_school_year', table_name='guardian_tokens')
    op.drop_index('ix_guardian_token_vendor_scope', table_name='guardian_tokens')
    op.drop_index('ix_guardian_token_status_expires', table_name='guardian_tokens')
    op.drop_index('ix_guardian_token_entity', table_name='guardian_tokens')
    op.drop_table('guardian_tokens')
