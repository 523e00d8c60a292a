"""Add snapshot lifecycle tables: policies, legal holds, deletion events.

Changes:
- Create lifecycle_policies table for classification-keyed retention rules
  (with the enforcement_* columns that claim a policy for one run at a time)
- Create legal_holds table (one hold per snapshot per organization)
- Create lifecycle_deletion_events table for the append-only audit trail

Revision ID: 001_add_lifecycle_tables
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_add_lifecycle_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create lifecycle tables."""

    # -------------------------------------------------------------------------
    # 1. lifecycle_policies
    # -------------------------------------------------------------------------
    print("  Creating lifecycle_policies table...")

    op.create_table(
        'lifecycle_policies',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='draft'),
        sa.Column('enforcement_mode', sa.String(32), nullable=False, server_default='must_delete_only'),
        sa.Column('rules', sa.JSON(), nullable=False),
        sa.Column('repository_ids', sa.JSON(), nullable=True),
        sa.Column('schedule_ids', sa.JSON(), nullable=True),
        sa.Column('enforcement_run_id', sa.String(36), nullable=True),
        sa.Column('enforcement_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('enforcement_cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deletion_count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('bytes_reclaimed', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_evaluated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_deletion_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lifecycle_policies_org_id', 'lifecycle_policies', ['org_id'], unique=False)
    op.create_index('ix_lifecycle_policies_status', 'lifecycle_policies', ['status'], unique=False)

    print("  Created lifecycle_policies table")

    # -------------------------------------------------------------------------
    # 2. legal_holds
    # -------------------------------------------------------------------------
    print("  Creating legal_holds table...")

    op.create_table(
        'legal_holds',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('snapshot_id', sa.String(255), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('placed_by', sa.String(255), nullable=False),
        sa.Column('placed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('org_id', 'snapshot_id', name='uq_legal_holds_org_snapshot'),
    )
    op.create_index('ix_legal_holds_org_id', 'legal_holds', ['org_id'], unique=False)

    print("  Created legal_holds table")

    # -------------------------------------------------------------------------
    # 3. lifecycle_deletion_events (no FK to policies: events outlive them)
    # -------------------------------------------------------------------------
    print("  Creating lifecycle_deletion_events table...")

    op.create_table(
        'lifecycle_deletion_events',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('org_id', sa.Uuid(), nullable=False),
        sa.Column('policy_id', sa.Uuid(), nullable=False),
        sa.Column('snapshot_id', sa.String(255), nullable=False),
        sa.Column('repository_id', sa.String(255), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('deleted_by', sa.String(255), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_lifecycle_deletion_events_org_deleted_at',
        'lifecycle_deletion_events',
        ['org_id', 'deleted_at'],
        unique=False,
    )
    op.create_index(
        'ix_lifecycle_deletion_events_policy_id',
        'lifecycle_deletion_events',
        ['policy_id'],
        unique=False,
    )

    print("  Created lifecycle_deletion_events table with 2 indexes")
    print("  Migration complete!")


def downgrade() -> None:
    """Drop lifecycle tables."""

    print("  Dropping lifecycle_deletion_events table...")
    op.drop_index('ix_lifecycle_deletion_events_policy_id', table_name='lifecycle_deletion_events')
    op.drop_index('ix_lifecycle_deletion_events_org_deleted_at', table_name='lifecycle_deletion_events')
    op.drop_table('lifecycle_deletion_events')

    print("  Dropping legal_holds table...")
    op.drop_index('ix_legal_holds_org_id', table_name='legal_holds')
    op.drop_table('legal_holds')

    print("  Dropping lifecycle_policies table...")
    op.drop_index('ix_lifecycle_policies_status', table_name='lifecycle_policies')
    op.drop_index('ix_lifecycle_policies_org_id', table_name='lifecycle_policies')
    op.drop_table('lifecycle_policies')

    print("  Downgrade complete!")
