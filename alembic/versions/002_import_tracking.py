"""add import tracking tables

Revision ID: 002_import_tracking
Revises: 001_initial_schema
Create Date: 2025-11-04 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002_import_tracking'
down_revision = '001_initial_schema'
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade() -> None:
    """
    Create progress tracking tables for import runs.

    Tables created:
    - import_runs: One progress record per import id
    - import_progress: Progress history per import
    """

    # Create import_runs table
    op.create_table(
        'import_runs',
        sa.Column('import_id', sa.String(length=255), nullable=False,
                  comment='Import identifier (Celery task UUID for background runs)'),
        sa.Column('source', sa.String(length=512), nullable=True, comment='Input file name'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('phase', sa.String(length=50), nullable=True, comment='Current orchestrator phase'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0',
                  comment='Progress percentage (0 to 100)'),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('metadata', JSONType, nullable=True, comment='Per-sheet and per-phase counts on completion'),
        sa.Column('error_details', JSONType, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(), nullable=True),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint("status IN ('pending', 'processing', 'completed', 'failed')",
                           name='import_runs_status_check'),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='import_runs_progress_check'),
        sa.PrimaryKeyConstraint('import_id'),
        comment='Tracks roster import runs'
    )

    op.create_index('idx_import_runs_status', 'import_runs', ['status'])
    op.create_index('idx_import_runs_created_at', 'import_runs', ['created_at'])

    # Create import_progress table
    op.create_table(
        'import_progress',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('import_id', sa.String(length=255), nullable=False),
        sa.Column('stage', sa.String(length=50), nullable=False,
                  comment='Phase name (e.g., clearing, loading_stores)'),
        sa.Column('percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['import_id'], ['import_runs.import_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        comment='Progress history for import runs'
    )

    op.create_index('idx_import_progress_import_id', 'import_progress', ['import_id'])


def downgrade() -> None:
    """
    Remove import tracking tables.
    """
    op.drop_index('idx_import_progress_import_id', table_name='import_progress')
    op.drop_table('import_progress')

    op.drop_index('idx_import_runs_created_at', table_name='import_runs')
    op.drop_index('idx_import_runs_status', table_name='import_runs')
    op.drop_table('import_runs')
