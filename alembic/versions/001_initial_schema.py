"""Initial roster schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-11-03

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create stores table
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('store_number', sa.Integer(), nullable=False, comment='Business store number (natural key)'),
        sa.Column('name', sa.String(length=255), nullable=True, comment='Store display name'),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('city', sa.String(length=255), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=True),
        sa.Column('zip_code', sa.String(length=20), nullable=True, comment='Postal code'),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'),
                  nullable=False, comment='Refreshed on every upsert'),
        sa.CheckConstraint('store_number > 0', name='stores_store_number_positive'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_number'),
        comment='Store roster; store_number is the natural key'
    )
    op.create_index('idx_stores_city', 'stores', ['city'])

    # Create contacts table
    op.create_table(
        'contacts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=False,
                  comment='Normalized phone number or deterministic placeholder'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.Column('priority', sa.String(length=20), server_default='medium', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True,
                  comment='Free text; may embed "Employee ID: <n>" and "Role: <label>"'),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint("status IN ('active', 'inactive')", name='contacts_status_check'),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name='contacts_priority_check'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone'),
        comment='Employees and other contacts; phone is the natural key'
    )
    op.create_index('idx_contacts_name', 'contacts', ['name'])

    # Create store_schedules table
    op.create_table(
        'store_schedules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('store_number', sa.Integer(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('employee_name', sa.Text(), nullable=False),
        sa.Column('employee_id', sa.String(length=64), server_default='', nullable=False),
        sa.Column('role', sa.String(length=255), nullable=True),
        sa.Column('employee_type', sa.String(length=255), nullable=True),
        sa.Column('shift_time', sa.String(length=100), server_default='', nullable=False,
                  comment='Raw shift text, e.g. "9:00am - 5:00pm"'),
        sa.Column('start_time', sa.Time(), nullable=True, comment='Derived from shift_time (NULL if unparsable)'),
        sa.Column('end_time', sa.Time(), nullable=True, comment='Derived from shift_time (NULL if unparsable)'),
        sa.Column('scheduled_hours', sa.Numeric(precision=6, scale=2), server_default='0', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint('scheduled_hours >= 0', name='store_schedules_hours_check'),
        sa.ForeignKeyConstraint(['store_number'], ['stores.store_number']),
        sa.PrimaryKeyConstraint('id'),
        comment='Shift schedule facts, fully replaced on each import'
    )
    op.create_index('idx_store_schedules_store_date', 'store_schedules', ['store_number', 'date'])
    op.create_index('idx_store_schedules_employee', 'store_schedules', ['employee_name'])


def downgrade() -> None:
    # Children first
    op.drop_index('idx_store_schedules_employee', table_name='store_schedules')
    op.drop_index('idx_store_schedules_store_date', table_name='store_schedules')
    op.drop_table('store_schedules')

    op.drop_index('idx_contacts_name', table_name='contacts')
    op.drop_table('contacts')

    op.drop_index('idx_stores_city', table_name='stores')
    op.drop_table('stores')
