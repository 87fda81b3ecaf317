"""create notification log and event reconciliation tables

Revision ID: 4c2e9a7d1b30
Revises:
Create Date: 2026-10-12 09:41:27.318204

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision = '4c2e9a7d1b30'
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, name):
    inspector = inspect(bind)
    return name in inspector.get_table_names()


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, 'notification_log'):
        op.create_table(
            'notification_log',
            sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
            sa.Column('loan_id', sa.String(length=78), nullable=False),
            sa.Column('event_type', sa.String(length=50), nullable=False),
            sa.Column('recipient_id', sa.String(length=64), nullable=True),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('format_used', sa.String(length=16), nullable=True),
            sa.Column('error', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
        )
        with op.batch_alter_table('notification_log', schema=None) as batch_op:
            batch_op.create_index(batch_op.f('ix_notification_log_loan_id'), ['loan_id'], unique=False)
            batch_op.create_index(batch_op.f('ix_notification_log_event_type'), ['event_type'], unique=False)
            batch_op.create_index(batch_op.f('ix_notification_log_created_at'), ['created_at'], unique=False)

    if not _table_exists(bind, 'processed_events'):
        op.create_table(
            'processed_events',
            sa.Column('id', sa.Integer(), primary_key=True, nullable=False),
            sa.Column('transaction_hash', sa.String(length=66), nullable=False),
            sa.Column('log_index', sa.Integer(), nullable=False),
            sa.Column('event_name', sa.String(length=64), nullable=False),
            sa.Column('loan_id', sa.String(length=78), nullable=True),
            sa.Column('block_number', sa.BigInteger(), nullable=True),
            sa.Column('processed_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('transaction_hash', 'log_index', name='uq_processed_event_log'),
        )
        with op.batch_alter_table('processed_events', schema=None) as batch_op:
            batch_op.create_index(batch_op.f('ix_processed_events_loan_id'), ['loan_id'], unique=False)
            batch_op.create_index(batch_op.f('ix_processed_events_block_number'), ['block_number'], unique=False)

    if not _table_exists(bind, 'event_cursors'):
        op.create_table(
            'event_cursors',
            sa.Column('name', sa.String(length=64), primary_key=True, nullable=False),
            sa.Column('last_block', sa.BigInteger(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        )


def downgrade():
    bind = op.get_bind()

    if _table_exists(bind, 'event_cursors'):
        op.drop_table('event_cursors')

    if _table_exists(bind, 'processed_events'):
        with op.batch_alter_table('processed_events', schema=None) as batch_op:
            batch_op.drop_index(batch_op.f('ix_processed_events_block_number'))
            batch_op.drop_index(batch_op.f('ix_processed_events_loan_id'))
        op.drop_table('processed_events')

    if _table_exists(bind, 'notification_log'):
        with op.batch_alter_table('notification_log', schema=None) as batch_op:
            batch_op.drop_index(batch_op.f('ix_notification_log_created_at'))
            batch_op.drop_index(batch_op.f('ix_notification_log_event_type'))
            batch_op.drop_index(batch_op.f('ix_notification_log_loan_id'))
        op.drop_table('notification_log')
