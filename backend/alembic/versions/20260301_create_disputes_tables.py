"""
Create disputes and dispute_messages tables.

Revision ID: 20260301_create_disputes_tables
Revises:
Create Date: 2026-03-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from typing import Union

# revision identifiers, used by Alembic.
revision: str = '20260301_create_disputes_tables'
down_revision: Union[str, None] = None
branch_labels = None
depends_on = None

party_role = sa.Enum('landlord', 'renter', name='disputepartyrole')
dispute_status = sa.Enum('open', 'escalated', 'under_review', 'resolved', 'closed', name='disputestatus')
dispute_severity = sa.Enum('high', 'critical', name='disputeseverity')
sender_role = sa.Enum('landlord', 'renter', 'admin', 'system', name='disputesenderrole')


def upgrade() -> None:
    op.create_table(
        'disputes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('booking_id', sa.String(), nullable=False),
        sa.Column('property_id', sa.String(), nullable=False),
        sa.Column('reporter_id', sa.String(), nullable=False),
        sa.Column('accused_id', sa.String(), nullable=False),
        sa.Column('reporter_role', party_role, nullable=False),
        sa.Column('status', dispute_status, nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('severity', dispute_severity, nullable=False),
        sa.Column('claim_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('initial_evidence', sa.JSON(), nullable=False),
        sa.Column('deadline', sa.DateTime(), nullable=False),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_disputes_id', 'disputes', ['id'])
    op.create_index('ix_disputes_booking_id', 'disputes', ['booking_id'])
    op.create_index('ix_disputes_reporter_id', 'disputes', ['reporter_id'])
    op.create_index('ix_disputes_accused_id', 'disputes', ['accused_id'])
    # Scanner walks open/escalated tickets by activity
    op.create_index('ix_disputes_status_activity', 'disputes', ['status', 'last_activity_at'])

    op.create_table(
        'dispute_messages',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_id', sa.Integer(), sa.ForeignKey('disputes.id'), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('sender_id', sa.String(), nullable=True),
        sa.Column('sender_role', sender_role, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('attachments', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('ticket_id', 'seq', name='uq_dispute_messages_ticket_seq'),
    )
    op.create_index('ix_dispute_messages_id', 'dispute_messages', ['id'])
    op.create_index('ix_dispute_messages_ticket_id', 'dispute_messages', ['ticket_id'])


def downgrade() -> None:
    op.drop_index('ix_dispute_messages_ticket_id', table_name='dispute_messages')
    op.drop_index('ix_dispute_messages_id', table_name='dispute_messages')
    op.drop_table('dispute_messages')
    op.drop_index('ix_disputes_status_activity', table_name='disputes')
    op.drop_index('ix_disputes_accused_id', table_name='disputes')
    op.drop_index('ix_disputes_reporter_id', table_name='disputes')
    op.drop_index('ix_disputes_booking_id', table_name='disputes')
    op.drop_index('ix_disputes_id', table_name='disputes')
    op.drop_table('disputes')
    bind = op.get_bind()
    for enum_type in (sender_role, dispute_severity, dispute_status, party_role):
        enum_type.drop(bind, checkfirst=True)
