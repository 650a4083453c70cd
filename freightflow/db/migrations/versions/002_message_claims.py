"""Add claim timestamp to messages

Revision ID: 002_message_claims
Revises: 001_initial
Create Date: 2026-10-17

- claimed_at: when a pipeline run moved the message to 'processing'.
  Rows left in 'processing' past the claim timeout are picked up again.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_message_claims'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('messages', sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    op.drop_column('messages', 'claimed_at')
