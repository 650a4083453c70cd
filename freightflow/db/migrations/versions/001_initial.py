"""initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17

Creates all tables for FreightFlow. Vocabulary columns (document type,
direction, workflow state, ...) are plain VARCHAR; the allowed values live
in the application enums.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Messages
    op.create_table('messages',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('external_id', sa.String(255), unique=True, nullable=False),
        sa.Column('thread_id', sa.String(255), index=True),
        sa.Column('subject', sa.Text()),
        sa.Column('sender', sa.String(500), nullable=False),
        sa.Column('true_sender', sa.String(500)),
        sa.Column('body_text', sa.Text()),
        sa.Column('attachments', sa.JSON()),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('is_reply', sa.Boolean(), default=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_messages_status_received', 'messages', ['status', 'received_at'])

    # Classifications
    op.create_table('classifications',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id'), unique=True, nullable=False),
        sa.Column('document_type', sa.String(50), nullable=False, index=True),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('from_party', sa.String(30), server_default='unknown'),
        sa.Column('confidence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('matched_pattern', sa.String(255)),
        sa.Column('reasoning', sa.Text()),
        sa.Column('is_low_confidence', sa.Boolean(), server_default=sa.false()),
        sa.Column('is_manual_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    # Entities
    op.create_table('entities',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id'), nullable=False),
        sa.Column('entity_type', sa.String(30), nullable=False),
        sa.Column('value', sa.String(255), nullable=False),
        sa.Column('confidence', sa.Integer(), server_default='0'),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('position', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_entities_message_type', 'entities', ['message_id', 'entity_type'])
    op.create_index('ix_entities_type_value', 'entities', ['entity_type', 'value'])

    # Shipments
    op.create_table('shipments',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('booking_number', sa.String(50), unique=True, nullable=False),
        sa.Column('bl_number', sa.String(50), index=True),
        sa.Column('mbl_number', sa.String(50), index=True),
        sa.Column('hbl_number', sa.String(50), index=True),
        sa.Column('container_number_primary', sa.String(11), index=True),
        sa.Column('container_numbers', sa.JSON()),
        sa.Column('carrier', sa.String(100)),
        sa.Column('vessel_name', sa.String(255)),
        sa.Column('voyage_number', sa.String(50)),
        sa.Column('port_of_loading', sa.String(255)),
        sa.Column('port_of_discharge', sa.String(255)),
        sa.Column('etd', sa.Date()),
        sa.Column('eta', sa.Date()),
        sa.Column('si_cutoff', sa.Date()),
        sa.Column('vgm_cutoff', sa.Date()),
        sa.Column('cargo_cutoff', sa.Date()),
        sa.Column('gate_cutoff', sa.Date()),
        sa.Column('doc_cutoff', sa.Date()),
        sa.Column('workflow_state', sa.String(50), nullable=True),
        sa.Column('workflow_state_updated_at', sa.DateTime(timezone=True)),
        sa.Column('created_from_message_id', sa.Integer(), sa.ForeignKey('messages.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )

    # Shipment <-> message links
    op.create_table('shipment_documents',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('shipments.id'), nullable=False, index=True),
        sa.Column('message_id', sa.Integer(), sa.ForeignKey('messages.id'), nullable=False, unique=True),
        sa.Column('document_type', sa.String(50), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('link_method', sa.String(20), nullable=False),
        sa.Column('confidence', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('shipment_id', 'message_id', name='uq_shipment_document_pair'),
    )

    # Document lifecycles
    op.create_table('document_lifecycles',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('shipments.id'), nullable=False),
        sa.Column('document_type', sa.String(50), nullable=False),
        sa.Column('first_message_id', sa.Integer(), sa.ForeignKey('messages.id')),
        sa.Column('first_seen_at', sa.DateTime(timezone=True)),
        sa.Column('last_seen_at', sa.DateTime(timezone=True)),
        sa.Column('message_count', sa.Integer(), server_default='0'),
        sa.UniqueConstraint('shipment_id', 'document_type', name='uq_lifecycle_shipment_type'),
    )

    # Workflow transitions
    op.create_table('workflow_transitions',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('shipment_id', sa.Integer(), sa.ForeignKey('shipments.id'), nullable=False, index=True),
        sa.Column('from_state', sa.String(50), nullable=True),
        sa.Column('to_state', sa.String(50), nullable=False),
        sa.Column('trigger_document_type', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Action rules
    op.create_table('action_rules',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('document_type', sa.String(50), nullable=False),
        sa.Column('from_party', sa.String(30), nullable=False),
        sa.Column('is_reply', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('has_action', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('action_verb', sa.String(50)),
        sa.Column('action_owner', sa.String(50), server_default='operations'),
        sa.Column('to_party', sa.String(50)),
        sa.Column('description', sa.Text()),
        sa.Column('deadline_hours', sa.Integer()),
        sa.Column('urgency', sa.String(20), server_default='normal'),
        sa.Column('confidence', sa.Integer(), server_default='80'),
        sa.Column('applicable_states', sa.JSON(), nullable=True),
        sa.Column('enabled', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('document_type', 'from_party', 'is_reply', name='uq_action_rule_key'),
    )

    op.create_table('document_action_defaults',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('document_type', sa.String(50), unique=True, nullable=False),
        sa.Column('default_has_action', sa.Boolean(), nullable=False),
        sa.Column('default_reason', sa.Text()),
        sa.Column('flip_to_action_keywords', sa.JSON()),
        sa.Column('flip_to_no_action_keywords', sa.JSON()),
        sa.Column('criticality', sa.Float(), server_default='0.5'),
        sa.Column('enabled', sa.Boolean(), server_default=sa.true()),
    )

    # Batch cursors
    op.create_table('processing_cursors',
        sa.Column('id', sa.Integer(), primary_key=True, index=True),
        sa.Column('name', sa.String(100), unique=True, nullable=False),
        sa.Column('last_message_id', sa.Integer(), server_default='0'),
        sa.Column('pages_completed', sa.Integer(), server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    # Drop tables in reverse order (respecting foreign keys)
    op.drop_table('processing_cursors')
    op.drop_table('document_action_defaults')
    op.drop_table('action_rules')
    op.drop_table('workflow_transitions')
    op.drop_table('document_lifecycles')
    op.drop_table('shipment_documents')
    op.drop_table('shipments')
    op.drop_table('entities')
    op.drop_table('classifications')
    op.drop_table('messages')
