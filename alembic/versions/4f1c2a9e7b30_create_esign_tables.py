"""create_esign_tables

Revision ID: 4f1c2a9e7b30
Revises:
Create Date: 2026-10-19 09:12:44.310522

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '4f1c2a9e7b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """Create documents, recipients, fields and the audit ledger."""
    op.create_table(
        'esign_documents',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('signing_mode', sa.String(length=20), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('owner_email', sa.String(length=255), nullable=True),
        sa.Column('owner_name', sa.String(length=255), nullable=True),
        sa.Column('deal_id', sa.String(length=255), nullable=True),
        sa.Column('template_id', sa.String(length=255), nullable=True),
        sa.Column('original_file_url', sa.Text(), nullable=False),
        sa.Column('original_file_name', sa.String(length=500), nullable=False),
        sa.Column('original_file_type', sa.String(length=255), nullable=False),
        sa.Column('signed_file_url', sa.Text(), nullable=True),
        sa.Column('total_signers', sa.Integer(), nullable=False),
        sa.Column('signed_count', sa.Integer(), nullable=False),
        sa.Column('void_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('voided_at', sa.DateTime(), nullable=True),
        sa.Column('declined_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_esign_documents_status', 'esign_documents', ['status'])
    op.create_index('ix_esign_documents_created_by', 'esign_documents', ['created_by'])
    op.create_index('ix_esign_documents_deal_id', 'esign_documents', ['deal_id'])

    op.create_table(
        'esign_recipients',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('signer_type', sa.String(length=20), nullable=True),
        sa.Column('signing_order', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('access_token', sa.String(length=255), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(), nullable=True),
        sa.Column('token_revoked_at', sa.DateTime(), nullable=True),
        sa.Column('decline_reason', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=100), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('viewed_at', sa.DateTime(), nullable=True),
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('declined_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['esign_documents.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_esign_recipients_document_id', 'esign_recipients', ['document_id'])
    op.create_index('ix_esign_recipients_email', 'esign_recipients', ['email'])
    op.create_index('ix_esign_recipients_status', 'esign_recipients', ['status'])
    op.create_index('ix_esign_recipients_access_token', 'esign_recipients', ['access_token'], unique=True)

    op.create_table(
        'esign_fields',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=False),
        sa.Column('field_type', sa.String(length=20), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=True),
        sa.Column('placeholder', sa.String(length=255), nullable=True),
        sa.Column('required', sa.Boolean(), nullable=False),
        sa.Column('page', sa.Integer(), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.Column('width', sa.Float(), nullable=False),
        sa.Column('height', sa.Float(), nullable=False),
        sa.Column('options', JSONType, nullable=True),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('normalized_value', JSONType, nullable=True),
        sa.Column('filled_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['esign_documents.id']),
        sa.ForeignKeyConstraint(['recipient_id'], ['esign_recipients.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_esign_fields_document_id', 'esign_fields', ['document_id'])
    op.create_index('ix_esign_fields_recipient_id', 'esign_fields', ['recipient_id'])

    # No foreign keys: the ledger outlives purged drafts
    op.create_table(
        'esign_audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('recipient_id', sa.Integer(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('action_details', JSONType, nullable=True),
        sa.Column('actor_email', sa.String(length=255), nullable=True),
        sa.Column('actor_name', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=100), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('geolocation', JSONType, nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('previous_hash', sa.String(length=64), nullable=True),
        sa.Column('entry_hash', sa.String(length=64), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_id', 'sequence', name='uq_esign_audit_log_document_sequence'),
    )
    op.create_index('ix_esign_audit_log_document_id', 'esign_audit_log', ['document_id'])
    op.create_index('ix_esign_audit_log_recipient_id', 'esign_audit_log', ['recipient_id'])
    op.create_index('ix_esign_audit_log_action', 'esign_audit_log', ['action'])
    op.create_index('ix_esign_audit_log_occurred_at', 'esign_audit_log', ['occurred_at'])


def downgrade() -> None:
    """Drop the e-sign tables."""
    op.drop_table('esign_audit_log')
    op.drop_table('esign_fields')
    op.drop_table('esign_recipients')
    op.drop_table('esign_documents')
