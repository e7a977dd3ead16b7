"""Inbox Tables

Revision ID: 0001_inbox_tables
Revises:
Create Date: 2026-10-17

Creates tables owned by the inbox ingestion core:
- workspaces: Tenant boundary
- channel_accounts: Connected channels, routed by (type, external_id)
- contacts / contact_handles: External identities and their handle index
- conversations: One per (channel account, contact)
- messages: Inbound/outbound messages
- webhook_events: Dedup ledger
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision = '0001_inbox_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade():
    # =========================================================================
    # WORKSPACES
    # =========================================================================

    op.create_table(
        'workspaces',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # =========================================================================
    # CHANNEL ACCOUNTS
    # =========================================================================

    op.create_table(
        'channel_accounts',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=False),
        sa.Column('encrypted_credential', sa.Text(), nullable=True),
        sa.Column('config', JSONB(), server_default='{}', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_channel_accounts_workspace_id', 'channel_accounts', ['workspace_id'])
    op.create_index('idx_channel_accounts_type_external', 'channel_accounts', ['type', 'external_id'])
    op.create_index(
        'idx_channel_accounts_workspace_type_external', 'channel_accounts', ['workspace_id', 'type', 'external_id']
    )

    # =========================================================================
    # CONTACTS
    # =========================================================================

    op.create_table(
        'contacts',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('primary_name', sa.String(255), nullable=False),
        sa.Column('handles', JSONB(), server_default='{}', nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_contacts_workspace_id', 'contacts', ['workspace_id'])

    op.create_table(
        'contact_handles',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('family', sa.String(16), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('contact_id', UUID(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint(
            'workspace_id', 'family', 'external_id', name='uq_contact_handles_workspace_family_external'
        ),
    )
    op.create_index('ix_contact_handles_contact_id', 'contact_handles', ['contact_id'])

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    op.create_table(
        'conversations',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('channel_account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('contact_id', UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(16), server_default='open', nullable=False),
        sa.Column('unread_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['channel_account_id'], ['channel_accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint(
            'workspace_id', 'channel_account_id', 'contact_id', name='uq_conversations_workspace_channel_contact'
        ),
    )
    op.create_index('ix_conversations_workspace_id', 'conversations', ['workspace_id'])
    op.create_index('ix_conversations_contact_id', 'conversations', ['contact_id'])
    op.create_index('idx_conversations_workspace_last_message', 'conversations', ['workspace_id', 'last_message_at'])

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'messages',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('conversation_id', UUID(as_uuid=True), nullable=False),
        sa.Column('direction', sa.String(8), nullable=False),
        sa.Column('message_type', sa.String(16), server_default='text', nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('external_message_id', sa.String(255), nullable=True),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('raw_payload', JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_messages_workspace_id', 'messages', ['workspace_id'])
    op.create_index('ix_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index(
        'idx_messages_reconcile', 'messages', ['workspace_id', 'conversation_id', 'external_message_id', 'direction']
    )

    # =========================================================================
    # WEBHOOK EVENTS (DEDUP LEDGER)
    # =========================================================================

    op.create_table(
        'webhook_events',
        sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('workspace_id', UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(32), nullable=False),
        sa.Column('dedupe_key', sa.String(512), nullable=False),
        sa.Column('raw_payload', JSONB(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['workspace_id'], ['workspaces.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('dedupe_key', name='uq_webhook_events_dedupe_key'),
    )
    op.create_index('ix_webhook_events_workspace_id', 'webhook_events', ['workspace_id'])


def downgrade():
    op.drop_table('webhook_events')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('contact_handles')
    op.drop_table('contacts')
    op.drop_table('channel_accounts')
    op.drop_table('workspaces')
