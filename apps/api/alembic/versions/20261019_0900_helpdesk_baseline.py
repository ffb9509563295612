"""Baseline migration - tenants, channels, tickets and jobs

Revision ID: 20261019_0900
Revises:
Create Date: 2026-10-19

Creates the organization settings, inbound channel, contact, ticket,
message and background job tables used by channel ingestion.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '20261019_0900'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create ingestion tables."""

    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')  # For gen_random_uuid()

    # ==========================================================================
    # Enum types
    # ==========================================================================
    op.execute("CREATE TYPE email_provider AS ENUM ('gmail', 'microsoft365', 'mime')")
    op.execute(
        "CREATE TYPE messaging_provider AS ENUM "
        "('instagram', 'facebook_messenger', 'whatsapp', 'wechat')"
    )
    op.execute(
        "CREATE TYPE post_import_action AS ENUM "
        "('nothing', 'archive', 'move_to_folder', 'delete')"
    )
    op.execute("CREATE TYPE channel_kind AS ENUM ('email', 'messaging')")
    op.execute("CREATE TYPE message_type AS ENUM ('reply', 'note', 'system')")

    # ==========================================================================
    # Organizations and ticket settings
    # ==========================================================================
    op.execute('''
        CREATE TABLE organizations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            slug VARCHAR(100) UNIQUE NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    op.execute('''
        CREATE TABLE statuses (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(100) NOT NULL,
            is_default BOOLEAN NOT NULL DEFAULT false,
            is_closed BOOLEAN NOT NULL DEFAULT false,
            sort_order INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_status_org_slug UNIQUE (organization_id, slug)
        )
    ''')

    op.execute('''
        CREATE TABLE priorities (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            slug VARCHAR(100) NOT NULL,
            is_default BOOLEAN NOT NULL DEFAULT false,
            sort_order INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT uq_priority_org_slug UNIQUE (organization_id, slug)
        )
    ''')

    op.execute('''
        CREATE TABLE slas (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            first_response_hours INTEGER,
            resolution_hours INTEGER,
            is_default BOOLEAN NOT NULL DEFAULT false
        )
    ''')

    op.execute('''
        CREATE TABLE ticket_folders (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(100) NOT NULL,
            is_system BOOLEAN NOT NULL DEFAULT false,
            is_default BOOLEAN NOT NULL DEFAULT false,
            sort_order INTEGER NOT NULL DEFAULT 0
        )
    ''')

    op.execute('''
        CREATE TABLE organization_settings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID UNIQUE NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            ticket_prefix VARCHAR(20) NOT NULL DEFAULT 'TKT',
            ticket_number_format VARCHAR(100) NOT NULL DEFAULT '{prefix}-{number}',
            ticket_number_padding INTEGER NOT NULL DEFAULT 5,
            next_ticket_number INTEGER NOT NULL DEFAULT 1,
            urgent_keywords JSONB,
            default_status_id UUID REFERENCES statuses(id) ON DELETE SET NULL,
            default_priority_id UUID REFERENCES priorities(id) ON DELETE SET NULL,
            default_sla_id UUID REFERENCES slas(id) ON DELETE SET NULL
        )
    ''')

    # ==========================================================================
    # Inbound channels
    # ==========================================================================
    op.execute('''
        CREATE TABLE email_channels (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            provider email_provider NOT NULL,
            email_address VARCHAR(320) NOT NULL,
            access_token TEXT,
            fetch_folder VARCHAR(255) NOT NULL DEFAULT 'INBOX',
            sync_interval_minutes INTEGER NOT NULL DEFAULT 5,
            import_emails_since TIMESTAMPTZ,
            post_import_action post_import_action NOT NULL DEFAULT 'nothing',
            post_import_folder VARCHAR(255),
            department_id UUID,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_sync_at TIMESTAMPTZ,
            last_sync_error TEXT,
            sync_lock_owner VARCHAR(64),
            sync_locked_until TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_email_channels_org ON email_channels(organization_id)')
    op.execute(
        'CREATE INDEX idx_email_channels_active ON email_channels(is_active, last_sync_at)'
    )

    op.execute('''
        CREATE TABLE messaging_channels (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            provider messaging_provider NOT NULL,
            external_id VARCHAR(255) NOT NULL,
            access_token TEXT,
            auto_reply_enabled BOOLEAN NOT NULL DEFAULT false,
            auto_reply_message TEXT,
            department_id UUID,
            is_active BOOLEAN NOT NULL DEFAULT true,
            last_sync_at TIMESTAMPTZ,
            last_sync_error TEXT,
            sync_lock_owner VARCHAR(64),
            sync_locked_until TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_messaging_channels_org ON messaging_channels(organization_id)')
    op.execute(
        'CREATE INDEX idx_messaging_channels_external '
        'ON messaging_channels(provider, external_id)'
    )

    op.execute('''
        CREATE TABLE channel_sync_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            channel_kind channel_kind NOT NULL,
            channel_id UUID NOT NULL,
            status VARCHAR(20) NOT NULL,
            items_processed INTEGER NOT NULL DEFAULT 0,
            tickets_created INTEGER NOT NULL DEFAULT 0,
            messages_added INTEGER NOT NULL DEFAULT 0,
            items_skipped INTEGER NOT NULL DEFAULT 0,
            items_failed INTEGER NOT NULL DEFAULT 0,
            error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_channel_sync_logs_channel '
        'ON channel_sync_logs(channel_kind, channel_id, created_at)'
    )

    # ==========================================================================
    # Contacts
    # ==========================================================================
    op.execute('''
        CREATE TABLE contacts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            email VARCHAR(320),
            name VARCHAR(255),
            username VARCHAR(255),
            avatar_url VARCHAR(2048),
            instagram_id VARCHAR(255),
            facebook_id VARCHAR(255),
            whatsapp_phone VARCHAR(64),
            wechat_id VARCHAR(255),
            sla_id UUID REFERENCES slas(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_contact_org_instagram UNIQUE (organization_id, instagram_id),
            CONSTRAINT uq_contact_org_facebook UNIQUE (organization_id, facebook_id),
            CONSTRAINT uq_contact_org_whatsapp UNIQUE (organization_id, whatsapp_phone),
            CONSTRAINT uq_contact_org_wechat UNIQUE (organization_id, wechat_id)
        )
    ''')
    op.execute(
        'CREATE UNIQUE INDEX uq_contact_org_email_lower '
        'ON contacts(organization_id, lower(email))'
    )
    op.execute('CREATE INDEX idx_contacts_org_name ON contacts(organization_id, name)')

    # ==========================================================================
    # Tickets, messages, attachments, activity
    # ==========================================================================
    op.execute('''
        CREATE TABLE tickets (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            ticket_number VARCHAR(50) NOT NULL,
            subject VARCHAR(255) NOT NULL,
            contact_id UUID NOT NULL REFERENCES contacts(id) ON DELETE RESTRICT,
            status_id UUID REFERENCES statuses(id) ON DELETE SET NULL,
            priority_id UUID REFERENCES priorities(id) ON DELETE SET NULL,
            sla_id UUID REFERENCES slas(id) ON DELETE SET NULL,
            folder_id UUID REFERENCES ticket_folders(id) ON DELETE SET NULL,
            assigned_to UUID,
            department_id UUID,
            email_channel_id UUID REFERENCES email_channels(id) ON DELETE RESTRICT,
            messaging_channel_id UUID REFERENCES messaging_channels(id) ON DELETE RESTRICT,
            email_thread_id VARCHAR(255),
            email_thread_index VARCHAR(255),
            email_original_message_id VARCHAR(512),
            messaging_conversation_id VARCHAR(255),
            messaging_participant_id VARCHAR(255),
            first_response_at TIMESTAMPTZ,
            resolved_at TIMESTAMPTZ,
            closed_at TIMESTAMPTZ,
            sla_first_response_due_at TIMESTAMPTZ,
            sla_resolution_due_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_ticket_org_number UNIQUE (organization_id, ticket_number),
            CONSTRAINT ck_ticket_single_channel
                CHECK (email_channel_id IS NULL OR messaging_channel_id IS NULL)
        )
    ''')
    op.execute('CREATE INDEX idx_tickets_org_thread ON tickets(organization_id, email_thread_id)')
    op.execute(
        'CREATE INDEX idx_tickets_messaging_conversation '
        'ON tickets(messaging_channel_id, messaging_conversation_id)'
    )
    op.execute('CREATE INDEX idx_tickets_org_contact ON tickets(organization_id, contact_id)')

    op.execute('''
        CREATE TABLE messages (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            type message_type NOT NULL DEFAULT 'reply',
            is_from_contact BOOLEAN NOT NULL DEFAULT false,
            contact_id UUID REFERENCES contacts(id) ON DELETE SET NULL,
            user_id UUID,
            body TEXT NOT NULL DEFAULT '',
            body_html TEXT,
            recipients JSONB,
            email_message_id VARCHAR(512),
            email_provider_id VARCHAR(255),
            email_in_reply_to VARCHAR(512),
            email_references TEXT,
            messaging_provider_id VARCHAR(255),
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_message_ticket_email_id UNIQUE (ticket_id, email_message_id),
            CONSTRAINT uq_message_ticket_messaging_id UNIQUE (ticket_id, messaging_provider_id),
            CONSTRAINT uq_message_org_email_id UNIQUE (organization_id, email_message_id),
            CONSTRAINT uq_message_org_messaging_id
                UNIQUE (organization_id, messaging_provider_id)
        )
    ''')
    op.execute('CREATE INDEX idx_messages_ticket_created ON messages(ticket_id, created_at)')

    op.execute('''
        CREATE TABLE attachments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            message_id UUID NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
            filename VARCHAR(255) NOT NULL,
            mime_type VARCHAR(255) NOT NULL DEFAULT 'application/octet-stream',
            size BIGINT NOT NULL DEFAULT 0,
            path VARCHAR(1024),
            remote_url VARCHAR(2048),
            content_id VARCHAR(255),
            is_inline BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute('CREATE INDEX idx_attachments_message ON attachments(message_id, is_inline)')

    op.execute('''
        CREATE TABLE ticket_activities (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            ticket_id UUID NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
            type VARCHAR(50) NOT NULL,
            properties JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')
    op.execute(
        'CREATE INDEX idx_ticket_activities_ticket ON ticket_activities(ticket_id, created_at)'
    )

    # ==========================================================================
    # Background jobs
    # ==========================================================================
    op.execute('''
        CREATE TABLE jobs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
            job_type VARCHAR(50) NOT NULL,
            payload JSONB NOT NULL DEFAULT '{}',
            run_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            max_attempts INTEGER NOT NULL DEFAULT 3,
            last_error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            completed_at TIMESTAMPTZ,
            idempotency_key VARCHAR(255)
        )
    ''')
    op.execute(
        "CREATE INDEX idx_jobs_pending ON jobs(status, run_at) WHERE status = 'pending'"
    )
    op.execute('CREATE INDEX idx_jobs_org ON jobs(organization_id, created_at)')
    op.execute(
        'CREATE UNIQUE INDEX uq_job_idempotency ON jobs(idempotency_key) '
        'WHERE idempotency_key IS NOT NULL'
    )


def downgrade() -> None:
    """Drop ingestion tables."""
    for table in (
        'jobs',
        'ticket_activities',
        'attachments',
        'messages',
        'tickets',
        'contacts',
        'channel_sync_logs',
        'messaging_channels',
        'email_channels',
        'organization_settings',
        'ticket_folders',
        'slas',
        'priorities',
        'statuses',
        'organizations',
    ):
        op.execute(f'DROP TABLE IF EXISTS {table} CASCADE')

    for enum_type in (
        'message_type',
        'channel_kind',
        'post_import_action',
        'messaging_provider',
        'email_provider',
    ):
        op.execute(f'DROP TYPE IF EXISTS {enum_type}')
