"""Composite and partial indexes for the hot dashboard and mobile queries.

Tables themselves are created by the application at startup; these indexes
are Postgres-specific.
"""
from alembic import op

revision = "add_query_indexes"
down_revision = None


def upgrade():
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_loads_marketplace_open
            ON loads (posting_status, pickup_date)
            WHERE is_marketplace_visible = TRUE AND assigned_carrier_id IS NULL;

        CREATE INDEX IF NOT EXISTS idx_loads_company_status_pickup
            ON loads (company_id, status, pickup_date);

        CREATE INDEX IF NOT EXISTS idx_loads_rfd_open
            ON loads (company_id, rfd_date)
            WHERE load_subtype = 'rfd' AND status NOT IN ('delivered', 'cancelled');

        CREATE INDEX IF NOT EXISTS idx_messages_conversation_live
            ON messages (conversation_id, id)
            WHERE is_deleted = FALSE;

        CREATE INDEX IF NOT EXISTS idx_participants_user_unread
            ON conversation_participants (user_id, unread_count);

        CREATE INDEX IF NOT EXISTS idx_conversations_last_message
            ON conversations (owner_company_id, last_message_at DESC NULLS LAST);

        CREATE INDEX IF NOT EXISTS idx_load_suggestions_trip_score
            ON load_suggestions (trip_id, status, match_score DESC);

        CREATE INDEX IF NOT EXISTS idx_compliance_alerts_open
            ON compliance_alerts (company_id, severity)
            WHERE is_resolved = FALSE;

        CREATE INDEX IF NOT EXISTS idx_push_tokens_active_driver
            ON push_tokens (driver_id)
            WHERE is_active = TRUE;
    """)


def downgrade():
    op.execute("""
        DROP INDEX IF EXISTS idx_push_tokens_active_driver;
        DROP INDEX IF EXISTS idx_compliance_alerts_open;
        DROP INDEX IF EXISTS idx_load_suggestions_trip_score;
        DROP INDEX IF EXISTS idx_conversations_last_message;
        DROP INDEX IF EXISTS idx_participants_user_unread;
        DROP INDEX IF EXISTS idx_messages_conversation_live;
        DROP INDEX IF EXISTS idx_loads_rfd_open;
        DROP INDEX IF EXISTS idx_loads_company_status_pickup;
        DROP INDEX IF EXISTS idx_loads_marketplace_open;
    """)
