"""Carrier assignment fields on loads, trip and expense notes, unique trip numbers.

The load_requests table is new and comes from create_all at startup.
"""
from alembic import op
import sqlalchemy as sa

revision = "add_marketplace_and_trip_columns"
down_revision = "add_load_public_token"


def upgrade():
    op.add_column("loads", sa.Column("posted_to_marketplace_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("loads", sa.Column("is_open_to_counter", sa.Boolean(), nullable=False, server_default=sa.false()))
    op.add_column("loads", sa.Column("carrier_rate", sa.Numeric(12, 2), nullable=True))
    op.add_column("loads", sa.Column("carrier_rate_type", sa.String(20), nullable=True))
    op.add_column("loads", sa.Column("carrier_assigned_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("trips", sa.Column("notes", sa.Text(), nullable=True))
    op.add_column("trip_expenses", sa.Column("notes", sa.Text(), nullable=True))
    op.create_unique_constraint("uq_trips_company_trip_number", "trips", ["company_id", "trip_number"])


def downgrade():
    op.drop_constraint("uq_trips_company_trip_number", "trips", type_="unique")
    op.drop_column("trip_expenses", "notes")
    op.drop_column("trips", "notes")
    op.drop_column("loads", "carrier_assigned_at")
    op.drop_column("loads", "carrier_rate_type")
    op.drop_column("loads", "carrier_rate")
    op.drop_column("loads", "is_open_to_counter")
    op.drop_column("loads", "posted_to_marketplace_at")
