"""Unguessable key for public load pages.

Backfills existing loads so each one has a public page address.
"""
from alembic import op
import sqlalchemy as sa

revision = "add_load_public_token"
down_revision = "add_query_indexes"


def upgrade():
    op.add_column("loads", sa.Column("public_token", sa.String(32), nullable=True))
    op.execute("UPDATE loads SET public_token = md5(random()::text || id::text) WHERE public_token IS NULL")
    op.create_index("ix_loads_public_token", "loads", ["public_token"], unique=True)


def downgrade():
    op.drop_index("ix_loads_public_token", table_name="loads")
    op.drop_column("loads", "public_token")
