"""Track webhook authentication so replay only picks up verified events.

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19 00:00:02
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    column = sa.Column("authenticated", sa.Boolean(), nullable=False, server_default=sa.false())
    if bind.dialect.name == "sqlite":
        with op.batch_alter_table("webhook_events", recreate="auto") as batch_op:
            batch_op.add_column(column)
    else:
        op.add_column("webhook_events", column)

    # Processed events passed authentication on arrival; form posts are unsigned.
    op.execute("UPDATE webhook_events SET authenticated = (processed OR source = 'website_form')")


def downgrade() -> None:
    with op.batch_alter_table("webhook_events", recreate="auto") as batch_op:
        batch_op.drop_column("authenticated")
