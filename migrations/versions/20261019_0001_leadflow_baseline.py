"""leadflow baseline schema: leads, scoring, sequences, jobs, webhooks, notifications

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("contact_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("website", sa.String(255), nullable=True),
        sa.Column("service_type", sa.String(40), nullable=False),
        sa.Column("service_date", sa.DateTime(), nullable=True),
        sa.Column("pickup_location", sa.String(500), nullable=True),
        sa.Column("destination", sa.String(500), nullable=True),
        sa.Column("passenger_count", sa.Integer(), nullable=True),
        sa.Column("vehicle_preference", sa.String(100), nullable=True),
        sa.Column("estimated_value", sa.Float(), nullable=True),
        sa.Column("budget_tier", sa.String(50), nullable=True),
        sa.Column("company_size_estimate", sa.Integer(), nullable=True),
        sa.Column("industry", sa.String(100), nullable=True),
        sa.Column("distance_from_base", sa.Float(), nullable=True),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("priority_level", sa.Integer(), nullable=False),
        sa.Column("score_breakdown", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("source", sa.String(100), nullable=False),
        sa.Column("utm_source", sa.String(100), nullable=True),
        sa.Column("utm_medium", sa.String(100), nullable=True),
        sa.Column("utm_campaign", sa.String(100), nullable=True),
        sa.Column("referrer_url", sa.Text(), nullable=True),
        sa.Column("custom_fields", sa.JSON(), nullable=True),
        sa.Column("crm_lead_id", sa.String(100), nullable=True),
        sa.Column("last_contact_at", sa.DateTime(), nullable=True),
        sa.Column("converted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("crm_lead_id"),
    )
    op.create_index("ix_leads_created_at", "leads", ["created_at"])
    op.create_index("idx_leads_status_created", "leads", ["status", "created_at"])
    op.create_index("idx_leads_email_created", "leads", ["email", "created_at"])
    op.create_index("idx_leads_priority_created", "leads", ["priority_level", "created_at"])

    op.create_table(
        "lead_interactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lead_id", sa.Integer(), nullable=False),
        sa.Column("interaction_type", sa.String(40), nullable=False),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("content", sa.Text(), nullable=True),
        sa.Column("automated", sa.Boolean(), nullable=False),
        sa.Column("template_used", sa.String(100), nullable=True),
        sa.Column("message_id", sa.String(255), nullable=True),
        sa.Column("opened_at", sa.DateTime(), nullable=True),
        sa.Column("clicked_at", sa.DateTime(), nullable=True),
        sa.Column("click_count", sa.Integer(), nullable=False),
        sa.Column("response_received", sa.Boolean(), nullable=False),
        sa.Column("response_content", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_interactions_lead_type_created",
        "lead_interactions",
        ["lead_id", "interaction_type", "created_at"],
    )
    op.create_index("idx_interactions_message_id", "lead_interactions", ["message_id"])

    op.create_table(
        "scoring_factors",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False),
        sa.Column("calculation_method", sa.String(50), nullable=False),
        sa.Column("value_mappings", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index("ix_scoring_factors_active", "scoring_factors", ["active"])
    op.create_index("ix_scoring_factors_created_at", "scoring_factors", ["created_at"])

    op.create_table(
        "email_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lead_id", sa.Integer(), nullable=False),
        sa.Column("sequence_type", sa.String(50), nullable=False),
        sa.Column("current_step", sa.Integer(), nullable=False),
        sa.Column("total_steps", sa.Integer(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("next_run_at", sa.DateTime(), nullable=True),
        sa.Column("paused_reason", sa.String(100), nullable=True),
        sa.Column("emails_sent", sa.Integer(), nullable=False),
        sa.Column("emails_opened", sa.Integer(), nullable=False),
        sa.Column("responses_received", sa.Integer(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_email_sequences_lead_id", "email_sequences", ["lead_id"])
    op.create_index("ix_email_sequences_created_at", "email_sequences", ["created_at"])
    op.create_index("idx_email_sequences_state_next_run", "email_sequences", ["state", "next_run_at"])
    op.create_index(
        "uq_email_sequences_active_lead",
        "email_sequences",
        ["lead_id"],
        unique=True,
        sqlite_where=sa.text("state = 'active'"),
        postgresql_where=sa.text("state = 'active'"),
    )

    op.create_table(
        "jobs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("domain", sa.String(20), nullable=False),
        sa.Column("job_type", sa.String(100), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("state", sa.String(20), nullable=False),
        sa.Column("attempts_made", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("base_delay_seconds", sa.Integer(), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(), nullable=False),
        sa.Column("dedupe_key", sa.String(200), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("last_error", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("finished_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_jobs_claim_order", "jobs", ["domain", "state", "priority", "scheduled_at", "id"])
    op.create_index("idx_jobs_dedupe_key", "jobs", ["dedupe_key"])
    op.create_index("idx_jobs_state_finished", "jobs", ["state", "finished_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("rejected", sa.Boolean(), nullable=False),
        sa.Column("abandoned", sa.Boolean(), nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("lead_id", sa.Integer(), nullable=True),
        sa.Column("interaction_id", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["interaction_id"], ["lead_interactions.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_webhook_events_replay", "webhook_events", ["processed", "rejected", "created_at", "id"]
    )
    op.create_index("idx_webhook_events_source_type", "webhook_events", ["source", "event_type"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("lead_id", sa.Integer(), nullable=True),
        sa.Column("notification_type", sa.String(50), nullable=False),
        sa.Column("escalation_level", sa.String(20), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("channels", sa.JSON(), nullable=False),
        sa.Column("recipients", sa.JSON(), nullable=False),
        sa.Column("delivery_status", sa.JSON(), nullable=True),
        sa.Column("sent", sa.Boolean(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("read_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "lead_id", "notification_type", "escalation_level", name="uq_notifications_lead_type_level"
        ),
    )
    op.create_index("ix_notifications_lead_id", "notifications", ["lead_id"])

    op.create_table(
        "daily_metrics",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("leads_created", sa.Integer(), nullable=False),
        sa.Column("leads_converted", sa.Integer(), nullable=False),
        sa.Column("conversion_rate", sa.Float(), nullable=False),
        sa.Column("responded_leads", sa.Integer(), nullable=False),
        sa.Column("avg_response_minutes", sa.Float(), nullable=True),
        sa.Column("responses_within_sla", sa.Integer(), nullable=False),
        sa.Column("total_estimated_value", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("metric_date"),
    )
    op.create_index("ix_daily_metrics_created_at", "daily_metrics", ["created_at"])


def downgrade() -> None:
    op.drop_table("daily_metrics")
    op.drop_table("notifications")
    op.drop_table("webhook_events")
    op.drop_table("jobs")
    op.drop_index("uq_email_sequences_active_lead", table_name="email_sequences")
    op.drop_table("email_sequences")
    op.drop_table("scoring_factors")
    op.drop_table("lead_interactions")
    op.drop_table("leads")
