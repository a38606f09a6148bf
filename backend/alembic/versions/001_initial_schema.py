"""Initial schema: users, subscriptions, sessions, facts, templates, leads

Revision ID: 001
Revises: None
Create Date: 2025-01-10 00:00:00.000000+00:00

What:  Creates every table of the CareNote backend.
How:   users and subscriptions reference each other; users.subscription_id
       is added as a separate ALTER once both tables exist.

Rollback: downgrade() drops all tables (destructive).
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("specialty", sa.String(100), nullable=True),
        sa.Column("workplace", sa.String(200), nullable=True),
        sa.Column("journal_system", sa.String(100), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'user'")),
        sa.Column("is_company_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_invite", sa.Boolean(), nullable=False, server_default=sa.false()),
        # Tenancy: the owner that invited this user
        sa.Column("invited_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verification_token", sa.String(128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invitation_token", sa.String(128), nullable=True),
        sa.Column("invitation_sent_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("reset_password_token", sa.String(128), nullable=True),
        sa.Column("reset_password_expires", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_login", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.ForeignKeyConstraint(["invited_by"], ["users.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_users_invited_by", "users", ["invited_by"])
    op.create_index("idx_users_invitation_token", "users", ["invitation_token"])

    # ── subscriptions ─────────────────────────────────────────────────────
    op.create_table(
        "subscriptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("num_licenses", sa.Integer(), nullable=False, server_default=sa.text("2")),
        sa.Column("price_per_license", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pricing_tier", sa.String(10), nullable=False, server_default=sa.text("'1+'")),
        sa.Column("billing_amount", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("billing_interval", sa.String(20), nullable=False, server_default=sa.text("'monthly'")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'DKK'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("is_trial", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("trial_end_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("current_period_start", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_payment_date", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", name="uq_subscriptions_user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint(
            "current_period_end IS NULL OR current_period_start IS NULL "
            "OR current_period_end >= current_period_start",
            name="ck_subscriptions_period",
        ),
    )
    op.create_index("idx_subscriptions_status", "subscriptions", ["status"])

    # Cyclic reference, added once both tables exist
    op.create_foreign_key(
        "fk_users_subscription_id",
        "users",
        "subscriptions",
        ["subscription_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # ── sessions ──────────────────────────────────────────────────────────
    op.create_table(
        "sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("corti_interaction_id", sa.String(100), nullable=False),
        sa.Column("websocket_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("session_title", sa.String(200), nullable=True),
        sa.Column("specialty", sa.String(100), nullable=True),
        sa.Column("patient_identifier", sa.String(100), nullable=True),
        sa.Column("encounter_type", sa.String(20), nullable=False, server_default=sa.text("'consultation'")),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ended_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("facts_synced_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("corti_interaction_id", name="uq_sessions_corti_interaction_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("idx_sessions_user_created", "sessions", ["user_id", "created_at"])
    op.create_index("idx_sessions_status", "sessions", ["status"])

    # ── session_facts ─────────────────────────────────────────────────────
    op.create_table(
        "session_facts",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("fact_id", sa.String(100), nullable=True),
        sa.Column("text", sa.String(1000), nullable=False),
        sa.Column("group", sa.String(100), nullable=False, server_default=sa.text("'other'")),
        sa.Column("confidence", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("source", sa.String(10), nullable=False, server_default=sa.text("'ai'")),
        sa.Column("is_discarded", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_session_facts_session_id", "session_facts", ["session_id"])

    # ── templates ─────────────────────────────────────────────────────────
    op.create_table(
        "templates",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("type", sa.String(30), nullable=False, server_default=sa.text("'brief-clinical-note'")),
        sa.Column("specialty", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("facts_snapshot", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("referral", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("previous_version_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("regenerated_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_regenerated_at", sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["session_id"], ["sessions.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["previous_version_id"], ["templates.id"], ondelete="SET NULL"),
    )
    op.create_index("idx_templates_user_created", "templates", ["user_id", "created_at"])
    op.create_index("idx_templates_session", "templates", ["session_id"])

    # ── leads ─────────────────────────────────────────────────────────────
    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("marketing_opt_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="uq_leads_email"),
    )


def downgrade() -> None:
    """Drop every table. Destructive: all data is lost."""
    op.drop_table("leads")
    op.drop_index("idx_templates_session", table_name="templates")
    op.drop_index("idx_templates_user_created", table_name="templates")
    op.drop_table("templates")
    op.drop_index("ix_session_facts_session_id", table_name="session_facts")
    op.drop_table("session_facts")
    op.drop_index("idx_sessions_status", table_name="sessions")
    op.drop_index("idx_sessions_user_created", table_name="sessions")
    op.drop_table("sessions")
    op.drop_constraint("fk_users_subscription_id", "users", type_="foreignkey")
    op.drop_index("idx_subscriptions_status", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("idx_users_invitation_token", table_name="users")
    op.drop_index("idx_users_invited_by", table_name="users")
    op.drop_table("users")
