"""Initial metering schema"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSONType = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("name", sa.String(255)),
        sa.Column("email", sa.String(255), index=True),
        sa.Column("auth_uid", sa.String(128), index=True),
        sa.Column("twilio_account_sid", sa.String(64)),
        sa.Column("twilio_auth_token", sa.String(128)),
        sa.Column("twilio_phone_number", sa.String(32)),
        sa.Column("twilio_messaging_service_sid", sa.String(64)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(128), primary_key=True),
        sa.Column("email", sa.String(255), index=True),
        sa.Column("tenant_id", sa.String(128), index=True),
        sa.Column("role", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "credit_ledgers",
        sa.Column("tenant_id", sa.String(128), sa.ForeignKey("tenants.id"), primary_key=True),
        sa.Column("plan_id", sa.String(64)),
        sa.Column("plan_name", sa.String(128)),
        sa.Column("price", sa.String(32)),
        sa.Column("sms_credits", sa.Integer()),
        sa.Column("remaining_credits", sa.Integer()),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("start_date", sa.DateTime()),
        sa.Column("end_date", sa.DateTime()),
        sa.Column("payment_session_id", sa.String(255), index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "profile_projections",
        sa.Column("tenant_id", sa.String(128), sa.ForeignKey("tenants.id"), primary_key=True),
        sa.Column("shape", sa.String(16), primary_key=True),
        sa.Column("plan_id", sa.String(64)),
        sa.Column("plan_name", sa.String(128)),
        sa.Column("price", sa.String(32)),
        sa.Column("sms_credits", sa.Integer()),
        sa.Column("remaining_credits", sa.Integer()),
        sa.Column("status", sa.String(32)),
        sa.Column("activated_at", sa.DateTime()),
        sa.Column("expiry_at", sa.DateTime()),
        sa.Column("payment_session_id", sa.String(255), index=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "message_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(128), nullable=False, index=True),
        sa.Column("sid", sa.String(64), index=True),
        sa.Column("recipient", sa.String(32), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("billable", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, index=True),
    )
    op.create_table(
        "platform_settings",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("twilio_account_sid", sa.String(64)),
        sa.Column("twilio_auth_token", sa.String(128)),
        sa.Column("twilio_phone_number", sa.String(32)),
        sa.Column("twilio_messaging_service_sid", sa.String(64)),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "payment_events",
        sa.Column("id", sa.String(255), primary_key=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(255), index=True),
        sa.Column("tenant_id", sa.String(128)),
        sa.Column("payload", JSONType),
        sa.Column("received_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "payment_events",
        "platform_settings",
        "message_logs",
        "profile_projections",
        "credit_ledgers",
        "users",
        "tenants",
    ):
        op.drop_table(table)
