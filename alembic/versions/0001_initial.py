"""Initial schema: users, API keys, Turnstile site keys, audit logs and analytics

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("encrypted_key", sa.Text(), nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("service", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=150), nullable=False),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)
    op.create_index("ix_api_keys_service", "api_keys", ["service"])
    op.create_index("ix_api_keys_is_active", "api_keys", ["is_active"])

    op.create_table(
        "api_key_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("api_key_id", sa.String(length=36), nullable=False),
        sa.Column("api_key_name", sa.String(length=255), nullable=False),
        sa.Column("service", sa.String(length=255), nullable=False),
        sa.Column("performed_by", sa.String(length=150), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
    )
    op.create_index("ix_api_key_logs_action", "api_key_logs", ["action"])
    op.create_index("ix_api_key_logs_api_key_id", "api_key_logs", ["api_key_id"])
    op.create_index("ix_api_key_logs_service", "api_key_logs", ["service"])
    op.create_index("ix_api_key_logs_timestamp", "api_key_logs", ["timestamp"])

    op.create_table(
        "turnstile_site_keys",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("environment", sa.String(length=20), nullable=False),
        sa.Column("site_key", sa.String(length=255), nullable=False),
        sa.Column("secret_key", sa.Text(), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("created_by", sa.String(length=150), nullable=False),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_turnstile_site_keys_environment", "turnstile_site_keys", ["environment"])
    op.create_index("ix_turnstile_site_keys_domain", "turnstile_site_keys", ["domain"])
    op.create_index("ix_turnstile_site_keys_is_active", "turnstile_site_keys", ["is_active"])

    op.create_table(
        "turnstile_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("site_key_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("performed_by", sa.String(length=150), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
    )
    op.create_index("ix_turnstile_logs_site_key_id", "turnstile_logs", ["site_key_id"])
    op.create_index("ix_turnstile_logs_action", "turnstile_logs", ["action"])
    op.create_index("ix_turnstile_logs_timestamp", "turnstile_logs", ["timestamp"])

    op.create_table(
        "turnstile_analytics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("total_verifications", sa.Integer(), nullable=False),
        sa.Column("successful_verifications", sa.Integer(), nullable=False),
        sa.Column("failed_verifications", sa.Integer(), nullable=False),
    )
    op.create_index("ix_turnstile_analytics_date", "turnstile_analytics", ["date"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_turnstile_analytics_date", table_name="turnstile_analytics")
    op.drop_table("turnstile_analytics")
    op.drop_index("ix_turnstile_logs_timestamp", table_name="turnstile_logs")
    op.drop_index("ix_turnstile_logs_action", table_name="turnstile_logs")
    op.drop_index("ix_turnstile_logs_site_key_id", table_name="turnstile_logs")
    op.drop_table("turnstile_logs")
    op.drop_index("ix_turnstile_site_keys_is_active", table_name="turnstile_site_keys")
    op.drop_index("ix_turnstile_site_keys_domain", table_name="turnstile_site_keys")
    op.drop_index("ix_turnstile_site_keys_environment", table_name="turnstile_site_keys")
    op.drop_table("turnstile_site_keys")
    op.drop_index("ix_api_key_logs_timestamp", table_name="api_key_logs")
    op.drop_index("ix_api_key_logs_service", table_name="api_key_logs")
    op.drop_index("ix_api_key_logs_api_key_id", table_name="api_key_logs")
    op.drop_index("ix_api_key_logs_action", table_name="api_key_logs")
    op.drop_table("api_key_logs")
    op.drop_index("ix_api_keys_is_active", table_name="api_keys")
    op.drop_index("ix_api_keys_service", table_name="api_keys")
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
