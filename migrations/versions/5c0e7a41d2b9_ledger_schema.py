"""ledger schema: users, links, withdrawal requests, activities

Revision ID: 5c0e7a41d2b9
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "5c0e7a41d2b9"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(120), nullable=False, unique=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("first_name", sa.String(80)),
        sa.Column("last_name", sa.String(80)),
        sa.Column("date_of_birth", sa.Date()),
        sa.Column("phone_number", sa.String(32)),
        sa.Column("address_line1", sa.String(200)),
        sa.Column("address_line2", sa.String(200)),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("country", sa.String(2)),
        sa.Column("platform_fee", sa.Integer(), nullable=True),
        sa.Column("stripe_connect_account_id", sa.String(80), nullable=True, unique=True),
        sa.Column("stripe_verification_session_id", sa.String(80), nullable=True),
        sa.Column("is_identity_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payout_lock_token", sa.String(64), nullable=True),
        sa.Column("payout_locked_at", sa.DateTime(), nullable=True),
        sa.Column("email_notification_link_views", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("email_notification_link_purchases", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_notification_cash_out", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_user_stripe_verification_session_id", "user", ["stripe_verification_session_id"])

    op.create_table(
        "links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("slug", sa.String(64), nullable=False),
        sa.Column("name", sa.String(120), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_earnings", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_clicks", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_sales", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_links_user_id", "links", ["user_id"])
    op.create_index("ix_links_slug", "links", ["slug"], unique=True)

    op.create_table(
        "withdrawal_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(16), nullable=False, server_default="standard"),
        sa.Column("fee", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("allocations", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(24), nullable=False, server_default="pending"),
        sa.Column("note", sa.String(255), nullable=True),
        sa.Column("stripe_transfer_id", sa.String(80), nullable=True),
        sa.Column("stripe_payout_id", sa.String(80), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_withdrawal_requests_user_id", "withdrawal_requests", ["user_id"])
    op.create_index("ix_withdrawal_requests_status", "withdrawal_requests", ["status"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("link_id", sa.Integer(), sa.ForeignKey("links.id"), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("platform_fee", sa.Integer(), nullable=True),
        sa.Column("stripe_payment_ref", sa.String(120), nullable=True, unique=True),
        sa.Column("customer_email", sa.String(120), nullable=True),
        sa.Column("withdrawal_id", sa.Integer(), sa.ForeignKey("withdrawal_requests.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("type IN ('click', 'purchase', 'withdraw')", name="ck_activity_type"),
        sa.CheckConstraint(
            "(type = 'click' AND amount IS NULL AND platform_fee IS NULL)"
            " OR (type = 'purchase' AND amount IS NOT NULL AND platform_fee IS NOT NULL)"
            " OR (type = 'withdraw' AND amount IS NOT NULL AND platform_fee IS NULL)",
            name="ck_activity_amounts",
        ),
    )
    op.create_index("ix_activities_link_id", "activities", ["link_id"])
    op.create_index("ix_activities_link_type", "activities", ["link_id", "type"])
    op.create_index("ix_activities_customer_email", "activities", ["customer_email"])
    op.create_index("ix_activities_withdrawal_id", "activities", ["withdrawal_id"])
    op.create_index("ix_activities_created_at", "activities", ["created_at"])

    # Activities are append-only; refuse UPDATE/DELETE below the ORM too
    bind = op.get_bind()
    dialect = bind.dialect.name

    if dialect == "sqlite":
        op.execute(
            """
            CREATE TRIGGER activities_no_update BEFORE UPDATE ON activities
            BEGIN SELECT RAISE(ABORT, 'activities are append-only'); END
            """
        )
        op.execute(
            """
            CREATE TRIGGER activities_no_delete BEFORE DELETE ON activities
            BEGIN SELECT RAISE(ABORT, 'activities are append-only'); END
            """
        )
    elif dialect == "postgresql":
        op.execute(
            """
            CREATE FUNCTION activities_append_only() RETURNS trigger AS $$
            BEGIN
                RAISE EXCEPTION 'activities are append-only';
            END;
            $$ LANGUAGE plpgsql
            """
        )
        op.execute(
            """
            CREATE TRIGGER activities_append_only
            BEFORE UPDATE OR DELETE ON activities
            FOR EACH ROW EXECUTE FUNCTION activities_append_only()
            """
        )


def downgrade():
    bind = op.get_bind()
    dialect = bind.dialect.name

    if dialect == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS activities_no_delete")
        op.execute("DROP TRIGGER IF EXISTS activities_no_update")
    elif dialect == "postgresql":
        op.execute("DROP TRIGGER IF EXISTS activities_append_only ON activities")
        op.execute("DROP FUNCTION IF EXISTS activities_append_only()")

    op.drop_table("activities")
    op.drop_table("withdrawal_requests")
    op.drop_table("links")
    op.drop_table("user")
