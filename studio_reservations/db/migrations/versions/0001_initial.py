"""Initial studio reservations schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=255)),
        sa.Column("phone", sa.String(length=32)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_members_email", "members", ["email"])

    admin_role = postgresql.ENUM("admin", "manager", "viewer", name="adminrole")
    admin_role.create(bind, checkfirst=True)
    op.create_table(
        "admin_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("login", sa.String(length=255), nullable=False, unique=True),
        sa.Column("role", admin_role, server_default="viewer"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    class_status = postgresql.ENUM("scheduled", "cancelled", "completed", name="classstatus")
    class_status.create(bind, checkfirst=True)
    op.create_table(
        "classes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("instructor_name", sa.String(length=255)),
        sa.Column("starts_at", sa.DateTime(timezone=True)),
        sa.Column("ends_at", sa.DateTime(timezone=True)),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("credits_required", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("status", class_status, server_default="scheduled"),
        sa.Column("cancellation_reason", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("capacity > 0", name="ck_class_capacity_positive"),
        sa.CheckConstraint("credits_required >= 0", name="ck_class_credits_required_non_negative"),
        sa.CheckConstraint("ends_at > starts_at", name="ck_class_ends_after_start"),
    )
    op.create_index("ix_classes_starts_at", "classes", ["starts_at"])

    product_kind = postgresql.ENUM("package", "membership", name="productkind")
    product_kind.create(bind, checkfirst=True)
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("kind", product_kind, nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("credits", sa.Integer()),
        sa.Column("expiration_days", sa.Integer()),
        sa.Column("payment_link_id", sa.String(length=128), unique=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
    )

    booking_status = postgresql.ENUM(
        "confirmed",
        "cancelled_on_time",
        "cancelled_late",
        "no_show",
        "attended",
        name="bookingstatus",
    )
    booking_status.create(bind, checkfirst=True)
    booking_source = postgresql.ENUM("member", "admin", "waitlist", name="bookingsource")
    booking_source.create(bind, checkfirst=True)
    cancellation_type = postgresql.ENUM("on_time", "late", "no_show", name="cancellationtype")
    cancellation_type.create(bind, checkfirst=True)
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE")),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("status", booking_status, server_default="confirmed"),
        sa.Column("source", booking_source, server_default="member"),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("booked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("cancellation_type", cancellation_type),
        sa.Column("cancelled_by", sa.String(length=64)),
        sa.Column("cancellation_reason", sa.String(length=255)),
    )
    op.create_index("ix_bookings_class_id", "bookings", ["class_id"])
    op.create_index("ix_bookings_member_id", "bookings", ["member_id"])
    op.create_index(
        "uq_booking_confirmed_member_class",
        "bookings",
        ["class_id", "member_id"],
        unique=True,
        postgresql_where=sa.text("status = 'confirmed'"),
    )

    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), sa.ForeignKey("classes.id", ondelete="CASCADE")),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("notified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("member_id", "class_id", name="uq_waitlist_member_class"),
    )
    op.create_index("ix_waitlist_entries_class_id", "waitlist_entries", ["class_id"])

    pending_status = postgresql.ENUM(
        "pending", "confirmed", "cancelled", name="pendingpurchasestatus"
    )
    pending_status.create(bind, checkfirst=True)
    op.create_table(
        "pending_purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id")),
        sa.Column("product_name", sa.String(length=128)),
        sa.Column("product_kind", postgresql.ENUM(name="productkind", create_type=False)),
        sa.Column("amount", sa.Numeric(10, 2)),
        sa.Column("status", pending_status, server_default="pending"),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("resolved_by", sa.String(length=64)),
    )
    op.create_index("ix_pending_purchases_member_id", "pending_purchases", ["member_id"])

    payment_method = postgresql.ENUM("swipesimple", "admin", "manual", name="paymentmethod")
    payment_method.create(bind, checkfirst=True)
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("amount", sa.Numeric(10, 2)),
        sa.Column("currency", sa.CHAR(length=3), server_default="USD"),
        sa.Column("method", payment_method),
        sa.Column("external_transaction_id", sa.String(length=128), nullable=False),
        sa.Column("pending_purchase_id", sa.Integer(), sa.ForeignKey("pending_purchases.id")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "external_transaction_id", name="uq_payment_external_transaction_id"
        ),
    )
    op.create_index("ix_payments_member_id", "payments", ["member_id"])

    grant_kind = postgresql.ENUM(
        "package", "membership", "manual", "compensation", name="grantkind"
    )
    grant_kind.create(bind, checkfirst=True)
    op.create_table(
        "credit_grants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("kind", grant_kind, nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id")),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id")),
        sa.Column("credits_total", sa.Integer()),
        sa.Column("credits_remaining", sa.Integer()),
        sa.Column("purchased_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.CheckConstraint(
            "credits_remaining IS NULL OR "
            "(credits_remaining >= 0 AND credits_remaining <= credits_total)",
            name="ck_credit_grant_remaining_bounds",
        ),
        sa.CheckConstraint(
            "(credits_total IS NULL) = (credits_remaining IS NULL)",
            name="ck_credit_grant_unlimited_consistent",
        ),
    )
    op.create_index("ix_credit_grants_member_id", "credit_grants", ["member_id"])
    op.create_index("ix_credit_grants_expires_at", "credit_grants", ["expires_at"])

    entry_reason = postgresql.ENUM("grant", "debit", "refund", name="creditentryreason")
    entry_reason.create(bind, checkfirst=True)
    op.create_table(
        "credit_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "grant_id", sa.Integer(), sa.ForeignKey("credit_grants.id", ondelete="CASCADE")
        ),
        sa.Column("member_id", sa.Integer(), sa.ForeignKey("members.id", ondelete="CASCADE")),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id")),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", entry_reason, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_credit_entries_grant_id", "credit_entries", ["grant_id"])
    op.create_index("ix_credit_entries_member_id", "credit_entries", ["member_id"])
    op.create_index("ix_credit_entries_booking_id", "credit_entries", ["booking_id"])

    unresolved_reason = postgresql.ENUM(
        "missing_email", "member_not_found", "product_not_identified", name="unresolvedreason"
    )
    unresolved_reason.create(bind, checkfirst=True)
    unresolved_status = postgresql.ENUM("open", "resolved", "dismissed", name="unresolvedstatus")
    unresolved_status.create(bind, checkfirst=True)
    op.create_table(
        "unresolved_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("reason", unresolved_reason),
        sa.Column("status", unresolved_status, server_default="open"),
        sa.Column("email", sa.String(length=255)),
        sa.Column("link_id", sa.String(length=128)),
        sa.Column("amount", sa.Numeric(10, 2)),
        sa.Column("external_transaction_id", sa.String(length=128)),
        sa.Column("payload", sa.JSON()),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_unresolved_payments_external_transaction_id",
        "unresolved_payments",
        ["external_transaction_id"],
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("key"),
    )

    actor_type = postgresql.ENUM("member", "admin", "system", name="actortype")
    actor_type.create(bind, checkfirst=True)
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor_type", actor_type),
        sa.Column("actor_id", sa.Integer()),
        sa.Column("action", sa.String(length=255)),
        sa.Column("payload", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("settings")
    op.drop_index("ix_unresolved_payments_external_transaction_id", table_name="unresolved_payments")
    op.drop_table("unresolved_payments")
    op.drop_table("credit_entries")
    op.drop_table("credit_grants")
    op.drop_table("payments")
    op.drop_table("pending_purchases")
    op.drop_table("waitlist_entries")
    op.drop_index("uq_booking_confirmed_member_class", table_name="bookings")
    op.drop_table("bookings")
    op.drop_table("products")
    op.drop_table("classes")
    op.drop_table("admin_users")
    op.drop_table("members")
    bind = op.get_bind()
    for enum_name in (
        "actortype",
        "unresolvedstatus",
        "unresolvedreason",
        "creditentryreason",
        "grantkind",
        "paymentmethod",
        "pendingpurchasestatus",
        "cancellationtype",
        "bookingsource",
        "bookingstatus",
        "productkind",
        "classstatus",
        "adminrole",
    ):
        postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
