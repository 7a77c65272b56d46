"""Add auto renewal to membership grants

Revision ID: 0002_membership_renewal
Revises: 0001_initial
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0002_membership_renewal"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


OLD_PAYMENT_METHODS = ("swipesimple", "admin", "manual")
NEW_PAYMENT_METHODS = OLD_PAYMENT_METHODS + ("renewal",)


def upgrade() -> None:
    with op.batch_alter_table("credit_grants") as batch_op:
        batch_op.add_column(
            sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false())
        )
        batch_op.add_column(
            sa.Column("renewed_by_grant_id", sa.Integer(), sa.ForeignKey("credit_grants.id"))
        )

    for method in NEW_PAYMENT_METHODS[len(OLD_PAYMENT_METHODS) :]:
        op.execute(f"ALTER TYPE paymentmethod ADD VALUE IF NOT EXISTS '{method}'")


def downgrade() -> None:
    with op.batch_alter_table("credit_grants") as batch_op:
        batch_op.drop_column("renewed_by_grant_id")
        batch_op.drop_column("auto_renew")

    op.execute("UPDATE payments SET method = 'manual' WHERE method = 'renewal'")
    payment_method_old = postgresql.ENUM(*OLD_PAYMENT_METHODS, name="paymentmethod_old")
    payment_method_old.create(op.get_bind(), checkfirst=False)
    op.execute(
        "ALTER TABLE payments ALTER COLUMN method TYPE paymentmethod_old "
        "USING method::text::paymentmethod_old"
    )
    op.execute("DROP TYPE paymentmethod")
    op.execute("ALTER TYPE paymentmethod_old RENAME TO paymentmethod")
