"""create users, payment intents and token ledger

Revision ID: 20261016_000001
Revises:
Create Date: 2026-10-16 00:00:01.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261016_000001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("token_balance", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("token_balance >= 0", name="ck_users_token_balance_non_negative"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_external_id"), "users", ["external_id"], unique=True)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=False)

    op.create_table(
        "payment_intents",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("gateway_order_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("package_id", sa.String(), nullable=False),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False),
        sa.Column("token_grant", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("gateway_payment_id", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_payment_intents_gateway_order_id"), "payment_intents", ["gateway_order_id"], unique=True)
    op.create_index(op.f("ix_payment_intents_user_id"), "payment_intents", ["user_id"], unique=False)
    op.create_index(op.f("ix_payment_intents_status"), "payment_intents", ["status"], unique=False)
    op.create_index(
        op.f("ix_payment_intents_gateway_payment_id"), "payment_intents", ["gateway_payment_id"], unique=False
    )
    op.create_index(
        "ix_payment_intents_user_status_created",
        "payment_intents",
        ["user_id", "status", "created_at"],
        unique=False,
    )

    op.create_table(
        "token_ledger",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("feature_type", sa.String(), nullable=False),
        sa.Column("reference_type", sa.String(), nullable=True),
        sa.Column("reference_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("feature_type", "reference_id", name="uq_token_ledger_feature_reference"),
    )
    op.create_index(op.f("ix_token_ledger_user_id"), "token_ledger", ["user_id"], unique=False)
    op.create_index(op.f("ix_token_ledger_feature_type"), "token_ledger", ["feature_type"], unique=False)
    op.create_index(op.f("ix_token_ledger_created_at"), "token_ledger", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_token_ledger_created_at"), table_name="token_ledger")
    op.drop_index(op.f("ix_token_ledger_feature_type"), table_name="token_ledger")
    op.drop_index(op.f("ix_token_ledger_user_id"), table_name="token_ledger")
    op.drop_table("token_ledger")
    op.drop_index("ix_payment_intents_user_status_created", table_name="payment_intents")
    op.drop_index(op.f("ix_payment_intents_gateway_payment_id"), table_name="payment_intents")
    op.drop_index(op.f("ix_payment_intents_status"), table_name="payment_intents")
    op.drop_index(op.f("ix_payment_intents_user_id"), table_name="payment_intents")
    op.drop_index(op.f("ix_payment_intents_gateway_order_id"), table_name="payment_intents")
    op.drop_table("payment_intents")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_index(op.f("ix_users_external_id"), table_name="users")
    op.drop_table("users")
