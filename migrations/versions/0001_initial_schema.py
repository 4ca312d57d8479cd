"""initial schema: users, transactions, webhook_events

Revision ID: 0001
Revises:
Create Date: 2026-10-18 00:00:00
"""
from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


user_role = sa.Enum(
    "STUDENT", "PARTNER", "ADMIN",
    name="user_role_enum", create_constraint=True,
)
transaction_kind = sa.Enum(
    "TOPUP", "SPEND", "REFUND", "MANUAL_TOPUP", "BONUS",
    name="transaction_kind_enum", create_constraint=True,
)
transaction_status = sa.Enum(
    "PENDING", "COMPLETED", "FAILED", "CANCELLED", "TIMEOUT",
    name="transaction_status_enum", create_constraint=True,
)
payment_method = sa.Enum(
    "BANK_TRANSFER", "MANUAL", "SYSTEM",
    name="payment_method_enum", create_constraint=True,
)
webhook_source = sa.Enum(
    "CASSO", "MANUAL", "OTHER",
    name="webhook_source_enum", create_constraint=True,
)
webhook_status = sa.Enum(
    "RECEIVED", "PROCESSING", "MATCHED", "UNMATCHED", "ERROR", "IGNORED",
    name="webhook_status_enum", create_constraint=True,
)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transfer_code", sa.String(40), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("kind", transaction_kind, nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("credits", sa.Integer(), nullable=False),
        sa.Column("status", transaction_status, nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(), nullable=True),
        sa.Column("webhook_data", sa.JSON(), nullable=True),
        sa.Column("webhook_event_id", sa.Integer(), nullable=True),
        sa.Column("bank_transaction_id", sa.String(100), nullable=True),
        sa.Column("processed_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.Column("failed_reason", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_transactions_transfer_code", "transactions", ["transfer_code"], unique=True
    )
    op.create_index("ix_transactions_status", "transactions", ["status"])
    op.create_index("ix_transactions_webhook_event_id", "transactions", ["webhook_event_id"])
    op.create_index("ix_transactions_processed_by", "transactions", ["processed_by"])
    op.create_index("ix_transactions_created_at", "transactions", ["created_at"])
    op.create_index("ix_transactions_user_created", "transactions", ["user_id", "created_at"])
    op.create_index("ix_transactions_kind_created", "transactions", ["kind", "created_at"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("source", webhook_source, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("parsed_code", sa.String(40), nullable=True),
        sa.Column("parsed_amount", sa.BigInteger(), nullable=True),
        sa.Column("parsed_description", sa.Text(), nullable=True),
        sa.Column("external_transaction_id", sa.String(100), nullable=True),
        sa.Column("transacted_at", sa.DateTime(), nullable=True),
        sa.Column("counter_account_name", sa.String(255), nullable=True),
        sa.Column("status", webhook_status, nullable=False),
        sa.Column(
            "matched_transaction_id", sa.Integer(),
            sa.ForeignKey("transactions.id"), nullable=True,
        ),
        sa.Column("matched_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processing_notes", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_parsed_code", "webhook_events", ["parsed_code"])
    op.create_index("ix_webhook_events_created_at", "webhook_events", ["created_at"])
    op.create_index(
        "ix_webhook_events_source_status", "webhook_events", ["source", "status"]
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("transactions")
    op.drop_table("users")
    for enum in (
        webhook_status, webhook_source, payment_method,
        transaction_status, transaction_kind, user_role,
    ):
        enum.drop(op.get_bind(), checkfirst=True)
