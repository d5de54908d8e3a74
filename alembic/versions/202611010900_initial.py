"""initial ledger schema

Revision ID: 202611010900
Revises:
Create Date: 2026-11-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202611010900"
down_revision = None
branch_labels = None
depends_on = None


ACCOUNT_TYPES = ("checking", "savings", "credit_card", "loan")
TRANSACTION_TYPES = ("income", "expense", "transfer", "interest_charge", "loan_payment")
FREQUENCIES = ("weekly", "monthly", "quarterly", "yearly")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="accounttype"), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="USD"),
        sa.Column("apr", sa.Numeric(5, 2)),
        sa.Column("credit_limit_cents", sa.Integer()),
        sa.Column("loan_amount_cents", sa.Integer()),
        sa.Column("remaining_balance_cents", sa.Integer()),
        sa.Column("loan_term_months", sa.Integer()),
        sa.Column("monthly_payment_cents", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_account_user_name"),
    )
    op.create_index("ix_accounts_user_type", "accounts", ["user_id", "type"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=9)),
        sa.Column("icon", sa.String(length=50)),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_category_user_name"),
    )

    op.create_table(
        "recurring_charges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "frequency", sa.Enum(*FREQUENCIES, name="recurringfrequency"), nullable=False
        ),
        sa.Column("next_due_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_recurring_amount_positive"),
    )
    op.create_index(
        "ix_recurring_user_due", "recurring_charges", ["user_id", "next_due_date"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id")),
        sa.Column(
            "recurring_id",
            sa.Integer(),
            sa.ForeignKey("recurring_charges.id", ondelete="SET NULL"),
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_user_date", "transactions", ["user_id", "date"])
    op.create_index(
        "ix_transactions_account_date", "transactions", ["account_id", "date"]
    )

    op.create_table(
        "account_balance_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("account_id", "date", name="uq_snapshot_account_date"),
    )
    op.create_index(
        "ix_snapshots_user_date", "account_balance_snapshots", ["user_id", "date"]
    )


def downgrade():
    op.drop_index("ix_snapshots_user_date", table_name="account_balance_snapshots")
    op.drop_table("account_balance_snapshots")
    op.drop_index("ix_transactions_account_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_recurring_user_due", table_name="recurring_charges")
    op.drop_table("recurring_charges")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user_type", table_name="accounts")
    op.drop_table("accounts")
