"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        sa.Column("icon", sa.String(length=16)),
        sa.Column("color", sa.String(length=9)),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "type", "name", name="uq_category_user_type_name"
        ),
    )

    op.create_table(
        "banks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "account_type",
            sa.Enum(
                "savings",
                "current",
                "credit_card",
                "cash",
                "wallet",
                name="accounttype",
            ),
            nullable=False,
        ),
        sa.Column("account_number_last4", sa.String(length=4)),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_banks_user", "banks", ["user_id"])

    op.create_table(
        "credit_cards",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bank_id",
            sa.Integer(),
            sa.ForeignKey("banks.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("card_name", sa.String(length=100), nullable=False),
        sa.Column("last_four_digits", sa.String(length=4)),
        sa.Column("billing_cycle_start_day", sa.Integer(), nullable=False),
        sa.Column("billing_cycle_end_day", sa.Integer(), nullable=False),
        sa.Column("payment_due_day", sa.Integer(), nullable=False),
        sa.Column("credit_limit_cents", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "billing_cycle_start_day BETWEEN 1 AND 31", name="ck_card_cycle_start_day"
        ),
        sa.CheckConstraint(
            "billing_cycle_end_day BETWEEN 1 AND 31", name="ck_card_cycle_end_day"
        ),
        sa.CheckConstraint("payment_due_day BETWEEN 1 AND 31", name="ck_card_due_day"),
    )

    op.create_table(
        "labels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("color", sa.String(length=9)),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "name", name="uq_label_user_name"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("bank_id", sa.Integer(), sa.ForeignKey("banks.id"), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column(
            "type",
            sa.Enum("income", "expense", "transfer", name="transactiontype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200)),
        sa.Column("notes", sa.Text()),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "transaction_date"]
    )
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "transaction_date"],
    )
    op.create_index(
        "ix_transactions_user_bank_date",
        "transactions",
        ["user_id", "bank_id", "transaction_date"],
    )

    op.create_table(
        "transaction_labels",
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            primary_key=True,
        ),
        sa.Column(
            "label_id", sa.Integer(), sa.ForeignKey("labels.id"), primary_key=True
        ),
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "period",
            sa.Enum("weekly", "monthly", "yearly", name="budgetperiod"),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budgets_user_period", "budgets", ["user_id", "period"])

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "category_id", sa.Integer(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("bank_id", sa.Integer(), sa.ForeignKey("banks.id")),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "bill_type",
            sa.Enum(
                "utilities",
                "subscription",
                "rent_mortgage",
                "insurance",
                "other",
                name="billtype",
            ),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "recurrence",
            sa.Enum(
                "one_time",
                "weekly",
                "biweekly",
                "monthly",
                "quarterly",
                "semi_annual",
                "annual",
                name="billrecurrence",
            ),
            nullable=False,
        ),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("day_of_month", sa.Integer()),
        sa.Column(
            "reminder_days_before", sa.Integer(), nullable=False, server_default="3"
        ),
        sa.Column("auto_pay", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_bill_amount_positive"),
        sa.CheckConstraint(
            "day_of_month IS NULL OR day_of_month BETWEEN 1 AND 31",
            name="ck_bill_day_of_month",
        ),
    )
    op.create_index("ix_bills_user_active", "bills", ["user_id", "is_active"])

    op.create_table(
        "bill_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bill_id", sa.Integer(), sa.ForeignKey("bills.id"), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "upcoming",
                "due_soon",
                "overdue",
                "paid",
                "cancelled",
                name="billstatus",
            ),
            nullable=False,
        ),
        sa.Column("paid_date", sa.Date()),
        sa.Column("paid_amount_cents", sa.Integer()),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            unique=True,
        ),
        sa.Column(
            "reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("reminder_sent_at", sa.DateTime()),
        sa.Column("notes", sa.Text()),
        *_timestamps(),
        sa.UniqueConstraint("bill_id", "due_date", name="uq_bill_payment_due_date"),
    )
    op.create_index(
        "ix_bill_payments_status_due", "bill_payments", ["status", "due_date"]
    )

    op.create_table(
        "insights",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "budget_alert",
                "savings_opportunity",
                "unusual_spending",
                "bill_reminder",
                "bill_overdue",
                name="insighttype",
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("subject_id", sa.Integer()),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime()),
        *_timestamps(),
    )
    op.create_index(
        "ix_insights_user_type_subject", "insights", ["user_id", "type", "subject_id"]
    )


def downgrade():
    op.drop_index("ix_insights_user_type_subject", table_name="insights")
    op.drop_table("insights")
    op.drop_index("ix_bill_payments_status_due", table_name="bill_payments")
    op.drop_table("bill_payments")
    op.drop_index("ix_bills_user_active", table_name="bills")
    op.drop_table("bills")
    op.drop_index("ix_budgets_user_period", table_name="budgets")
    op.drop_table("budgets")
    op.drop_table("transaction_labels")
    op.drop_index("ix_transactions_user_bank_date", table_name="transactions")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("labels")
    op.drop_table("credit_cards")
    op.drop_index("ix_banks_user", table_name="banks")
    op.drop_table("banks")
    op.drop_table("categories")
