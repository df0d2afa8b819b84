"""Initial back-office schema: users, expenses, sales and job cards

Revision ID: 3f1a9c2b7d10
Revises:
Create Date: 2025-03-03 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f1a9c2b7d10"
down_revision = None
branch_labels = None
depends_on = None


ROLE_VALUES = ("DIRECTOR", "STAFF")
EXPENSE_STATUS_VALUES = ("DRAFT", "PENDING", "APPROVED", "PAID", "REJECTED", "CANCELLED")
PAYMENT_METHOD_VALUES = (
    "CASH",
    "BANK_TRANSFER",
    "MPESA",
    "CHEQUE",
    "CREDIT_CARD",
    "DEBIT_CARD",
    "OTHER",
)
SALE_STATUS_VALUES = ("DRAFT", "PENDING", "COMPLETED", "CANCELLED")
INSTALLMENT_STATUS_VALUES = ("PAID", "PENDING")
JOB_CARD_STATUS_VALUES = (
    "DRAFT",
    "PENDING_CLIENT_CONFIRMATION",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
)


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=False),
        sa.Column("role", sa.Enum(*ROLE_VALUES, name="roleenum"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "clients",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("company_name", sa.String(length=255), nullable=False),
        sa.Column("contact_person", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=True),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
    )

    op.create_table(
        "expense_categories",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "job_cards",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_number", sa.String(length=40), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("visit_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Enum(*JOB_CARD_STATUS_VALUES, name="jobcardstatus"), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("support_staff_id", sa.Integer(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("total_expenses", sa.Numeric(14, 2), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["support_staff_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_number"),
    )
    op.create_index("ix_job_cards_client_id", "job_cards", ["client_id"])
    op.create_index("ix_job_cards_status", "job_cards", ["status"])

    op.create_table(
        "job_tasks",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_card_id", sa.Integer(), nullable=False),
        sa.Column("module_name", sa.String(length=120), nullable=True),
        sa.Column("task_type", sa.String(length=120), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("start_time", sa.DateTime(), nullable=True),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["job_card_id"], ["job_cards.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_tasks_job_card_id", "job_tasks", ["job_card_id"])

    op.create_table(
        "job_expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("job_card_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("has_receipt", sa.Boolean(), nullable=False),
        sa.Column("receipt_url", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_job_expenses_amount_positive"),
        sa.ForeignKeyConstraint(["job_card_id"], ["job_cards.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_job_expenses_job_card_id", "job_expenses", ["job_card_id"])

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("expense_number", sa.String(length=40), nullable=False),
        sa.Column("category_id", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("vendor", sa.String(length=255), nullable=True),
        sa.Column("reference_number", sa.String(length=120), nullable=True),
        sa.Column("payment_method", sa.Enum(*PAYMENT_METHOD_VALUES, name="paymentmethod"), nullable=True),
        sa.Column("status", sa.Enum(*EXPENSE_STATUS_VALUES, name="expensestatus"), nullable=False),
        sa.Column("has_receipt", sa.Boolean(), nullable=False),
        sa.Column("receipt_url", sa.String(length=500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("submitted_by_id", sa.Integer(), nullable=False),
        sa.Column("job_card_id", sa.Integer(), nullable=True),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.Column("paid_by_id", sa.Integer(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("rejected_by_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        sa.ForeignKeyConstraint(["category_id"], ["expense_categories.id"]),
        sa.ForeignKeyConstraint(["submitted_by_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["job_card_id"], ["job_cards.id"]),
        sa.ForeignKeyConstraint(["approved_by_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["paid_by_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["rejected_by_id"], ["user.id"]),
        sa.ForeignKeyConstraint(["cancelled_by_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("expense_number"),
    )
    op.create_index("ix_expenses_category_id", "expenses", ["category_id"])
    op.create_index("ix_expenses_expense_date", "expenses", ["expense_date"])
    op.create_index("ix_expenses_status", "expenses", ["status"])
    op.create_index("ix_expenses_submitted_by_id", "expenses", ["submitted_by_id"])
    op.create_index("ix_expenses_job_card_id", "expenses", ["job_card_id"])

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_number", sa.String(length=40), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("sale_date", sa.Date(), nullable=False),
        sa.Column("status", sa.Enum(*SALE_STATUS_VALUES, name="salestatus"), nullable=False),
        sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("agreed_monthly_installment_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("requested_payment_date_extension", sa.Boolean(), nullable=False),
        sa.Column("payment_extension_due_date", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("paid_amount >= 0", name="ck_sales_paid_non_negative"),
        sa.CheckConstraint("paid_amount <= total_amount", name="ck_sales_paid_within_total"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"]),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sale_number"),
    )
    op.create_index("ix_sales_client_id", "sales", ["client_id"])
    op.create_index("ix_sales_status", "sales", ["status"])

    op.create_table(
        "sale_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_price", sa.Numeric(14, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        sa.CheckConstraint("unit_price > 0", name="ck_sale_items_unit_price_positive"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sale_items_sale_id", "sale_items", ["sale_id"])

    op.create_table(
        "sale_installments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sale_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        sa.Column("status", sa.Enum(*INSTALLMENT_STATUS_VALUES, name="installmentstatus"), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("recorded_by_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_sale_installments_amount_positive"),
        sa.ForeignKeyConstraint(["sale_id"], ["sales.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["recorded_by_id"], ["user.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sale_installments_sale_id", "sale_installments", ["sale_id"])


def downgrade() -> None:
    op.drop_index("ix_sale_installments_sale_id", table_name="sale_installments")
    op.drop_table("sale_installments")
    op.drop_index("ix_sale_items_sale_id", table_name="sale_items")
    op.drop_table("sale_items")
    op.drop_index("ix_sales_status", table_name="sales")
    op.drop_index("ix_sales_client_id", table_name="sales")
    op.drop_table("sales")
    for index in (
        "ix_expenses_job_card_id",
        "ix_expenses_submitted_by_id",
        "ix_expenses_status",
        "ix_expenses_expense_date",
        "ix_expenses_category_id",
    ):
        op.drop_index(index, table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_job_expenses_job_card_id", table_name="job_expenses")
    op.drop_table("job_expenses")
    op.drop_index("ix_job_tasks_job_card_id", table_name="job_tasks")
    op.drop_table("job_tasks")
    op.drop_index("ix_job_cards_status", table_name="job_cards")
    op.drop_index("ix_job_cards_client_id", table_name="job_cards")
    op.drop_table("job_cards")
    op.drop_table("expense_categories")
    op.drop_table("products")
    op.drop_table("clients")
    op.drop_table("user")

    bind = op.get_bind()
    for enum_name in (
        "installmentstatus",
        "salestatus",
        "expensestatus",
        "paymentmethod",
        "jobcardstatus",
        "roleenum",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
