from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import CheckConstraint
from werkzeug.security import check_password_hash, generate_password_hash

from extensions import db


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def _as_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class RoleEnum(str, Enum):
    DIRECTOR = "DIRECTOR"
    STAFF = "STAFF"


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(
        db.Enum(RoleEnum, values_callable=_enum_values, name="roleenum"),
        nullable=False,
        default=RoleEnum.STAFF,
    )
    active = db.Column(db.Boolean, default=True)

    def set_password(self, pw): self.password_hash = generate_password_hash(pw)
    def check_password(self, pw): return check_password_hash(self.password_hash, pw)


class Client(db.Model):
    __tablename__ = "clients"

    id = db.Column(db.Integer, primary_key=True)
    company_name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255))
    email = db.Column(db.String(255))
    phone = db.Column(db.String(50))
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime, default=utcnow)


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), unique=True)
    unit_price = db.Column(db.Numeric(14, 2))
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)


class ExpenseStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    PAID = "PAID"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_EXPENSE_STATUSES = frozenset(
    {ExpenseStatus.PAID, ExpenseStatus.REJECTED, ExpenseStatus.CANCELLED}
)


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    MPESA = "MPESA"
    CHEQUE = "CHEQUE"
    CREDIT_CARD = "CREDIT_CARD"
    DEBIT_CARD = "DEBIT_CARD"
    OTHER = "OTHER"


class ExpenseCategory(db.Model):
    __tablename__ = "expense_categories"

    id = db.Column(db.String(64), primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class Expense(db.Model):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    expense_number = db.Column(db.String(40), nullable=False, unique=True)
    category_id = db.Column(
        db.String(64), db.ForeignKey("expense_categories.id"), nullable=False, index=True
    )
    description = db.Column(db.Text, nullable=False)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    expense_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    vendor = db.Column(db.String(255))
    reference_number = db.Column(db.String(120))
    payment_method = db.Column(
        db.Enum(PaymentMethod, values_callable=_enum_values, name="paymentmethod"),
        nullable=True,
    )
    status = db.Column(
        db.Enum(ExpenseStatus, values_callable=_enum_values, name="expensestatus"),
        nullable=False,
        default=ExpenseStatus.DRAFT,
        index=True,
    )
    has_receipt = db.Column(db.Boolean, nullable=False, default=False)
    receipt_url = db.Column(db.String(500))
    notes = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)

    submitted_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    job_card_id = db.Column(
        db.Integer, db.ForeignKey("job_cards.id"), nullable=True, index=True
    )

    approved_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    approved_at = db.Column(db.DateTime)
    paid_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    paid_at = db.Column(db.DateTime)
    rejected_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    rejected_at = db.Column(db.DateTime)
    cancelled_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    category = db.relationship("ExpenseCategory")
    submitted_by = db.relationship("User", foreign_keys=[submitted_by_id])
    job_card = db.relationship("JobCard", back_populates="linked_expenses")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_EXPENSE_STATUSES


class SaleStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class InstallmentStatus(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"


class Sale(db.Model):
    __tablename__ = "sales"
    __table_args__ = (
        CheckConstraint("paid_amount >= 0", name="ck_sales_paid_non_negative"),
        CheckConstraint("paid_amount <= total_amount", name="ck_sales_paid_within_total"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(40), nullable=False, unique=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    sale_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(
        db.Enum(SaleStatus, values_callable=_enum_values, name="salestatus"),
        nullable=False,
        default=SaleStatus.PENDING,
        index=True,
    )
    total_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    agreed_monthly_installment_amount = db.Column(db.Numeric(14, 2))
    requested_payment_date_extension = db.Column(db.Boolean, nullable=False, default=False)
    payment_extension_due_date = db.Column(db.Date)
    notes = db.Column(db.Text)
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    client = db.relationship("Client")
    items = db.relationship(
        "SaleItem",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItem.id",
    )
    installments = db.relationship(
        "SaleInstallment",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleInstallment.paid_at",
    )

    def recalculate_totals(self) -> None:
        total = Decimal("0")
        for item in self.items:
            total += _as_decimal(item.total_price)
        paid = Decimal("0")
        for installment in self.installments:
            if installment.status == InstallmentStatus.PAID:
                paid += _as_decimal(installment.amount)
        self.total_amount = total
        self.paid_amount = paid

    @property
    def remaining_amount(self) -> Decimal:
        return _as_decimal(self.total_amount) - _as_decimal(self.paid_amount)


class SaleItem(db.Model):
    __tablename__ = "sale_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_sale_items_unit_price_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(
        db.Integer,
        db.ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    total_price = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    sale = db.relationship("Sale", back_populates="items")
    product = db.relationship("Product")

    def recalculate_total(self) -> None:
        self.total_price = _as_decimal(self.unit_price) * int(self.quantity or 0)


class SaleInstallment(db.Model):
    __tablename__ = "sale_installments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_sale_installments_amount_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(
        db.Integer,
        db.ForeignKey("sales.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    status = db.Column(
        db.Enum(InstallmentStatus, values_callable=_enum_values, name="installmentstatus"),
        nullable=False,
        default=InstallmentStatus.PAID,
    )
    notes = db.Column(db.Text)
    recorded_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_at = db.Column(db.DateTime, default=utcnow)

    sale = db.relationship("Sale", back_populates="installments")


class JobCardStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_CLIENT_CONFIRMATION = "PENDING_CLIENT_CONFIRMATION"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class JobCard(db.Model):
    __tablename__ = "job_cards"

    id = db.Column(db.Integer, primary_key=True)
    job_number = db.Column(db.String(40), nullable=False, unique=True)
    client_id = db.Column(db.Integer, db.ForeignKey("clients.id"), nullable=False, index=True)
    visit_date = db.Column(db.Date, nullable=False, default=date.today)
    status = db.Column(
        db.Enum(JobCardStatus, values_callable=_enum_values, name="jobcardstatus"),
        nullable=False,
        default=JobCardStatus.DRAFT,
        index=True,
    )
    location = db.Column(db.String(255))
    notes = db.Column(db.Text)
    support_staff_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"))
    total_expenses = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal("0.00"))
    completed_at = db.Column(db.DateTime)
    cancelled_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    client = db.relationship("Client")
    support_staff = db.relationship("User", foreign_keys=[support_staff_id])
    tasks = db.relationship(
        "JobTask",
        back_populates="job_card",
        cascade="all, delete-orphan",
        order_by="JobTask.id",
    )
    expense_lines = db.relationship(
        "JobExpense",
        back_populates="job_card",
        cascade="all, delete-orphan",
        order_by="JobExpense.id",
    )
    linked_expenses = db.relationship(
        "Expense",
        back_populates="job_card",
        order_by="Expense.id",
    )

    def recalculate_totals(self) -> None:
        total = Decimal("0")
        for line in self.expense_lines:
            total += _as_decimal(line.amount)
        self.total_expenses = total


class JobTask(db.Model):
    __tablename__ = "job_tasks"

    id = db.Column(db.Integer, primary_key=True)
    job_card_id = db.Column(
        db.Integer,
        db.ForeignKey("job_cards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    module_name = db.Column(db.String(120))
    task_type = db.Column(db.String(120))
    description = db.Column(db.Text, nullable=False)
    start_time = db.Column(db.DateTime)
    end_time = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    job_card = db.relationship("JobCard", back_populates="tasks")


class JobExpense(db.Model):
    __tablename__ = "job_expenses"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_job_expenses_amount_positive"),
    )

    id = db.Column(db.Integer, primary_key=True)
    job_card_id = db.Column(
        db.Integer,
        db.ForeignKey("job_cards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text)
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    has_receipt = db.Column(db.Boolean, nullable=False, default=False)
    receipt_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    job_card = db.relationship("JobCard", back_populates="expense_lines")
