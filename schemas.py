from decimal import ROUND_HALF_UP

from marshmallow import Schema, fields

from models import (
    ExpenseStatus,
    InstallmentStatus,
    JobCardStatus,
    PaymentMethod,
    RoleEnum,
    SaleStatus,
)


def Money(**kwargs):
    """Amounts leave the API as strings rounded to two decimal places."""

    return fields.Decimal(as_string=True, places=2, rounding=ROUND_HALF_UP, **kwargs)


class UserSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    email = fields.Str()
    role = fields.Enum(RoleEnum)
    active = fields.Bool()


class ClientSchema(Schema):
    id = fields.Int()
    company_name = fields.Str()
    contact_person = fields.Str(allow_none=True)
    email = fields.Str(allow_none=True)
    phone = fields.Str(allow_none=True)


class ProductSchema(Schema):
    id = fields.Int()
    name = fields.Str()
    sku = fields.Str(allow_none=True)
    unit_price = Money(allow_none=True)


# --- expenses ------------------------------------------------------------

class ExpenseCategorySchema(Schema):
    id = fields.Str()
    name = fields.Str()
    description = fields.Str(allow_none=True)
    is_active = fields.Bool()


class ExpenseSchema(Schema):
    id = fields.Int(dump_only=True)
    expense_number = fields.Str()
    category_id = fields.Str()
    category = fields.Nested(ExpenseCategorySchema, only=("id", "name"), allow_none=True)
    description = fields.Str()
    amount = Money()
    expense_date = fields.Date()
    vendor = fields.Str(allow_none=True)
    reference_number = fields.Str(allow_none=True)
    payment_method = fields.Enum(PaymentMethod, allow_none=True)
    status = fields.Enum(ExpenseStatus)
    has_receipt = fields.Bool()
    receipt_url = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    rejection_reason = fields.Str(allow_none=True)
    submitted_by_id = fields.Int()
    submitted_by = fields.Nested(UserSchema, only=("id", "name"), allow_none=True)
    job_card_id = fields.Int(allow_none=True)
    approved_by_id = fields.Int(allow_none=True)
    approved_at = fields.DateTime(allow_none=True)
    paid_by_id = fields.Int(allow_none=True)
    paid_at = fields.DateTime(allow_none=True)
    rejected_by_id = fields.Int(allow_none=True)
    rejected_at = fields.DateTime(allow_none=True)
    cancelled_by_id = fields.Int(allow_none=True)
    cancelled_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()


# --- sales ---------------------------------------------------------------

class SaleItemSchema(Schema):
    id = fields.Int(dump_only=True)
    sale_id = fields.Int()
    product_id = fields.Int()
    product = fields.Nested(ProductSchema, only=("id", "name", "sku"), allow_none=True)
    quantity = fields.Int()
    unit_price = Money()
    total_price = Money()


class SaleInstallmentSchema(Schema):
    id = fields.Int(dump_only=True)
    sale_id = fields.Int()
    amount = Money()
    paid_at = fields.DateTime()
    status = fields.Enum(InstallmentStatus)
    notes = fields.Str(allow_none=True)
    recorded_by_id = fields.Int(allow_none=True)


class SaleSchema(Schema):
    id = fields.Int(dump_only=True)
    sale_number = fields.Str()
    client_id = fields.Int()
    client = fields.Nested(ClientSchema, only=("id", "company_name"), allow_none=True)
    sale_date = fields.Date()
    status = fields.Enum(SaleStatus)
    total_amount = Money()
    paid_amount = Money()
    remaining_amount = Money(dump_only=True)
    agreed_monthly_installment_amount = Money(allow_none=True)
    requested_payment_date_extension = fields.Bool()
    payment_extension_due_date = fields.Date(allow_none=True)
    notes = fields.Str(allow_none=True)
    created_by_id = fields.Int(allow_none=True)
    cancelled_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()
    items = fields.Nested(SaleItemSchema, many=True)
    installments = fields.Nested(SaleInstallmentSchema, many=True)


# --- job cards -----------------------------------------------------------

class JobTaskSchema(Schema):
    id = fields.Int(dump_only=True)
    job_card_id = fields.Int()
    module_name = fields.Str(allow_none=True)
    task_type = fields.Str(allow_none=True)
    description = fields.Str()
    start_time = fields.DateTime(allow_none=True)
    end_time = fields.DateTime(allow_none=True)


class JobExpenseSchema(Schema):
    id = fields.Int(dump_only=True)
    job_card_id = fields.Int()
    category = fields.Str()
    description = fields.Str(allow_none=True)
    amount = Money()
    has_receipt = fields.Bool()
    receipt_url = fields.Str(allow_none=True)


class JobCardSchema(Schema):
    id = fields.Int(dump_only=True)
    job_number = fields.Str()
    client_id = fields.Int()
    client = fields.Nested(ClientSchema, only=("id", "company_name"), allow_none=True)
    visit_date = fields.Date()
    status = fields.Enum(JobCardStatus)
    location = fields.Str(allow_none=True)
    notes = fields.Str(allow_none=True)
    support_staff_id = fields.Int(allow_none=True)
    support_staff = fields.Nested(UserSchema, only=("id", "name"), allow_none=True)
    created_by_id = fields.Int(allow_none=True)
    total_expenses = Money()
    completed_at = fields.DateTime(allow_none=True)
    cancelled_at = fields.DateTime(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime()
    tasks = fields.Nested(JobTaskSchema, many=True)
    expense_lines = fields.Nested(JobExpenseSchema, many=True)
    linked_expense_ids = fields.Method("get_linked_expense_ids")

    def get_linked_expense_ids(self, obj):
        return [expense.id for expense in obj.linked_expenses]
