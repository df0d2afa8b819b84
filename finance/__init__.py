"""Expense, sale and job card lifecycle services."""

from .errors import (
    FinanceError,
    FinancePermissionError,
    FinanceValidationError,
    InvalidStateError,
    InvariantViolation,
    NotFoundError,
)
from .expenses import (
    TransitionResult,
    allowed_actions,
    approve_expense,
    cancel_expense,
    edit_expense,
    get_expense,
    get_expense_by_number,
    list_expense_categories,
    list_expenses,
    mark_expense_paid,
    reject_expense,
    request_approval,
    seed_expense_categories,
    submit_expense,
)
from .job_cards import (
    RollupResult,
    add_job_expense,
    add_job_task,
    create_job_card,
    evaluate_job_card,
    get_job_card,
    get_job_card_by_number,
    job_card_financials,
    list_job_cards,
    remove_job_expense,
    remove_job_task,
    should_auto_complete,
    update_job_card,
    update_job_expense,
    update_job_task,
)
from .sales import (
    add_sale_item,
    cancel_sale,
    clear_payment_extension,
    compute_paid,
    compute_total,
    create_sale,
    get_sale,
    get_sale_by_number,
    list_sales,
    record_installment,
    remove_sale_item,
    request_payment_extension,
    sale_balance,
    settle_installment,
    update_sale,
    update_sale_item,
)
from .validation import Actor

__all__ = [
    "Actor",
    "FinanceError",
    "FinancePermissionError",
    "FinanceValidationError",
    "InvalidStateError",
    "InvariantViolation",
    "NotFoundError",
    "TransitionResult",
    "allowed_actions",
    "approve_expense",
    "cancel_expense",
    "edit_expense",
    "get_expense",
    "get_expense_by_number",
    "list_expense_categories",
    "list_expenses",
    "mark_expense_paid",
    "reject_expense",
    "request_approval",
    "seed_expense_categories",
    "submit_expense",
    "RollupResult",
    "add_job_expense",
    "add_job_task",
    "create_job_card",
    "evaluate_job_card",
    "get_job_card",
    "get_job_card_by_number",
    "job_card_financials",
    "list_job_cards",
    "remove_job_expense",
    "remove_job_task",
    "should_auto_complete",
    "update_job_card",
    "update_job_expense",
    "update_job_task",
    "add_sale_item",
    "cancel_sale",
    "clear_payment_extension",
    "compute_paid",
    "compute_total",
    "create_sale",
    "get_sale",
    "get_sale_by_number",
    "list_sales",
    "record_installment",
    "remove_sale_item",
    "request_payment_extension",
    "sale_balance",
    "settle_installment",
    "update_sale",
    "update_sale_item",
]
