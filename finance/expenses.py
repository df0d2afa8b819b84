"""Expense approval workflow.

``DRAFT -> PENDING -> APPROVED -> PAID`` with ``REJECTED`` reachable from
PENDING or APPROVED and ``CANCELLED`` reachable from DRAFT or PENDING.  PAID,
REJECTED and CANCELLED are terminal.  Approve, pay and reject are reserved
for directors; the submitting employee may also submit and cancel.

Each operation re-reads the expense under a row lock, checks the transition
against that read and commits in one unit of work.  Paying or cancelling an
expense attached to a job card then re-evaluates the card separately; a
failure there never undoes the expense change.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import or_

from extensions import db
from models import (
    Expense,
    ExpenseCategory,
    ExpenseStatus,
    JobCard,
    JobCardStatus,
    PaymentMethod,
    utcnow,
)

from .errors import FinancePermissionError, FinanceValidationError, InvalidStateError, NotFoundError
from .job_cards import RollupResult, evaluate_job_card
from .numbering import EXPENSE_PREFIX, commit_numbered, generate_number
from .persistence import commit_guarded, load_for_update, log_event
from .validation import (
    Actor,
    bool_field,
    date_field,
    enum_field,
    id_field,
    money_field,
    page_args,
    raise_if_errors,
    require_director,
    require_owner_or_director,
    require_text,
    strip_or_none,
)

INITIAL_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.PENDING})
EDITABLE_STATUSES = frozenset({ExpenseStatus.DRAFT, ExpenseStatus.PENDING})

# action -> (legal source statuses, target status)
TRANSITIONS: Dict[str, tuple[frozenset, ExpenseStatus]] = {
    "submit": (frozenset({ExpenseStatus.DRAFT}), ExpenseStatus.PENDING),
    "approve": (frozenset({ExpenseStatus.PENDING}), ExpenseStatus.APPROVED),
    "pay": (frozenset({ExpenseStatus.APPROVED}), ExpenseStatus.PAID),
    "reject": (frozenset({ExpenseStatus.PENDING, ExpenseStatus.APPROVED}), ExpenseStatus.REJECTED),
    "cancel": (frozenset({ExpenseStatus.DRAFT, ExpenseStatus.PENDING}), ExpenseStatus.CANCELLED),
}

DIRECTOR_ACTIONS = frozenset({"approve", "pay", "reject"})

_TEXT_FIELDS = ("vendor", "reference_number", "receipt_url", "notes")

DEFAULT_EXPENSE_CATEGORIES = (
    ("transport", "Transport"),
    ("accommodation", "Accommodation"),
    ("meals", "Meals"),
    ("fuel", "Fuel"),
    ("supplies", "Supplies"),
    ("communication", "Communication"),
    ("other", "Other"),
)


@dataclass
class TransitionResult:
    expense: Expense
    rollup: Optional[RollupResult] = None


def _ensure_transition(expense: Expense, action: str) -> ExpenseStatus:
    sources, target = TRANSITIONS[action]
    if expense.status not in sources:
        allowed = ", ".join(sorted(status.value for status in sources))
        raise InvalidStateError(
            f"Cannot {action} expense {expense.expense_number} in {expense.status.value} status "
            f"(requires {allowed})."
        )
    return target


def _require_actor(actor: Actor) -> None:
    if actor.id is None:
        raise FinancePermissionError("An authenticated employee is required.")


def _check_category(category_id: Optional[str], errors: Dict[str, str]) -> None:
    if category_id is None:
        return
    category = db.session.get(ExpenseCategory, category_id)
    if category is None:
        errors["category_id"] = "Expense category not found."
    elif not category.is_active:
        errors["category_id"] = "Expense category is inactive."


def _check_job_card(job_card_id: Optional[int], errors: Dict[str, str]) -> None:
    if job_card_id is None:
        return
    job_card = db.session.get(JobCard, job_card_id)
    if job_card is None:
        errors["job_card_id"] = "Job card not found."
    elif job_card.status == JobCardStatus.CANCELLED:
        errors["job_card_id"] = "Expenses cannot be linked to a cancelled job card."
    elif job_card.status == JobCardStatus.COMPLETED:
        errors["job_card_id"] = "Expenses cannot be linked to a completed job card."


def _log_transition(expense: Expense, previous: ExpenseStatus, actor: Actor) -> None:
    log_event(
        "expense_status_changed",
        expense_id=expense.id,
        expense_number=expense.expense_number,
        from_status=previous.value,
        to_status=expense.status.value,
        actor_id=actor.id,
        actor_role=actor.role.value if actor.role else None,
    )


def _notify_job_card(expense: Expense) -> Optional[RollupResult]:
    if expense.job_card_id is None:
        return None
    return evaluate_job_card(expense.job_card_id, trigger_expense_id=expense.id)


def submit_expense(payload: Dict[str, Any], *, actor: Actor) -> Expense:
    """Record a new expense in DRAFT (default) or PENDING for ``actor``."""

    _require_actor(actor)

    errors: Dict[str, str] = {}
    category_id = require_text(payload.get("category_id"), "category_id", errors, label="Category")
    description = require_text(payload.get("description"), "description", errors, label="Description")
    amount = money_field(payload.get("amount"), "amount", errors)
    expense_date = date_field(payload.get("expense_date"), "expense_date", errors, default=date.today())
    payment_method = enum_field(PaymentMethod, payload.get("payment_method"), "payment_method", errors)
    status = enum_field(ExpenseStatus, payload.get("status"), "status", errors, default=ExpenseStatus.DRAFT)
    if status is not None and status not in INITIAL_STATUSES:
        errors["status"] = "New expenses must start as DRAFT or PENDING."
    job_card_id = id_field(payload.get("job_card_id"), "job_card_id", errors, required=False)

    _check_category(category_id, errors)
    _check_job_card(job_card_id, errors)
    raise_if_errors(errors)

    expense = Expense(
        expense_number=generate_number(EXPENSE_PREFIX),
        category_id=category_id,
        description=description,
        amount=amount,
        expense_date=expense_date,
        payment_method=payment_method,
        status=status,
        has_receipt=bool_field(payload.get("has_receipt")),
        submitted_by_id=actor.id,
        job_card_id=job_card_id,
    )
    for field in _TEXT_FIELDS:
        setattr(expense, field, strip_or_none(payload.get(field)))

    db.session.add(expense)
    commit_numbered(expense, "expense_number", EXPENSE_PREFIX)
    log_event(
        "expense_submitted",
        expense_id=expense.id,
        expense_number=expense.expense_number,
        status=expense.status.value,
        amount=str(expense.amount),
        actor_id=actor.id,
    )
    return expense


def edit_expense(expense_id: Any, patch: Dict[str, Any], *, actor: Actor) -> Expense:
    """Change the details of a DRAFT or PENDING expense.

    Status never changes here; it moves only through the transition
    operations below.
    """

    expense = load_for_update(Expense, expense_id, "Expense")
    require_owner_or_director(actor, expense.submitted_by_id, "edit this expense")
    if expense.status not in EDITABLE_STATUSES:
        raise InvalidStateError(
            f"Expense {expense.expense_number} is {expense.status.value} and can no longer be edited."
        )

    errors: Dict[str, str] = {}
    if "status" in patch:
        errors["status"] = "Status changes go through submit, approve, pay, reject or cancel."
    if "rejection_reason" in patch:
        errors["rejection_reason"] = "A rejection reason can only be set by rejecting the expense."

    if "category_id" in patch:
        category_id = require_text(patch.get("category_id"), "category_id", errors, label="Category")
        _check_category(category_id, errors)
        if "category_id" not in errors:
            expense.category_id = category_id
    if "description" in patch:
        description = require_text(patch.get("description"), "description", errors, label="Description")
        if description is not None:
            expense.description = description
    if "amount" in patch:
        amount = money_field(patch.get("amount"), "amount", errors)
        if amount is not None:
            expense.amount = amount
    if "expense_date" in patch:
        expense_date = date_field(patch.get("expense_date"), "expense_date", errors)
        if expense_date is not None:
            expense.expense_date = expense_date
    if "payment_method" in patch:
        expense.payment_method = enum_field(
            PaymentMethod, patch.get("payment_method"), "payment_method", errors
        )
    if "has_receipt" in patch:
        expense.has_receipt = bool_field(patch.get("has_receipt"))
    if "job_card_id" in patch:
        job_card_id = id_field(patch.get("job_card_id"), "job_card_id", errors, required=False)
        if job_card_id != expense.job_card_id:
            _check_job_card(job_card_id, errors)
        if "job_card_id" not in errors:
            expense.job_card_id = job_card_id
    for field in _TEXT_FIELDS:
        if field in patch:
            setattr(expense, field, strip_or_none(patch.get(field)))

    if errors:
        db.session.rollback()
        raise FinanceValidationError(errors)

    commit_guarded("Expense", expense_id=expense.id)
    log_event("expense_edited", expense_id=expense.id, fields=sorted(patch.keys()), actor_id=actor.id)
    return expense


def request_approval(expense_id: Any, *, actor: Actor) -> Expense:
    """Move a DRAFT expense to PENDING so a director can review it."""

    expense = load_for_update(Expense, expense_id, "Expense")
    require_owner_or_director(actor, expense.submitted_by_id, "submit this expense")
    target = _ensure_transition(expense, "submit")

    previous = expense.status
    expense.status = target
    commit_guarded("Expense", expense_id=expense.id)
    _log_transition(expense, previous, actor)
    return expense


def approve_expense(expense_id: Any, *, actor: Actor) -> Expense:
    expense = load_for_update(Expense, expense_id, "Expense")
    require_director(actor, "approve expenses")
    target = _ensure_transition(expense, "approve")

    previous = expense.status
    expense.status = target
    expense.approved_by_id = actor.id
    expense.approved_at = utcnow()
    commit_guarded("Expense", expense_id=expense.id)
    _log_transition(expense, previous, actor)
    return expense


def mark_expense_paid(expense_id: Any, *, actor: Actor) -> TransitionResult:
    expense = load_for_update(Expense, expense_id, "Expense")
    require_director(actor, "mark expenses as paid")
    target = _ensure_transition(expense, "pay")

    previous = expense.status
    expense.status = target
    expense.paid_by_id = actor.id
    expense.paid_at = utcnow()
    commit_guarded("Expense", expense_id=expense.id)
    _log_transition(expense, previous, actor)
    return TransitionResult(expense=expense, rollup=_notify_job_card(expense))


def reject_expense(expense_id: Any, reason: Any, *, actor: Actor) -> Expense:
    expense = load_for_update(Expense, expense_id, "Expense")
    require_director(actor, "reject expenses")

    errors: Dict[str, str] = {}
    rejection_reason = require_text(reason, "rejection_reason", errors, label="A rejection reason")
    raise_if_errors(errors)
    target = _ensure_transition(expense, "reject")

    previous = expense.status
    expense.status = target
    expense.rejection_reason = rejection_reason
    expense.rejected_by_id = actor.id
    expense.rejected_at = utcnow()
    commit_guarded("Expense", expense_id=expense.id)
    _log_transition(expense, previous, actor)
    return expense


def cancel_expense(expense_id: Any, *, actor: Actor) -> TransitionResult:
    expense = load_for_update(Expense, expense_id, "Expense")
    require_owner_or_director(actor, expense.submitted_by_id, "cancel this expense")
    target = _ensure_transition(expense, "cancel")

    previous = expense.status
    expense.status = target
    expense.cancelled_by_id = actor.id
    expense.cancelled_at = utcnow()
    commit_guarded("Expense", expense_id=expense.id)
    _log_transition(expense, previous, actor)
    return TransitionResult(expense=expense, rollup=_notify_job_card(expense))


def allowed_actions(expense: Expense, actor: Actor) -> list[str]:
    """Return the operations ``actor`` may currently perform on ``expense``."""

    is_owner = actor.id is not None and actor.id == expense.submitted_by_id
    can_manage = is_owner or actor.is_director
    actions: list[str] = []
    if can_manage and expense.status in EDITABLE_STATUSES:
        actions.append("edit")
    for action, (sources, _target) in TRANSITIONS.items():
        if expense.status not in sources:
            continue
        if action in DIRECTOR_ACTIONS and not actor.is_director:
            continue
        if action not in DIRECTOR_ACTIONS and not can_manage:
            continue
        actions.append(action)
    return actions


def get_expense(expense_id: Any) -> Expense:
    try:
        key = int(expense_id)
    except (TypeError, ValueError):
        raise NotFoundError("Expense not found")
    expense = db.session.get(Expense, key)
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


def get_expense_by_number(expense_number: str) -> Expense:
    expense = Expense.query.filter_by(expense_number=(expense_number or "").strip().upper()).first()
    if expense is None:
        raise NotFoundError("Expense not found")
    return expense


def list_expense_categories(*, active_only: bool = True) -> list[ExpenseCategory]:
    query = ExpenseCategory.query
    if active_only:
        query = query.filter(ExpenseCategory.is_active.is_(True))
    return list(query.order_by(ExpenseCategory.name))


def seed_expense_categories() -> int:
    """Ensure the default expense categories exist.  Returns how many were added."""

    added = 0
    for category_id, name in DEFAULT_EXPENSE_CATEGORIES:
        if db.session.get(ExpenseCategory, category_id) is None:
            db.session.add(ExpenseCategory(id=category_id, name=name, is_active=True))
            added += 1

    db.session.commit()
    return added


def list_expenses(
    *,
    status: Any = None,
    category_id: Optional[str] = None,
    submitted_by_id: Any = None,
    job_card_id: Any = None,
    start_date: Any = None,
    end_date: Any = None,
    search: Optional[str] = None,
    page: Any = 1,
    limit: Any = None,
):
    errors: Dict[str, str] = {}
    status_value = enum_field(ExpenseStatus, status, "status", errors)
    submitter = id_field(submitted_by_id, "submitted_by_id", errors, required=False)
    job_card = id_field(job_card_id, "job_card_id", errors, required=False)
    start = date_field(start_date, "start_date", errors, required=False)
    end = date_field(end_date, "end_date", errors, required=False)
    if start and end and end < start:
        errors["end_date"] = "End date cannot be before start date."
    raise_if_errors(errors)

    query = Expense.query
    if status_value is not None:
        query = query.filter(Expense.status == status_value)
    category = strip_or_none(category_id)
    if category:
        query = query.filter(Expense.category_id == category)
    if submitter is not None:
        query = query.filter(Expense.submitted_by_id == submitter)
    if job_card is not None:
        query = query.filter(Expense.job_card_id == job_card)
    if start:
        query = query.filter(Expense.expense_date >= start)
    if end:
        query = query.filter(Expense.expense_date <= end)
    term = strip_or_none(search)
    if term:
        like = f"%{term}%"
        query = query.filter(
            or_(
                Expense.expense_number.ilike(like),
                Expense.description.ilike(like),
                Expense.vendor.ilike(like),
                Expense.reference_number.ilike(like),
            )
        )

    page_value, limit_value = page_args(
        page,
        limit,
        default_limit=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_limit=current_app.config.get("MAX_PAGE_SIZE", 100),
    )
    query = query.order_by(Expense.expense_date.desc(), Expense.id.desc())
    return query.paginate(page=page_value, per_page=limit_value, error_out=False)


__all__ = [
    "TRANSITIONS",
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
]
