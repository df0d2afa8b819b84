"""Job card records and the expense-driven completion rollup.

A job card completes itself once every top-level expense linked to it has
been paid or cancelled.  :func:`should_auto_complete` holds the rule and
:func:`evaluate_job_card` applies it after an expense transition.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, Optional

from flask import current_app
from sqlalchemy import or_

from extensions import db
from models import (
    Client,
    Expense,
    ExpenseStatus,
    JobCard,
    JobCardStatus,
    JobExpense,
    JobTask,
    User,
    utcnow,
)

from .errors import FinanceValidationError, InvalidStateError, NotFoundError
from .money import ZERO, sum_amounts
from .numbering import JOB_CARD_PREFIX, commit_numbered, generate_number
from .persistence import commit_guarded, load_for_update, log_event
from .validation import (
    Actor,
    bool_field,
    date_field,
    datetime_field,
    enum_field,
    id_field,
    money_field,
    page_args,
    raise_if_errors,
    require_text,
    strip_or_none,
)

RESOLVED_EXPENSE_STATUSES = frozenset({ExpenseStatus.PAID.value, ExpenseStatus.CANCELLED.value})
CLOSED_JOB_CARD_STATUSES = frozenset({JobCardStatus.COMPLETED.value, JobCardStatus.CANCELLED.value})


@dataclass
class RollupResult:
    job_card_id: Any
    completed: bool = False
    status: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "job_card_id": self.job_card_id,
            "completed": self.completed,
            "status": self.status,
            "error": self.error,
        }


def _status_code(record: Any) -> Optional[str]:
    status = getattr(record, "status", record)
    if status is None:
        return None
    if isinstance(status, Enum):
        return str(status.value)
    return str(status).strip().upper()


def should_auto_complete(job_card: Any, expenses: Iterable[Any]) -> bool:
    """Return ``True`` when ``job_card`` should move to COMPLETED.

    ``expenses`` are all expenses referencing the card.  The card completes
    when at least one exists, every one of them is PAID or CANCELLED, and the
    card itself is not already COMPLETED or CANCELLED.
    """

    if _status_code(job_card) in CLOSED_JOB_CARD_STATUSES:
        return False
    statuses = [_status_code(expense) for expense in expenses]
    if not statuses:
        return False
    return all(status in RESOLVED_EXPENSE_STATUSES for status in statuses)


def _linked_expenses(job_card_id: int) -> list[Expense]:
    return (
        Expense.query.filter_by(job_card_id=job_card_id)
        .populate_existing()
        .order_by(Expense.id)
        .all()
    )


def evaluate_job_card(job_card_id: Any, *, trigger_expense_id: Optional[int] = None) -> RollupResult:
    """Re-check a job card after one of its expenses was paid or cancelled.

    Runs in its own unit of work after the expense transition committed.  Any
    failure is rolled back, logged and returned in ``RollupResult.error``; it
    is never raised to the caller.
    """

    try:
        job_card = load_for_update(JobCard, job_card_id, "Job card")
        expenses = _linked_expenses(job_card.id)
        if not should_auto_complete(job_card, expenses):
            status = job_card.status.value
            db.session.commit()
            return RollupResult(job_card.id, completed=False, status=status)

        job_card.status = JobCardStatus.COMPLETED
        job_card.completed_at = utcnow()
        commit_guarded("Job card", job_card_id=job_card.id)
        log_event(
            "job_card_auto_completed",
            job_card_id=job_card.id,
            job_number=job_card.job_number,
            trigger_expense_id=trigger_expense_id,
            expense_count=len(expenses),
        )
        return RollupResult(job_card.id, completed=True, status=JobCardStatus.COMPLETED.value)
    except Exception as exc:
        db.session.rollback()
        current_app.logger.exception(
            {
                "event": "job_card_rollup_failed",
                "job_card_id": job_card_id,
                "trigger_expense_id": trigger_expense_id,
            }
        )
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        return RollupResult(job_card_id, completed=False, error=message)


# --- job card records -----------------------------------------------------


def _ensure_open(job_card: JobCard) -> None:
    if job_card.status.value in CLOSED_JOB_CARD_STATUSES:
        raise InvalidStateError(
            f"Job card {job_card.job_number} is {job_card.status.value.lower()} and can no longer be changed."
        )


def _parse_task(payload: Dict[str, Any], prefix: str, errors: Dict[str, str], *, partial: bool = False) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if not partial or "description" in payload:
        values["description"] = require_text(
            payload.get("description"), f"{prefix}description", errors, label="Task description"
        )
    for field in ("module_name", "task_type"):
        if not partial or field in payload:
            values[field] = strip_or_none(payload.get(field))
    for field in ("start_time", "end_time"):
        if not partial or field in payload:
            values[field] = datetime_field(payload.get(field), f"{prefix}{field}", errors)
    return values


def _check_task_window(task: JobTask, prefix: str = "") -> None:
    if task.start_time and task.end_time and task.end_time < task.start_time:
        raise FinanceValidationError({f"{prefix}end_time": "End time cannot be before start time."})


def _parse_job_expense(
    payload: Dict[str, Any], prefix: str, errors: Dict[str, str], *, partial: bool = False
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if not partial or "category" in payload:
        values["category"] = require_text(payload.get("category"), f"{prefix}category", errors, label="Category")
    if not partial or "amount" in payload:
        values["amount"] = money_field(payload.get("amount"), f"{prefix}amount", errors)
    for field in ("description", "receipt_url"):
        if not partial or field in payload:
            values[field] = strip_or_none(payload.get(field))
    if not partial or "has_receipt" in payload:
        values["has_receipt"] = bool_field(payload.get("has_receipt"))
    return values


def _check_client(client_id: Optional[int], errors: Dict[str, str]) -> None:
    if client_id is not None and db.session.get(Client, client_id) is None:
        errors["client_id"] = "Client not found."


def _check_support_staff(user_id: Optional[int], errors: Dict[str, str]) -> None:
    if user_id is not None and db.session.get(User, user_id) is None:
        errors["support_staff_id"] = "Support staff member not found."


def create_job_card(payload: Dict[str, Any], *, actor: Actor) -> JobCard:
    errors: Dict[str, str] = {}
    client_id = id_field(payload.get("client_id"), "client_id", errors)
    visit_date = date_field(payload.get("visit_date"), "visit_date", errors, default=date.today())
    status = enum_field(JobCardStatus, payload.get("status"), "status", errors, default=JobCardStatus.DRAFT)
    if status is not None and status.value in CLOSED_JOB_CARD_STATUSES:
        errors["status"] = "A job card cannot be created as completed or cancelled."
    support_staff_id = id_field(payload.get("support_staff_id"), "support_staff_id", errors, required=False)

    tasks_payload = payload.get("tasks") or []
    expenses_payload = payload.get("expenses") or []
    if not isinstance(tasks_payload, list):
        errors["tasks"] = "Tasks must be a list."
        tasks_payload = []
    if not isinstance(expenses_payload, list):
        errors["expenses"] = "Expenses must be a list."
        expenses_payload = []

    tasks = [
        _parse_task(entry if isinstance(entry, dict) else {}, f"tasks[{index}].", errors)
        for index, entry in enumerate(tasks_payload)
    ]
    lines = [
        _parse_job_expense(entry if isinstance(entry, dict) else {}, f"expenses[{index}].", errors)
        for index, entry in enumerate(expenses_payload)
    ]

    _check_client(client_id, errors)
    _check_support_staff(support_staff_id, errors)
    raise_if_errors(errors)

    job_card = JobCard(
        job_number=generate_number(JOB_CARD_PREFIX),
        client_id=client_id,
        visit_date=visit_date,
        status=status,
        location=strip_or_none(payload.get("location")),
        notes=strip_or_none(payload.get("notes")),
        support_staff_id=support_staff_id,
        created_by_id=actor.id,
    )
    for index, values in enumerate(tasks):
        task = JobTask(**values)
        _check_task_window(task, f"tasks[{index}].")
        job_card.tasks.append(task)
    for values in lines:
        job_card.expense_lines.append(JobExpense(**values))
    job_card.recalculate_totals()

    db.session.add(job_card)
    commit_numbered(job_card, "job_number", JOB_CARD_PREFIX)
    log_event("job_card_created", job_card_id=job_card.id, job_number=job_card.job_number, actor_id=actor.id)
    return job_card


def update_job_card(job_card_id: Any, patch: Dict[str, Any], *, actor: Actor) -> JobCard:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    _ensure_open(job_card)

    errors: Dict[str, str] = {}
    if "client_id" in patch:
        client_id = id_field(patch.get("client_id"), "client_id", errors)
        _check_client(client_id, errors)
        if client_id is not None and "client_id" not in errors:
            job_card.client_id = client_id
    if "visit_date" in patch:
        visit_date = date_field(patch.get("visit_date"), "visit_date", errors)
        if visit_date is not None:
            job_card.visit_date = visit_date
    if "support_staff_id" in patch:
        support_staff_id = id_field(patch.get("support_staff_id"), "support_staff_id", errors, required=False)
        _check_support_staff(support_staff_id, errors)
        if "support_staff_id" not in errors:
            job_card.support_staff_id = support_staff_id
    for field in ("location", "notes"):
        if field in patch:
            setattr(job_card, field, strip_or_none(patch.get(field)))

    new_status = None
    if "status" in patch:
        new_status = enum_field(JobCardStatus, patch.get("status"), "status", errors, required=True)
    if errors:
        db.session.rollback()
        raise FinanceValidationError(errors)

    previous = job_card.status
    if new_status is not None and new_status != previous:
        job_card.status = new_status
        if new_status == JobCardStatus.COMPLETED:
            job_card.completed_at = utcnow()
        elif new_status == JobCardStatus.CANCELLED:
            job_card.cancelled_at = utcnow()

    commit_guarded("Job card", job_card_id=job_card.id)
    if new_status is not None and new_status != previous:
        log_event(
            "job_card_status_changed",
            job_card_id=job_card.id,
            from_status=previous.value,
            to_status=new_status.value,
            actor_id=actor.id,
        )
    return job_card


def _child(model, child_id: Any, job_card: JobCard, label: str):
    try:
        key = int(child_id)
    except (TypeError, ValueError):
        raise NotFoundError(f"{label} not found")
    record = db.session.get(model, key)
    if record is None or record.job_card_id != job_card.id:
        raise NotFoundError(f"{label} not found")
    return record


def add_job_task(job_card_id: Any, payload: Dict[str, Any]) -> JobTask:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    _ensure_open(job_card)
    errors: Dict[str, str] = {}
    values = _parse_task(payload, "", errors)
    raise_if_errors(errors)
    task = JobTask(**values)
    _check_task_window(task)
    job_card.tasks.append(task)
    commit_guarded("Job card", job_card_id=job_card.id)
    return task


def update_job_task(job_card_id: Any, task_id: Any, payload: Dict[str, Any]) -> JobTask:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    task = _child(JobTask, task_id, job_card, "Task")
    _ensure_open(job_card)
    errors: Dict[str, str] = {}
    values = _parse_task(payload, "", errors, partial=True)
    raise_if_errors(errors)
    for field, value in values.items():
        setattr(task, field, value)
    try:
        _check_task_window(task)
    except FinanceValidationError:
        db.session.rollback()
        raise
    commit_guarded("Job card", job_card_id=job_card.id)
    return task


def remove_job_task(job_card_id: Any, task_id: Any) -> JobCard:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    task = _child(JobTask, task_id, job_card, "Task")
    _ensure_open(job_card)
    job_card.tasks.remove(task)
    commit_guarded("Job card", job_card_id=job_card.id)
    return job_card


def add_job_expense(job_card_id: Any, payload: Dict[str, Any]) -> JobExpense:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    _ensure_open(job_card)
    errors: Dict[str, str] = {}
    values = _parse_job_expense(payload, "", errors)
    raise_if_errors(errors)
    line = JobExpense(**values)
    job_card.expense_lines.append(line)
    job_card.recalculate_totals()
    commit_guarded("Job card", job_card_id=job_card.id)
    return line


def update_job_expense(job_card_id: Any, line_id: Any, payload: Dict[str, Any]) -> JobExpense:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    line = _child(JobExpense, line_id, job_card, "Job expense")
    _ensure_open(job_card)
    errors: Dict[str, str] = {}
    values = _parse_job_expense(payload, "", errors, partial=True)
    raise_if_errors(errors)
    for field, value in values.items():
        setattr(line, field, value)
    job_card.recalculate_totals()
    commit_guarded("Job card", job_card_id=job_card.id)
    return line


def remove_job_expense(job_card_id: Any, line_id: Any) -> JobCard:
    job_card = load_for_update(JobCard, job_card_id, "Job card")
    line = _child(JobExpense, line_id, job_card, "Job expense")
    _ensure_open(job_card)
    job_card.expense_lines.remove(line)
    job_card.recalculate_totals()
    commit_guarded("Job card", job_card_id=job_card.id)
    return job_card


def get_job_card(job_card_id: Any) -> JobCard:
    try:
        key = int(job_card_id)
    except (TypeError, ValueError):
        raise NotFoundError("Job card not found")
    job_card = db.session.get(JobCard, key)
    if job_card is None:
        raise NotFoundError("Job card not found")
    return job_card


def get_job_card_by_number(job_number: str) -> JobCard:
    job_card = JobCard.query.filter_by(job_number=(job_number or "").strip().upper()).first()
    if job_card is None:
        raise NotFoundError("Job card not found")
    return job_card


def list_job_cards(
    *,
    status: Any = None,
    client_id: Any = None,
    search: Optional[str] = None,
    page: Any = 1,
    limit: Any = None,
):
    errors: Dict[str, str] = {}
    status_value = enum_field(JobCardStatus, status, "status", errors)
    client_value = id_field(client_id, "client_id", errors, required=False)
    raise_if_errors(errors)

    query = JobCard.query
    if status_value is not None:
        query = query.filter(JobCard.status == status_value)
    if client_value is not None:
        query = query.filter(JobCard.client_id == client_value)
    term = strip_or_none(search)
    if term:
        like = f"%{term}%"
        query = query.filter(or_(JobCard.job_number.ilike(like), JobCard.location.ilike(like)))

    page_value, limit_value = page_args(
        page,
        limit,
        default_limit=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_limit=current_app.config.get("MAX_PAGE_SIZE", 100),
    )
    query = query.order_by(JobCard.visit_date.desc(), JobCard.id.desc())
    return query.paginate(page=page_value, per_page=limit_value, error_out=False)


def job_card_financials(job_card: JobCard) -> dict[str, object]:
    """Summarise a card's own expense lines and its linked top-level expenses."""

    linked = list(job_card.linked_expenses)
    counts: Dict[str, int] = {status.value: 0 for status in ExpenseStatus}
    for expense in linked:
        counts[expense.status.value] += 1

    paid_total = sum_amounts(e.amount for e in linked if e.status == ExpenseStatus.PAID)
    outstanding_total = sum_amounts(
        e.amount
        for e in linked
        if e.status in {ExpenseStatus.DRAFT, ExpenseStatus.PENDING, ExpenseStatus.APPROVED}
    )
    unresolved = [e for e in linked if _status_code(e) not in RESOLVED_EXPENSE_STATUSES]
    return {
        "job_card_id": job_card.id,
        "job_number": job_card.job_number,
        "status": job_card.status.value,
        "job_expense_total": job_card.total_expenses if job_card.total_expenses is not None else ZERO,
        "linked_expense_count": len(linked),
        "linked_status_counts": counts,
        "linked_paid_total": paid_total,
        "linked_outstanding_total": outstanding_total,
        "unresolved_expense_count": len(unresolved),
        "all_linked_resolved": bool(linked) and not unresolved,
        "would_auto_complete": should_auto_complete(job_card, linked),
    }


__all__ = [
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
]
