"""Expense approval workflow API."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from finance import (
    FinanceError,
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
    submit_expense,
)
from routes.common import current_actor, handle_finance_error, json_payload, paginated
from schemas import ExpenseCategorySchema, ExpenseSchema

bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")
bp.register_error_handler(FinanceError, handle_finance_error)

expense_schema = ExpenseSchema()
expenses_schema = ExpenseSchema(many=True)
categories_schema = ExpenseCategorySchema(many=True)


def _expense_payload(expense, actor) -> dict:
    data = expense_schema.dump(expense)
    data["allowed_actions"] = allowed_actions(expense, actor)
    return data


def _transition_payload(result, actor) -> dict:
    data = _expense_payload(result.expense, actor)
    data["job_card_rollup"] = result.rollup.to_dict() if result.rollup else None
    return data


@bp.get("")
@jwt_required()
def list_expense_entries():
    args = request.args
    page = list_expenses(
        status=args.get("status"),
        category_id=args.get("category_id"),
        submitted_by_id=args.get("submitted_by_id"),
        job_card_id=args.get("job_card_id"),
        start_date=args.get("start_date"),
        end_date=args.get("end_date"),
        search=args.get("search") or args.get("q"),
        page=args.get("page", 1),
        limit=args.get("limit"),
    )
    return jsonify(paginated(page, expenses_schema))


@bp.get("/categories")
@jwt_required()
def list_categories():
    include_inactive = (request.args.get("include_inactive") or "").lower() in {"1", "true", "yes"}
    categories = list_expense_categories(active_only=not include_inactive)
    return jsonify(categories_schema.dump(categories))


@bp.post("")
@jwt_required()
def create_expense():
    actor = current_actor()
    expense = submit_expense(json_payload(), actor=actor)
    return jsonify(_expense_payload(expense, actor)), 201


@bp.get("/<int:expense_id>")
@jwt_required()
def expense_detail(expense_id: int):
    return jsonify(_expense_payload(get_expense(expense_id), current_actor()))


@bp.get("/expense-number/<string:expense_number>")
@jwt_required()
def expense_by_number(expense_number: str):
    return jsonify(_expense_payload(get_expense_by_number(expense_number), current_actor()))


@bp.patch("/<int:expense_id>")
@jwt_required()
def update_expense(expense_id: int):
    actor = current_actor()
    expense = edit_expense(expense_id, json_payload(), actor=actor)
    return jsonify(_expense_payload(expense, actor))


@bp.post("/<int:expense_id>/submit")
@jwt_required()
def submit_for_approval(expense_id: int):
    actor = current_actor()
    expense = request_approval(expense_id, actor=actor)
    return jsonify(_expense_payload(expense, actor))


@bp.post("/<int:expense_id>/approve")
@jwt_required()
def approve(expense_id: int):
    actor = current_actor()
    expense = approve_expense(expense_id, actor=actor)
    return jsonify(_expense_payload(expense, actor))


@bp.post("/<int:expense_id>/pay")
@jwt_required()
def pay(expense_id: int):
    actor = current_actor()
    result = mark_expense_paid(expense_id, actor=actor)
    return jsonify(_transition_payload(result, actor))


@bp.post("/<int:expense_id>/reject")
@jwt_required()
def reject(expense_id: int):
    actor = current_actor()
    payload = json_payload()
    reason = payload.get("rejection_reason", payload.get("reason"))
    expense = reject_expense(expense_id, reason, actor=actor)
    return jsonify(_expense_payload(expense, actor))


@bp.post("/<int:expense_id>/cancel")
@jwt_required()
def cancel(expense_id: int):
    actor = current_actor()
    result = cancel_expense(expense_id, actor=actor)
    return jsonify(_transition_payload(result, actor))
