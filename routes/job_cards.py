"""Job card API: visit records, tasks, job expenses and the completion rollup."""

from __future__ import annotations

from decimal import Decimal

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from finance import (
    FinanceError,
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
    update_job_card,
    update_job_expense,
    update_job_task,
)
from finance.money import money_str
from routes.common import current_actor, handle_finance_error, json_payload, paginated
from schemas import JobCardSchema, JobExpenseSchema, JobTaskSchema

bp = Blueprint("job_cards", __name__, url_prefix="/api/job-cards")
bp.register_error_handler(FinanceError, handle_finance_error)

job_card_schema = JobCardSchema()
job_cards_schema = JobCardSchema(many=True, exclude=("tasks", "expense_lines"))
task_schema = JobTaskSchema()
job_expense_schema = JobExpenseSchema()


@bp.get("")
@jwt_required()
def list_job_card_entries():
    args = request.args
    page = list_job_cards(
        status=args.get("status"),
        client_id=args.get("client_id"),
        search=args.get("search") or args.get("q"),
        page=args.get("page", 1),
        limit=args.get("limit"),
    )
    return jsonify(paginated(page, job_cards_schema))


@bp.post("")
@jwt_required()
def create_job_card_entry():
    job_card = create_job_card(json_payload(), actor=current_actor())
    return jsonify(job_card_schema.dump(job_card)), 201


@bp.get("/<int:job_card_id>")
@jwt_required()
def job_card_detail(job_card_id: int):
    return jsonify(job_card_schema.dump(get_job_card(job_card_id)))


@bp.get("/job-number/<string:job_number>")
@jwt_required()
def job_card_by_number(job_number: str):
    return jsonify(job_card_schema.dump(get_job_card_by_number(job_number)))


@bp.patch("/<int:job_card_id>")
@jwt_required()
def update_job_card_entry(job_card_id: int):
    job_card = update_job_card(job_card_id, json_payload(), actor=current_actor())
    return jsonify(job_card_schema.dump(job_card))


@bp.post("/<int:job_card_id>/tasks")
@jwt_required()
def add_task(job_card_id: int):
    task = add_job_task(job_card_id, json_payload())
    return jsonify(task_schema.dump(task)), 201


@bp.patch("/<int:job_card_id>/tasks/<int:task_id>")
@jwt_required()
def update_task(job_card_id: int, task_id: int):
    task = update_job_task(job_card_id, task_id, json_payload())
    return jsonify(task_schema.dump(task))


@bp.delete("/<int:job_card_id>/tasks/<int:task_id>")
@jwt_required()
def delete_task(job_card_id: int, task_id: int):
    job_card = remove_job_task(job_card_id, task_id)
    return jsonify(job_card_schema.dump(job_card))


@bp.post("/<int:job_card_id>/expenses")
@jwt_required()
def add_expense_line(job_card_id: int):
    line = add_job_expense(job_card_id, json_payload())
    return jsonify(job_expense_schema.dump(line)), 201


@bp.patch("/<int:job_card_id>/expenses/<int:line_id>")
@jwt_required()
def update_expense_line(job_card_id: int, line_id: int):
    line = update_job_expense(job_card_id, line_id, json_payload())
    return jsonify(job_expense_schema.dump(line))


@bp.delete("/<int:job_card_id>/expenses/<int:line_id>")
@jwt_required()
def delete_expense_line(job_card_id: int, line_id: int):
    job_card = remove_job_expense(job_card_id, line_id)
    return jsonify(job_card_schema.dump(job_card))


@bp.get("/<int:job_card_id>/financials")
@jwt_required()
def financials(job_card_id: int):
    summary = job_card_financials(get_job_card(job_card_id))
    return jsonify(
        {key: money_str(value) if isinstance(value, Decimal) else value for key, value in summary.items()}
    )


@bp.post("/<int:job_card_id>/rollup")
@jwt_required()
def rollup(job_card_id: int):
    get_job_card(job_card_id)
    result = evaluate_job_card(job_card_id)
    return jsonify(result.to_dict())
