"""Sale ledger API: items, installments and payment extensions."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from finance import (
    FinanceError,
    add_sale_item,
    cancel_sale,
    clear_payment_extension,
    create_sale,
    get_sale,
    get_sale_by_number,
    list_sales,
    record_installment,
    remove_sale_item,
    request_payment_extension,
    settle_installment,
    update_sale,
    update_sale_item,
)
from routes.common import current_actor, handle_finance_error, json_payload, paginated
from schemas import SaleInstallmentSchema, SaleSchema

bp = Blueprint("sales", __name__, url_prefix="/api/sales")
bp.register_error_handler(FinanceError, handle_finance_error)

sale_schema = SaleSchema()
sales_schema = SaleSchema(many=True, exclude=("items", "installments"))
installment_schema = SaleInstallmentSchema()


@bp.get("")
@jwt_required()
def list_sale_entries():
    args = request.args
    page = list_sales(
        status=args.get("status"),
        client_id=args.get("client_id"),
        search=args.get("search") or args.get("q"),
        page=args.get("page", 1),
        limit=args.get("limit"),
    )
    return jsonify(paginated(page, sales_schema))


@bp.post("")
@jwt_required()
def create_sale_entry():
    sale = create_sale(json_payload(), actor=current_actor())
    return jsonify(sale_schema.dump(sale)), 201


@bp.get("/<int:sale_id>")
@jwt_required()
def sale_detail(sale_id: int):
    return jsonify(sale_schema.dump(get_sale(sale_id)))


@bp.get("/sale-number/<string:sale_number>")
@jwt_required()
def sale_by_number(sale_number: str):
    return jsonify(sale_schema.dump(get_sale_by_number(sale_number)))


@bp.patch("/<int:sale_id>")
@jwt_required()
def update_sale_entry(sale_id: int):
    sale = update_sale(sale_id, json_payload(), actor=current_actor())
    return jsonify(sale_schema.dump(sale))


@bp.post("/<int:sale_id>/cancel")
@jwt_required()
def cancel_sale_entry(sale_id: int):
    sale = cancel_sale(sale_id, actor=current_actor())
    return jsonify(sale_schema.dump(sale))


@bp.post("/<int:sale_id>/items")
@jwt_required()
def add_item(sale_id: int):
    sale = add_sale_item(sale_id, json_payload())
    return jsonify(sale_schema.dump(sale)), 201


@bp.patch("/<int:sale_id>/items/<int:item_id>")
@jwt_required()
def update_item(sale_id: int, item_id: int):
    sale = update_sale_item(sale_id, item_id, json_payload())
    return jsonify(sale_schema.dump(sale))


@bp.delete("/<int:sale_id>/items/<int:item_id>")
@jwt_required()
def delete_item(sale_id: int, item_id: int):
    sale = remove_sale_item(sale_id, item_id)
    return jsonify(sale_schema.dump(sale))


@bp.post("/<int:sale_id>/installments")
@jwt_required()
def add_installment(sale_id: int):
    installment = record_installment(sale_id, json_payload(), actor=current_actor())
    return jsonify(installment_schema.dump(installment)), 201


@bp.post("/<int:sale_id>/installments/<int:installment_id>/settle")
@jwt_required()
def settle(sale_id: int, installment_id: int):
    payload = json_payload()
    installment = settle_installment(
        sale_id, installment_id, paid_at=payload.get("paid_at"), actor=current_actor()
    )
    return jsonify(installment_schema.dump(installment))


@bp.post("/<int:sale_id>/extension")
@jwt_required()
def request_extension(sale_id: int):
    payload = json_payload()
    sale = request_payment_extension(sale_id, payload.get("payment_extension_due_date", payload.get("due_date")))
    return jsonify(sale_schema.dump(sale))


@bp.delete("/<int:sale_id>/extension")
@jwt_required()
def clear_extension(sale_id: int):
    sale = clear_payment_extension(sale_id)
    return jsonify(sale_schema.dump(sale))
