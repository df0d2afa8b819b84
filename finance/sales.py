"""Sale ledger: items, installments and the paid/remaining balance.

``total_amount`` is always the sum of the item totals and ``paid_amount`` the
sum of PAID installments.  Both are recomputed after every mutation and no
write may leave ``paid_amount`` outside ``0 <= paid <= total``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from flask import current_app
from sqlalchemy import or_

from extensions import db
from models import (
    Client,
    InstallmentStatus,
    Product,
    Sale,
    SaleInstallment,
    SaleItem,
    SaleStatus,
    utcnow,
)

from .errors import (
    FinanceValidationError,
    InvalidStateError,
    InvariantViolation,
    NotFoundError,
    amount_exceeds,
)
from .money import ZERO, decimal_or_zero, money_str
from .numbering import SALE_PREFIX, commit_numbered, generate_number
from .persistence import commit_guarded, load_for_update, log_event
from .validation import (
    Actor,
    date_field,
    datetime_field,
    enum_field,
    id_field,
    money_field,
    page_args,
    quantity_field,
    raise_if_errors,
    strip_or_none,
)

INITIAL_STATUSES = frozenset({SaleStatus.DRAFT, SaleStatus.PENDING})
EDITABLE_STATUSES = frozenset({SaleStatus.DRAFT, SaleStatus.PENDING, SaleStatus.COMPLETED})


def _value(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def compute_total(items: Iterable[Any]) -> Decimal:
    """Sum ``quantity * unit_price`` over ``items`` without rounding."""

    total = ZERO
    for item in items:
        total += decimal_or_zero(_value(item, "unit_price")) * int(_value(item, "quantity") or 0)
    return total


def compute_paid(installments: Iterable[Any]) -> Decimal:
    paid = ZERO
    for installment in installments:
        status = _value(installment, "status")
        code = getattr(status, "value", status)
        if str(code).upper() == InstallmentStatus.PAID.value:
            paid += decimal_or_zero(_value(installment, "amount"))
    return paid


def sale_balance(sale: Sale) -> dict[str, Decimal]:
    total = decimal_or_zero(sale.total_amount)
    paid = decimal_or_zero(sale.paid_amount)
    return {"total_amount": total, "paid_amount": paid, "remaining_amount": total - paid}


def _ensure_open(sale: Sale) -> None:
    if sale.status == SaleStatus.CANCELLED:
        raise InvalidStateError(f"Sale {sale.sale_number} is cancelled and can no longer be changed.")


def _check_client(client_id: Optional[int], errors: Dict[str, str]) -> None:
    if client_id is not None and db.session.get(Client, client_id) is None:
        errors["client_id"] = "Client not found."


def _parse_item(
    payload: Dict[str, Any], prefix: str, errors: Dict[str, str], *, partial: bool = False
) -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    if not partial or "product_id" in payload:
        product_id = id_field(payload.get("product_id"), f"{prefix}product_id", errors)
        if product_id is not None and db.session.get(Product, product_id) is None:
            errors[f"{prefix}product_id"] = "Product not found."
        values["product_id"] = product_id
    if not partial or "quantity" in payload:
        values["quantity"] = quantity_field(payload.get("quantity"), f"{prefix}quantity", errors)
    if not partial or "unit_price" in payload:
        values["unit_price"] = money_field(
            payload.get("unit_price"), f"{prefix}unit_price", errors, label="Unit price"
        )
    return values


def _enforce_paid_within_total(sale: Sale) -> None:
    """Recompute totals and refuse a state where more is paid than owed."""

    sale.recalculate_totals()
    total = decimal_or_zero(sale.total_amount)
    paid = decimal_or_zero(sale.paid_amount)
    if paid > total:
        db.session.rollback()
        raise InvariantViolation(
            f"Sale total would drop to {money_str(total)}, below the {money_str(paid)} already paid."
        )


def _log_ledger(event: str, sale: Sale, **payload: Any) -> None:
    log_event(
        event,
        sale_id=sale.id,
        sale_number=sale.sale_number,
        total_amount=str(sale.total_amount),
        paid_amount=str(sale.paid_amount),
        **payload,
    )


def create_sale(payload: Dict[str, Any], *, actor: Actor) -> Sale:
    """Create a sale from its items, optionally with a first (deposit) installment.

    The total is always computed from the items; a caller-supplied total is
    ignored.
    """

    errors: Dict[str, str] = {}
    client_id = id_field(payload.get("client_id"), "client_id", errors)
    _check_client(client_id, errors)
    sale_date = date_field(payload.get("sale_date"), "sale_date", errors, default=date.today())
    status = enum_field(SaleStatus, payload.get("status"), "status", errors, default=SaleStatus.PENDING)
    if status is not None and status not in INITIAL_STATUSES:
        errors["status"] = "New sales must start as DRAFT or PENDING."
    agreed_monthly = money_field(
        payload.get("agreed_monthly_installment_amount"),
        "agreed_monthly_installment_amount",
        errors,
        required=False,
        label="Agreed monthly installment",
    )

    items_payload = payload.get("items")
    if not isinstance(items_payload, list) or not items_payload:
        errors["items"] = "At least one sale item is required."
        items_payload = []
    items = [
        _parse_item(entry if isinstance(entry, dict) else {}, f"items[{index}].", errors)
        for index, entry in enumerate(items_payload)
    ]

    first = payload.get("first_installment") or None
    first_amount = None
    first_paid_at = None
    if first is not None and not isinstance(first, dict):
        errors["first_installment"] = "First installment must be an object."
        first = None
    if first:
        first_amount = money_field(
            first.get("amount"), "first_installment.amount", errors, required=False
        )
        first_paid_at = datetime_field(first.get("paid_at"), "first_installment.paid_at", errors)
    raise_if_errors(errors)

    total = compute_total(items)
    if first_amount is not None and first_amount > total:
        raise amount_exceeds("first_installment.amount", "total")

    sale = Sale(
        sale_number=generate_number(SALE_PREFIX),
        client_id=client_id,
        sale_date=sale_date,
        status=status,
        agreed_monthly_installment_amount=agreed_monthly,
        requested_payment_date_extension=False,
        notes=strip_or_none(payload.get("notes")),
        created_by_id=actor.id,
    )
    for values in items:
        item = SaleItem(**values)
        item.recalculate_total()
        sale.items.append(item)
    if first_amount is not None:
        sale.installments.append(
            SaleInstallment(
                amount=first_amount,
                paid_at=first_paid_at or utcnow(),
                status=InstallmentStatus.PAID,
                notes=strip_or_none(first.get("notes")),
                recorded_by_id=actor.id,
            )
        )
    sale.recalculate_totals()

    db.session.add(sale)
    commit_numbered(sale, "sale_number", SALE_PREFIX)
    _log_ledger("sale_created", sale, item_count=len(items), actor_id=actor.id)
    return sale


def update_sale(sale_id: Any, patch: Dict[str, Any], *, actor: Actor) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)

    errors: Dict[str, str] = {}
    for field in ("total_amount", "paid_amount"):
        if field in patch:
            errors[field] = "Totals are calculated from items and installments."
    if "client_id" in patch:
        client_id = id_field(patch.get("client_id"), "client_id", errors)
        _check_client(client_id, errors)
        if client_id is not None and "client_id" not in errors:
            sale.client_id = client_id
    if "sale_date" in patch:
        sale_date = date_field(patch.get("sale_date"), "sale_date", errors)
        if sale_date is not None:
            sale.sale_date = sale_date
    if "agreed_monthly_installment_amount" in patch:
        sale.agreed_monthly_installment_amount = money_field(
            patch.get("agreed_monthly_installment_amount"),
            "agreed_monthly_installment_amount",
            errors,
            required=False,
            label="Agreed monthly installment",
        )
    if "notes" in patch:
        sale.notes = strip_or_none(patch.get("notes"))

    new_status = None
    if "status" in patch:
        new_status = enum_field(SaleStatus, patch.get("status"), "status", errors, required=True)
        if new_status == SaleStatus.CANCELLED:
            errors["status"] = "Use the cancel operation to cancel a sale."
            new_status = None
    if errors:
        db.session.rollback()
        raise FinanceValidationError(errors)

    previous = sale.status
    if new_status is not None and new_status != previous:
        if previous == SaleStatus.COMPLETED:
            db.session.rollback()
            raise InvalidStateError(f"Sale {sale.sale_number} is completed and cannot be reopened.")
        sale.status = new_status

    commit_guarded("Sale", sale_id=sale.id)
    if new_status is not None and new_status != previous:
        log_event(
            "sale_status_changed",
            sale_id=sale.id,
            from_status=previous.value,
            to_status=new_status.value,
            actor_id=actor.id,
        )
    return sale


def _sale_item(sale: Sale, item_id: Any) -> SaleItem:
    try:
        key = int(item_id)
    except (TypeError, ValueError):
        raise NotFoundError("Sale item not found")
    for item in sale.items:
        if item.id == key:
            return item
    raise NotFoundError("Sale item not found")


def add_sale_item(sale_id: Any, payload: Dict[str, Any]) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)

    errors: Dict[str, str] = {}
    values = _parse_item(payload, "", errors)
    raise_if_errors(errors)

    item = SaleItem(**values)
    item.recalculate_total()
    sale.items.append(item)
    _enforce_paid_within_total(sale)
    commit_guarded("Sale", sale_id=sale.id)
    _log_ledger("sale_item_added", sale, item_id=item.id)
    return sale


def update_sale_item(sale_id: Any, item_id: Any, payload: Dict[str, Any]) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    item = _sale_item(sale, item_id)
    _ensure_open(sale)

    errors: Dict[str, str] = {}
    values = _parse_item(payload, "", errors, partial=True)
    raise_if_errors(errors)

    for field, value in values.items():
        setattr(item, field, value)
    item.recalculate_total()
    _enforce_paid_within_total(sale)
    commit_guarded("Sale", sale_id=sale.id)
    _log_ledger("sale_item_updated", sale, item_id=item.id)
    return sale


def remove_sale_item(sale_id: Any, item_id: Any) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    item = _sale_item(sale, item_id)
    _ensure_open(sale)
    if len(sale.items) <= 1:
        raise FinanceValidationError({"items": "A sale must keep at least one item."})

    removed_id = item.id
    sale.items.remove(item)
    _enforce_paid_within_total(sale)
    commit_guarded("Sale", sale_id=sale.id)
    _log_ledger("sale_item_removed", sale, item_id=removed_id)
    return sale


def _check_remaining(sale: Sale, amount: Decimal, field: str = "amount") -> None:
    remaining = sale.remaining_amount
    if amount > remaining:
        raise FinanceValidationError(
            {field: f"Amount exceeds the remaining balance of {money_str(remaining)}."},
            message="amount exceeds remaining balance",
        )


def record_installment(sale_id: Any, payload: Dict[str, Any], *, actor: Actor) -> SaleInstallment:
    """Append a payment against the sale.

    The amount must be positive and no larger than what is still owed.  A
    PENDING installment records an agreed future payment and does not count
    toward ``paid_amount`` until settled.
    """

    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)

    errors: Dict[str, str] = {}
    amount = money_field(payload.get("amount"), "amount", errors)
    paid_at = datetime_field(payload.get("paid_at"), "paid_at", errors)
    status = enum_field(
        InstallmentStatus, payload.get("status"), "status", errors, default=InstallmentStatus.PAID
    )
    raise_if_errors(errors)

    sale.recalculate_totals()
    _check_remaining(sale, amount)

    installment = SaleInstallment(
        amount=amount,
        paid_at=paid_at or utcnow(),
        status=status,
        notes=strip_or_none(payload.get("notes")),
        recorded_by_id=actor.id,
    )
    sale.installments.append(installment)
    _enforce_paid_within_total(sale)
    commit_guarded("Sale", sale_id=sale.id)
    _log_ledger(
        "sale_installment_recorded",
        sale,
        installment_id=installment.id,
        amount=str(installment.amount),
        status=installment.status.value,
        actor_id=actor.id,
    )
    return installment


def settle_installment(sale_id: Any, installment_id: Any, *, paid_at: Any = None, actor: Actor) -> SaleInstallment:
    """Mark a PENDING installment as PAID."""

    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)
    try:
        key = int(installment_id)
    except (TypeError, ValueError):
        raise NotFoundError("Installment not found")
    installment = next((entry for entry in sale.installments if entry.id == key), None)
    if installment is None:
        raise NotFoundError("Installment not found")
    if installment.status == InstallmentStatus.PAID:
        raise InvalidStateError("Installment is already paid.")

    errors: Dict[str, str] = {}
    settled_at = datetime_field(paid_at, "paid_at", errors)
    raise_if_errors(errors)

    sale.recalculate_totals()
    _check_remaining(sale, decimal_or_zero(installment.amount))
    installment.status = InstallmentStatus.PAID
    installment.paid_at = settled_at or utcnow()
    _enforce_paid_within_total(sale)
    commit_guarded("Sale", sale_id=sale.id)
    _log_ledger("sale_installment_settled", sale, installment_id=installment.id, actor_id=actor.id)
    return installment


def request_payment_extension(sale_id: Any, due_date: Any) -> Sale:
    """Flag that the client asked for more time.  Informational only."""

    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)

    errors: Dict[str, str] = {}
    parsed = date_field(due_date, "payment_extension_due_date", errors)
    if parsed is not None and sale.sale_date and parsed < sale.sale_date:
        errors["payment_extension_due_date"] = "Due date cannot be before the sale date."
    raise_if_errors(errors)

    sale.requested_payment_date_extension = True
    sale.payment_extension_due_date = parsed
    commit_guarded("Sale", sale_id=sale.id)
    log_event("sale_extension_requested", sale_id=sale.id, due_date=parsed.isoformat())
    return sale


def clear_payment_extension(sale_id: Any) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    _ensure_open(sale)
    sale.requested_payment_date_extension = False
    sale.payment_extension_due_date = None
    commit_guarded("Sale", sale_id=sale.id)
    log_event("sale_extension_cleared", sale_id=sale.id)
    return sale


def cancel_sale(sale_id: Any, *, actor: Actor) -> Sale:
    sale = load_for_update(Sale, sale_id, "Sale")
    if sale.status == SaleStatus.COMPLETED:
        raise InvalidStateError(f"Sale {sale.sale_number} is completed and cannot be cancelled.")
    if sale.status == SaleStatus.CANCELLED:
        raise InvalidStateError(f"Sale {sale.sale_number} is already cancelled.")

    previous = sale.status
    sale.status = SaleStatus.CANCELLED
    sale.cancelled_at = utcnow()
    commit_guarded("Sale", sale_id=sale.id)
    log_event(
        "sale_status_changed",
        sale_id=sale.id,
        from_status=previous.value,
        to_status=SaleStatus.CANCELLED.value,
        actor_id=actor.id,
    )
    return sale


def get_sale(sale_id: Any) -> Sale:
    try:
        key = int(sale_id)
    except (TypeError, ValueError):
        raise NotFoundError("Sale not found")
    sale = db.session.get(Sale, key)
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def get_sale_by_number(sale_number: str) -> Sale:
    sale = Sale.query.filter_by(sale_number=(sale_number or "").strip().upper()).first()
    if sale is None:
        raise NotFoundError("Sale not found")
    return sale


def list_sales(
    *,
    status: Any = None,
    client_id: Any = None,
    search: Optional[str] = None,
    page: Any = 1,
    limit: Any = None,
):
    errors: Dict[str, str] = {}
    status_value = enum_field(SaleStatus, status, "status", errors)
    client_value = id_field(client_id, "client_id", errors, required=False)
    raise_if_errors(errors)

    query = Sale.query
    if status_value is not None:
        query = query.filter(Sale.status == status_value)
    if client_value is not None:
        query = query.filter(Sale.client_id == client_value)
    term = strip_or_none(search)
    if term:
        like = f"%{term}%"
        query = query.filter(or_(Sale.sale_number.ilike(like), Sale.notes.ilike(like)))

    page_value, limit_value = page_args(
        page,
        limit,
        default_limit=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_limit=current_app.config.get("MAX_PAGE_SIZE", 100),
    )
    query = query.order_by(Sale.sale_date.desc(), Sale.id.desc())
    return query.paginate(page=page_value, per_page=limit_value, error_out=False)


__all__ = [
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
