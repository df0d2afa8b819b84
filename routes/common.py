"""Request helpers shared by the finance blueprints."""

from __future__ import annotations

from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity

from extensions import db
from finance import Actor, FinanceError

_LOGGED_STATUSES = {403, 409, 422}


def current_actor() -> Actor:
    claims = get_jwt() or {}
    return Actor.from_claims(get_jwt_identity(), claims.get("role"))


def json_payload() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def handle_finance_error(exc: FinanceError):
    db.session.rollback()
    if exc.status_code in _LOGGED_STATUSES:
        current_app.logger.warning(
            {
                "event": "finance_command_rejected",
                "error": type(exc).__name__,
                "msg": exc.message,
                "path": request.path,
            }
        )
    return jsonify(exc.to_dict()), exc.status_code


def paginated(page, schema) -> dict:
    return {
        "data": schema.dump(page.items),
        "pagination": {
            "page": page.page,
            "limit": page.per_page,
            "total": page.total,
            "pages": page.pages,
        },
    }
