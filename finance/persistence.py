"""Locked reads and guarded commits for the finance aggregates."""

from __future__ import annotations

from typing import Any, Optional, Type, TypeVar

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from extensions import db

from .errors import InvalidStateError, NotFoundError

M = TypeVar("M")


def load_for_update(model: Type[M], entity_id: Any, label: str, *, lock: bool = True) -> M:
    """Read ``model`` row ``entity_id`` fresh from the database.

    The row is locked for the rest of the transaction where the backend
    supports ``SELECT ... FOR UPDATE`` and the identity map copy is refreshed,
    so legality checks always see current state.
    """

    try:
        key = int(entity_id)
    except (TypeError, ValueError):
        raise NotFoundError(f"{label} not found")

    query = model.query.filter_by(id=key).populate_existing()
    if lock and hasattr(query, "with_for_update"):
        query = query.with_for_update()
    record: Optional[M] = query.first()
    if record is None:
        raise NotFoundError(f"{label} not found")
    return record


def log_event(event: str, **payload: Any) -> None:
    current_app.logger.info({"event": event, **payload})


def commit_guarded(label: str, **context: Any) -> None:
    """Commit the session, turning a lost optimistic-lock race into a state error."""

    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        current_app.logger.warning(
            {"event": "concurrent_modification", "entity": label, **context}
        )
        raise InvalidStateError(
            f"{label} was modified by another request. Reload and try again."
        ) from exc
