"""Human-readable document numbers (``EXP-20240701-1A2B3C``)."""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy.exc import IntegrityError

from extensions import db

from .errors import FinanceValidationError

EXPENSE_PREFIX = "EXP"
SALE_PREFIX = "SAL"
JOB_CARD_PREFIX = "JOB"

MAX_NUMBER_ATTEMPTS = 5


def generate_number(prefix: str, on: Optional[date] = None) -> str:
    day = on or date.today()
    suffix = uuid.uuid4().hex[:6].upper()
    return f"{prefix}-{day.strftime('%Y%m%d')}-{suffix}"


def is_unique_violation(exc: IntegrityError, *keywords: str) -> bool:
    """Return ``True`` if ``exc`` represents a unique constraint violation."""

    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    message_detail = getattr(diag, "message_detail", None)

    haystacks: list[str] = []
    if constraint_name:
        haystacks.append(constraint_name.lower())
    if message_detail:
        haystacks.append(message_detail.lower())
    if orig is not None:
        haystacks.append(str(orig).lower())
    else:
        haystacks.append(str(exc).lower())

    lowered_keywords = [keyword.lower() for keyword in keywords]
    for haystack in haystacks:
        if haystack and all(keyword in haystack for keyword in lowered_keywords):
            return True
    return False


def commit_numbered(record: db.Model, field: str, prefix: str) -> db.Model:
    """Commit ``record``, drawing a fresh number when the current one collides."""

    attempts = 0
    while True:
        try:
            db.session.commit()
            return record
        except IntegrityError as exc:
            db.session.rollback()
            if not is_unique_violation(exc, field):
                raise
            attempts += 1
            if attempts >= MAX_NUMBER_ATTEMPTS:
                raise FinanceValidationError(
                    {field: "Unable to assign a document number. Please try again."}
                ) from exc
            setattr(record, field, generate_number(prefix))
            db.session.add(record)
