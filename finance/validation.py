"""Input validation shared by the expense, sale and job card services.

Field helpers record problems in an ``errors`` dict keyed by field name and
return ``None``; callers finish with :func:`raise_if_errors` so a caller sees
every problem with a payload at once.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type, TypeVar

from models import RoleEnum

from .errors import FinancePermissionError, FinanceValidationError
from .money import ZERO, has_money_precision, to_decimal

E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class Actor:
    """The employee performing an operation."""

    id: Optional[int]
    role: Optional[RoleEnum]

    @property
    def is_director(self) -> bool:
        return self.role == RoleEnum.DIRECTOR

    @classmethod
    def from_claims(cls, identity: Any, role: Any) -> "Actor":
        try:
            actor_id = int(identity) if identity is not None else None
        except (TypeError, ValueError):
            actor_id = None
        return cls(id=actor_id, role=normalize_role(role))


def raise_if_errors(errors: Dict[str, str]) -> None:
    if errors:
        raise FinanceValidationError(errors)


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
    else:
        value = str(value).strip()
    return value or None


def require_text(value: Any, field: str, errors: Dict[str, str], *, label: str = "This field") -> Optional[str]:
    text = strip_or_none(value)
    if text is None:
        errors[field] = f"{label} is required."
    return text


def money_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    label: str = "Amount",
) -> Optional[Decimal]:
    """Parse a strictly positive amount with at most two decimal places."""

    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors[field] = f"{label} is required."
        return None
    try:
        numeric = to_decimal(value, field)
    except FinanceValidationError as exc:
        errors.update(exc.errors)
        return None

    if numeric <= ZERO:
        errors[field] = f"{label} must be greater than 0."
        return None
    if not has_money_precision(numeric):
        errors[field] = f"{label} cannot have more than two decimal places."
        return None
    return numeric


def quantity_field(value: Any, field: str, errors: Dict[str, str]) -> Optional[int]:
    if value is None or value == "":
        errors[field] = "Quantity is required."
        return None
    if isinstance(value, bool):
        errors[field] = "Quantity must be a whole number."
        return None
    try:
        numeric = Decimal(str(value).strip())
    except ArithmeticError:
        errors[field] = "Quantity must be a whole number."
        return None
    if not numeric.is_finite() or numeric != numeric.to_integral_value():
        errors[field] = "Quantity must be a whole number."
        return None
    quantity = int(numeric)
    if quantity <= 0:
        errors[field] = "Quantity must be greater than 0."
        return None
    return quantity


def id_field(value: Any, field: str, errors: Dict[str, str], *, required: bool = True) -> Optional[int]:
    if value in (None, ""):
        if required:
            errors[field] = "This field is required."
        return None
    if isinstance(value, bool):
        errors[field] = "Invalid identifier."
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        errors[field] = "Invalid identifier."
        return None


def date_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = True,
    default: Optional[date] = None,
) -> Optional[date]:
    if value in (None, ""):
        if default is not None:
            return default
        if required:
            errors[field] = "This field is required."
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            errors[field] = "Invalid date. Use YYYY-MM-DD."
            return None
    errors[field] = "Invalid date."
    return None


def datetime_field(
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = False,
    default: Optional[datetime] = None,
) -> Optional[datetime]:
    """Parse ISO 8601 input into a naive UTC datetime.

    Date-only strings are read as midnight UTC, aware values are converted to
    UTC, naive values are assumed to already be UTC.
    """

    if value in (None, ""):
        if default is not None:
            return default
        if required:
            errors[field] = "This field is required."
        return None

    if isinstance(value, datetime):
        dt_value = value
    elif isinstance(value, date):
        dt_value = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            dt_value = datetime.fromisoformat(raw)
        except ValueError:
            errors[field] = "Invalid datetime. Use ISO 8601 format."
            return None
    else:
        errors[field] = "Invalid datetime."
        return None

    if dt_value.tzinfo is not None:
        dt_value = dt_value.astimezone(timezone.utc).replace(tzinfo=None)
    return dt_value


def bool_field(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def enum_field(
    enum_cls: Type[E],
    value: Any,
    field: str,
    errors: Dict[str, str],
    *,
    required: bool = False,
    default: Optional[E] = None,
) -> Optional[E]:
    if value in (None, ""):
        if required and default is None:
            errors[field] = "This field is required."
        return default
    if isinstance(value, enum_cls):
        return value
    code = str(value).strip().upper()
    try:
        return enum_cls(code)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        errors[field] = f"Invalid value. Choose one of: {allowed}."
        return None


def normalize_role(value: Any) -> Optional[RoleEnum]:
    if value is None:
        return None
    if isinstance(value, RoleEnum):
        return value
    try:
        return RoleEnum(str(value).strip().upper())
    except ValueError:
        return None


def require_director(actor: Actor, action: str) -> None:
    if not actor.is_director:
        raise FinancePermissionError(f"Only directors can {action}.")


def require_owner_or_director(actor: Actor, owner_id: Optional[int], action: str) -> None:
    if actor.is_director:
        return
    if actor.id is not None and owner_id is not None and actor.id == owner_id:
        return
    raise FinancePermissionError(f"Only the submitter or a director can {action}.")


def page_args(page: Any, limit: Any, *, default_limit: int = 20, max_limit: int = 100) -> Tuple[int, int]:
    try:
        page_value = int(page)
    except (TypeError, ValueError):
        page_value = 1
    try:
        limit_value = int(limit)
    except (TypeError, ValueError):
        limit_value = default_limit
    if page_value < 1:
        page_value = 1
    if limit_value < 1:
        limit_value = default_limit
    return page_value, min(limit_value, max_limit)
