"""Pydantic model and field rules for Expense data"""
import math
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext
from typing import Any, Dict

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator

from utils.errors import InvalidIdentifier, NoFieldsToUpdate, ValidationError

CATEGORIES = (
    'food',
    'transport',
    'rent',
    'utilities',
    'shopping',
    'entertainment',
    'health',
    'income',
    'other',
)

# Pattern only, "2024-13-40" is accepted
DATE_PATTERN = re.compile(r'[0-9]{4}-[0-9]{2}-[0-9]{2}')

UPDATABLE_FIELDS = ('date', 'category', 'amount', 'notes')

_CENTS = Decimal('0.01')


class Expense(BaseModel):
    """
    Represents a single stored expense or income record.
    """
    id: str
    date: str
    category: str
    amount: float
    notes: str = ''
    created_at: datetime = Field(..., alias='createdAt')
    updated_at: datetime = Field(..., alias='updatedAt')

    class Config:
        populate_by_name = True
        from_attributes = True

    @field_validator('created_at', 'updated_at')
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # MongoDB keeps UTC; clients without tz_aware hand back naive values
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> 'Expense':
        """Builds the response model from a raw MongoDB document."""
        data = dict(doc)
        data['id'] = str(data.pop('_id'))
        return cls(**data)


def parse_expense_id(raw: str) -> ObjectId:
    if not isinstance(raw, str) or not ObjectId.is_valid(raw):
        raise InvalidIdentifier('invalid id format')
    return ObjectId(raw)


def normalize_amount(raw: Any) -> float:
    """Converts the input to a number rounded half-up to 2 decimal places."""
    if isinstance(raw, bool) or raw is None:
        raise ValidationError('amount must be a number')
    try:
        value = Decimal(str(raw).strip())
        if not value.is_finite():
            raise ValidationError('amount must be a number')
        if value < 0:
            raise ValidationError('amount must be >= 0')
        if value.adjusted() > 308:
            raise ValidationError('amount is too large')
        with localcontext() as ctx:
            # enough digits to keep every integer place plus the cents
            ctx.prec = max(ctx.prec, value.adjusted() + 3)
            rounded = float(value.quantize(_CENTS, rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        raise ValidationError('amount must be a number')
    if math.isinf(rounded):
        raise ValidationError('amount is too large')
    # "-0" is not negative but must not be stored as -0.0
    return rounded + 0.0


def validate_date(raw: Any) -> str:
    if not isinstance(raw, str) or not DATE_PATTERN.fullmatch(raw):
        raise ValidationError('date must be YYYY-MM-DD')
    return raw


def validate_category(raw: Any) -> str:
    if not isinstance(raw, str) or raw not in CATEGORIES:
        raise ValidationError(f"category must be one of: {', '.join(CATEGORIES)}")
    return raw


def validate_notes(raw: Any) -> str:
    if raw is None:
        return ''
    if not isinstance(raw, str):
        raise ValidationError('notes must be a string')
    return raw


FIELD_VALIDATORS = {
    'date': validate_date,
    'category': validate_category,
    'amount': normalize_amount,
    'notes': validate_notes,
}


def _apply_validators(fields: Dict[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    problems: Dict[str, str] = {}
    for name, raw in fields.items():
        try:
            cleaned[name] = FIELD_VALIDATORS[name](raw)
        except ValidationError as e:
            problems[name] = e.message
    if problems:
        raise ValidationError('; '.join(problems.values()), details=problems)
    return cleaned


def _is_missing(payload: Dict[str, Any], name: str) -> bool:
    value = payload.get(name)
    if name == 'amount':
        return value is None
    return value is None or value == ''


def validate_new_expense(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validates a create payload and returns the normalized document fields.

    date, category and amount are required, notes defaults to an empty
    string. Keys outside the schema are dropped. Every failing field is
    reported at once through ``details``.
    """
    missing = [name for name in ('date', 'category', 'amount') if _is_missing(payload, name)]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required",
            details={name: 'required' for name in missing},
        )
    return _apply_validators({name: payload.get(name) for name in UPDATABLE_FIELDS})


def validate_expense_changes(payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Picks the recognized, non-null keys of a partial update and validates
    only those. Anything else in the payload is ignored.
    """
    changes = {name: payload[name] for name in UPDATABLE_FIELDS if payload.get(name) is not None}
    if not changes:
        raise NoFieldsToUpdate('no fields to update')
    return _apply_validators(changes)
