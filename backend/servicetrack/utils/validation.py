from __future__ import annotations
"""Reusable validation helpers for request payloads.

Schema-level checks happen here so services can assume well-typed input; every
failure is a ValidationFailed carrying field-level ``details``.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional
from servicetrack.errors import ValidationFailed
from servicetrack.utils.clock import to_naive_utc


def validate_status(new_status: str, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that new_status is inside allowed.

    Returns the status (to enable inline usage) or raises ValidationFailed.
    """
    allowed = tuple(allowed)
    if new_status not in allowed:
        raise ValidationFailed(f"{field_name} invalid", details={field_name: f"must be one of {', '.join(allowed)}"})
    return new_status


def require_fields(data: Mapping[str, Any], *names: str):
    missing = [n for n in names if data.get(n) in (None, '')]
    if missing:
        raise ValidationFailed(f"{', '.join(missing)} required", details={n: 'required' for n in missing})


def positive_decimal(value: Any, field_name: str) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be a positive number'})
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be a positive number'})
    if not number.is_finite() or number <= 0:
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be a positive number'})
    return number


def positive_int(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be a positive integer'})
    return value


def parse_datetime(value: Any, field_name: str) -> Optional[datetime]:
    """Parse ISO-8601 (date or datetime, 'Z' accepted) into naive UTC."""
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str):
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be an ISO-8601 datetime'})
    try:
        dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        raise ValidationFailed(f'{field_name} invalid', details={field_name: 'must be an ISO-8601 datetime'})
    return to_naive_utc(dt)

__all__ = ['validate_status', 'require_fields', 'positive_decimal', 'positive_int', 'parse_datetime']
