from __future__ import annotations
"""Failure taxonomy shared by services and routes.

Every failure the core raises is a Werkzeug HTTPException subclass so Flask can
render it through the unified error handler, while service code called outside
a request (scripts, tests) still gets an ordinary exception with a stable
``kind`` and optional ``details``.

Kinds:
  UNAUTHENTICATED   no (valid) actor
  FORBIDDEN         role / capability / ownership check failed
  NOT_FOUND         referenced entity absent (also used to mask ownership)
  CONFLICT          uniqueness violation
  VALIDATION_FAILED malformed input or violated precondition
  INTERNAL          unexpected failure
"""
from typing import Any, Dict, Optional
from werkzeug.exceptions import HTTPException

# Forbidden reasons
ACCESS_DENIED = 'ACCESS_DENIED'
MISSING_PERMISSION = 'MISSING_PERMISSION'
INVALID_ROLE = 'INVALID_ROLE'
UNAUTHENTICATED = 'UNAUTHENTICATED'

KIND_BY_STATUS = {
    400: 'VALIDATION_FAILED',
    401: 'UNAUTHENTICATED',
    403: 'FORBIDDEN',
    404: 'NOT_FOUND',
    405: 'VALIDATION_FAILED',
    409: 'CONFLICT',
}


class ServiceError(HTTPException):
    code = 500
    kind = 'INTERNAL'
    error_code: Optional[str] = None

    def __init__(self, description: Optional[str] = None, details: Any = None, error_code: Optional[str] = None):
        super().__init__(description=description)
        self.details = details
        if error_code is not None:
            self.error_code = error_code


class Unauthenticated(ServiceError):
    code = 401
    kind = 'UNAUTHENTICATED'
    description = 'Authentication required'


class Forbidden(ServiceError):
    code = 403
    kind = 'FORBIDDEN'
    description = 'Access denied'

    def __init__(self, description: Optional[str] = None, reason: str = ACCESS_DENIED, details: Any = None):
        super().__init__(description, details)
        self.reason = reason


class NotFound(ServiceError):
    code = 404
    kind = 'NOT_FOUND'
    description = 'Not found'


class Conflict(ServiceError):
    code = 409
    kind = 'CONFLICT'
    description = 'Conflict'


class ValidationFailed(ServiceError):
    code = 400
    kind = 'VALIDATION_FAILED'
    error_code = 'VALIDATION_ERROR'
    description = 'Validation failed'


class Internal(ServiceError):
    code = 500
    kind = 'INTERNAL'
    description = 'Unexpected error'


def error_payload(e: HTTPException) -> Dict[str, Any]:
    """Render any HTTPException as the standard ``{'error': {...}}`` body."""
    status = e.code or 500
    kind = getattr(e, 'kind', None) or KIND_BY_STATUS.get(status, 'INTERNAL' if status >= 500 else 'VALIDATION_FAILED')
    body: Dict[str, Any] = {
        'status': status,
        'title': e.name,
        'kind': kind,
        'detail': e.description,
    }
    error_code = getattr(e, 'error_code', None)
    if error_code:
        body['code'] = error_code
    reason = getattr(e, 'reason', None)
    if reason:
        body['reason'] = reason
    details = getattr(e, 'details', None)
    if details is not None:
        body['details'] = details
    return {'error': body}


__all__ = [
    'ServiceError', 'Unauthenticated', 'Forbidden', 'NotFound', 'Conflict', 'ValidationFailed', 'Internal',
    'ACCESS_DENIED', 'MISSING_PERMISSION', 'INVALID_ROLE', 'UNAUTHENTICATED', 'error_payload',
]
