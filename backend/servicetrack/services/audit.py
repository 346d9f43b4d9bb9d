from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from flask import has_request_context, request
from sqlalchemy.orm import Session

from servicetrack.models.audit import AuditLog
from servicetrack.utils.clock import isoformat
from servicetrack.utils.log import get_logger

logger = get_logger('audit')


def _json_safe(value):
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return isoformat(value)
    return value


def _request_origin():
    if not has_request_context():
        return None, None
    ua = request.headers.get('User-Agent')
    return request.remote_addr, ua[:255] if ua else None


def record_audit(session: Session, actor_id: Optional[int], action: str, resource: str,
                 resource_id: Any = None, details: Optional[Dict[str, Any]] = None) -> Optional[AuditLog]:
    """Append an audit entry and commit it on its own.

    Call only after the triggering mutation has been committed. Any failure is
    logged and rolled back here (touching nothing but the audit row) and never
    reaches the caller; returns None in that case.
    """
    ip_address, user_agent = _request_origin()
    try:
        log = AuditLog(
            actor_user_id=actor_id or 0,
            action=action,
            resource=resource,
            resource_id=str(resource_id) if resource_id is not None else None,
            details=_json_safe(details or {}),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(log)
        session.commit()
        return log
    except Exception:
        logger.exception('failed to write audit entry action=%s resource=%s id=%s', action, resource, resource_id)
        try:
            session.rollback()
        except Exception:
            logger.exception('rollback after audit failure also failed')
        return None


__all__ = ['record_audit']
