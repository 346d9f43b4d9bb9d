from __future__ import annotations
"""Audit logging decorator to keep record_audit() calls out of route handlers.

Usage examples:

@audit_log(AuditAction.CREATE_DEVICE, resource='Device', resource_id_key='id', meta_keys=['customer_id', 'brand'])
def create_device():
    ... return device_json(device), 201

@audit_log(AuditAction.UPDATE_STATUS, resource='ServiceRound', resource_id_arg='round_id',
           meta_builder=lambda data, args, kwargs: {'from': ..., 'to': ...})
def change_status(round_id): ...

Parameters:
  action: audit action code (see AuditAction)
  resource: resource label (ServiceCase, ServiceRound, Shipment, User ...)
  resource_id_key: key in the returned JSON object whose value becomes resource_id.
  resource_id_arg: path parameter used for resource_id when the key is absent.
  meta_keys: keys projected from the returned JSON into details.
  meta_builder: callable (data, args, kwargs) -> details dict; overrides meta_keys.
  diff_keys / pre_fetch: pre_fetch(args, kwargs) snapshots the resource before the
    handler runs; changed diff_keys are added as details['changes'].

The entry is written only for successful responses (status < 400), after the
handler committed its own work. Building or writing the entry never changes the
response: failures are logged and dropped.
"""

from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

from flask import g

from servicetrack import get_db
from servicetrack.services.audit import record_audit
from servicetrack.utils.log import get_logger

logger = get_logger('audit')


def _extract_payload(rv: Any):
    """Return (data, status) from a view return value."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    status = getattr(rv, 'status_code', 200)
    if hasattr(rv, 'get_json'):
        return rv.get_json(silent=True), status
    return rv, status


def _actor_id() -> Optional[int]:
    ctx = g.get('access')
    return ctx.actor.id if ctx is not None and ctx.actor is not None else None


def audit_log(
    action: str,
    *,
    resource: str,
    resource_id_key: Optional[str] = 'id',
    resource_id_arg: Optional[str] = None,
    meta_keys: Optional[Iterable[str]] = None,
    meta_builder: Optional[Callable[[dict, tuple, dict], dict]] = None,
    diff_keys: Optional[Iterable[str]] = None,
    pre_fetch: Optional[Callable[[tuple, dict], Dict[str, Any]]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            before_snapshot = None
            if diff_keys and pre_fetch:
                try:
                    before_snapshot = pre_fetch(args, kwargs)
                except Exception:
                    logger.warning('audit pre_fetch failed for %s', action, exc_info=True)
            rv = fn(*args, **kwargs)
            try:
                data, status = _extract_payload(rv)
                if status >= 400:
                    return rv
                if not isinstance(data, dict):
                    data = {}
                resource_id = None
                if resource_id_key and resource_id_key in data:
                    resource_id = data.get(resource_id_key)
                elif resource_id_arg and resource_id_arg in kwargs:
                    resource_id = kwargs.get(resource_id_arg)
                if meta_builder:
                    meta = meta_builder(data, args, kwargs) or {}
                elif meta_keys:
                    meta = {k: data.get(k) for k in meta_keys if k in data}
                else:
                    meta = {}
                if diff_keys and isinstance(before_snapshot, dict):
                    changes = {}
                    for k in diff_keys:
                        if k in before_snapshot and k in data and before_snapshot.get(k) != data.get(k):
                            changes[k] = {'before': before_snapshot.get(k), 'after': data.get(k)}
                    if changes:
                        meta['changes'] = changes
            except Exception:
                logger.exception('could not build audit entry for %s', action)
                return rv
            record_audit(get_db(), _actor_id(), action, resource, resource_id, meta)
            return rv
        return wrapper
    return outer
