from __future__ import annotations
from flask import Blueprint, request
from servicetrack import get_db
from servicetrack.constants.permissions import ROLE_ADMIN, ROLE_STAFF, AUDIT_READ, AuditAction
from servicetrack.decorators.audit import audit_log
from servicetrack.decorators.auth import current_access, require_role, require_capability
from servicetrack.errors import ValidationFailed
from servicetrack.models.audit import AuditLog
from servicetrack.serializers import user_json, audit_json
from servicetrack.services import permissions as perm_store
from servicetrack.services import users as user_svc
from servicetrack.services.stats import fleet_stats
from servicetrack.utils.listing import apply_pagination, cached_list
from servicetrack.utils.validation import parse_datetime

admin_bp = Blueprint('admin', __name__)


def _user_body(user):
    caps = perm_store.list_grants(get_db(), user.id) if user.role == ROLE_STAFF else None
    return user_json(user, caps)


def _date_range():
    return (
        parse_datetime(request.args.get('date_from'), 'date_from'),
        parse_datetime(request.args.get('date_to'), 'date_to'),
    )


# --- Users ---

@admin_bp.get('/users')
@require_role(ROLE_ADMIN)
def list_users():
    session = get_db()
    q = user_svc.list_users(session, role=request.args.get('role'), status=request.args.get('status'))
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = max((u.updated_at for u in rows), default=None)
    return cached_list([_user_body(u) for u in rows], total, page, page_size, latest_ts)


@admin_bp.post('/users')
@require_role(ROLE_ADMIN)
@audit_log(AuditAction.CREATE_USER, resource='User', meta_keys=['username', 'role'])
def create_user():
    data = request.get_json(silent=True) or {}
    user = user_svc.create_user(
        get_db(),
        username=data.get('username'),
        password=data.get('password'),
        role=data.get('role'),
        email=data.get('email'),
        phone=data.get('phone'),
        customer_name=data.get('customer_name'),
        customer_address=data.get('customer_address'),
    )
    return _user_body(user), 201


@admin_bp.get('/users/<int:user_id>')
@require_role(ROLE_ADMIN)
def get_user(user_id: int):
    return _user_body(user_svc.get_user(get_db(), user_id))


@admin_bp.patch('/users/<int:user_id>')
@require_role(ROLE_ADMIN)
@audit_log(AuditAction.UPDATE_USER, resource='User', resource_id_arg='user_id',
           meta_builder=lambda data, a, kw: {'updated': sorted((request.get_json(silent=True) or {}).keys())})
def update_user(user_id: int):
    patch = user_svc.UserUpdate.from_payload(request.get_json(silent=True) or {})
    user, _ = user_svc.update_user(get_db(), user_id, patch, current_access().actor.id)
    return _user_body(user)


@admin_bp.delete('/users/<int:user_id>')
@require_role(ROLE_ADMIN)
@audit_log(AuditAction.DISABLE_USER, resource='User', meta_keys=['username', 'role'])
def disable_user(user_id: int):
    user = user_svc.disable_user(get_db(), user_id, current_access().actor.id)
    return _user_body(user)


# --- Staff capabilities ---

@admin_bp.get('/users/<int:user_id>/permissions')
@require_role(ROLE_ADMIN)
def get_permissions(user_id: int):
    session = get_db()
    user = user_svc.get_user(session, user_id)
    return {'user_id': user.id, 'capabilities': perm_store.list_grants(session, user.id)}


@admin_bp.put('/users/<int:user_id>/permissions')
@require_role(ROLE_ADMIN)
@audit_log(AuditAction.ASSIGN_PERMISSION, resource='User', resource_id_key='user_id',
           meta_builder=lambda data, a, kw: {'before': data.get('before'), 'after': data.get('capabilities')})
def replace_permissions(user_id: int):
    data = request.get_json(silent=True) or {}
    caps = data.get('capabilities')
    if not isinstance(caps, list) or not all(isinstance(c, str) for c in caps):
        raise ValidationFailed('capabilities must be a list of strings', details={'capabilities': 'list of strings'})
    session = get_db()
    before = perm_store.grant_all(session, user_id, caps, current_access().actor.id)
    return {'user_id': user_id, 'capabilities': perm_store.list_grants(session, user_id), 'before': before}


# --- Reporting ---

@admin_bp.get('/reports/stats')
@require_role(ROLE_ADMIN)
def stats():
    date_from, date_to = _date_range()
    return fleet_stats(get_db(), date_from, date_to)


@admin_bp.get('/audit-logs')
@require_capability(AUDIT_READ)
def list_audit_logs():
    session = get_db()
    filters = []
    actor = request.args.get('actor_user_id')
    if actor:
        try:
            filters.append(AuditLog.actor_user_id == int(actor))
        except ValueError:
            raise ValidationFailed('actor_user_id must be int', details={'actor_user_id': 'must be int'})
    date_from, date_to = _date_range()
    if date_from:
        filters.append(AuditLog.created_at >= date_from)
    if date_to:
        filters.append(AuditLog.created_at <= date_to)
    # Facets reflect actor/date filters only so clients can switch action/resource freely
    facets = {
        'actions': sorted(a for (a,) in session.query(AuditLog.action).filter(*filters).distinct()),
        'resources': sorted(r for (r,) in session.query(AuditLog.resource).filter(*filters).distinct()),
    }
    if request.args.get('action'):
        filters.append(AuditLog.action == request.args['action'])
    if request.args.get('resource'):
        filters.append(AuditLog.resource == request.args['resource'])
    q = session.query(AuditLog).filter(*filters).order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    latest_ts = rows[0].created_at if rows else None
    return cached_list([audit_json(r) for r in rows], total, page, page_size, latest_ts, extra={'filters': facets})
