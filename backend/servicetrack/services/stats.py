from __future__ import annotations
"""Read-only derivations over cases, rounds, events and shipments.

Nothing here writes; callers may run these against any session state.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session

from servicetrack.constants.permissions import ROLE_STAFF
from servicetrack.models.authz import User
from servicetrack.models.customer import Customer, Device
from servicetrack.models.service_case import ServiceCase, ServiceRound, StatusEvent
from servicetrack.services.cases import latest_case, latest_round, case_flags
from servicetrack.utils.clock import utcnow, isoformat

TOP_STAFF = 10
RECENT_WINDOW = timedelta(days=7)
SECONDS_PER_DAY = 86400


def _newest(items, attr='created_at'):
    items = list(items)
    if not items:
        return None
    return max(items, key=lambda x: (getattr(x, attr), x.id))


def device_overview(device: Device) -> Dict[str, Any]:
    """Latest case -> its latest round -> newest status event and newest shipment."""
    body: Dict[str, Any] = {
        'id': device.id,
        'brand': device.brand,
        'model': device.model,
        'color': device.color,
        'storage': device.storage,
    }
    case = latest_case(device.cases)
    if case is None:
        return body
    rnd = latest_round(case.rounds)
    event = _newest(rnd.events) if rnd else None
    shipment = _newest(rnd.shipments) if rnd else None
    last_updated = event.created_at if event else (rnd.updated_at if rnd else case.updated_at)
    body['latest_case'] = {
        'id': case.id,
        'case_number': case.case_number,
        'title': case.title,
        'round_no': rnd.round_no if rnd else None,
        'status': rnd.status if rnd else None,
        'last_updated': isoformat(last_updated),
        'location': event.location if event else None,
        'closed_at': isoformat(case.closed_at),
        **case_flags(case),
        'tracking': {
            'direction': shipment.direction,
            'carrier': shipment.carrier,
            'tracking_number': shipment.tracking_number,
            'status': shipment.status,
            'current_location': shipment.current_location,
        } if shipment else None,
    }
    return body


def _case_date_filter(date_from: Optional[datetime], date_to: Optional[datetime]):
    clauses = []
    if date_from:
        clauses.append(ServiceCase.created_at >= date_from)
    if date_to:
        clauses.append(ServiceCase.created_at <= date_to)
    return clauses


def fleet_stats(session: Session, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                now: Optional[datetime] = None) -> Dict[str, Any]:
    case_filter = _case_date_filter(date_from, date_to)

    total_cases = session.execute(select(func.count(ServiceCase.id)).where(*case_filter)).scalar_one()

    # Newest round first: the first status seen per case is that case's current status
    rounds = session.execute(
        select(ServiceRound.case_id, ServiceRound.status)
        .join(ServiceCase, ServiceRound.case_id == ServiceCase.id)
        .where(*case_filter)
        .order_by(ServiceRound.started_at.desc(), ServiceRound.round_no.desc())
    ).all()
    latest_status: Dict[int, str] = {}
    for case_id, status in rounds:
        latest_status.setdefault(case_id, status)
    distribution: Dict[str, int] = {}
    for status in latest_status.values():
        distribution[status] = distribution.get(status, 0) + 1

    completed = session.execute(
        select(ServiceRound.started_at, ServiceRound.completed_at)
        .join(ServiceCase, ServiceRound.case_id == ServiceCase.id)
        .where(ServiceRound.completed_at.is_not(None), *case_filter)
    ).all()
    avg_days = 0.0
    if completed:
        total_seconds = sum((done - start).total_seconds() for start, done in completed)
        avg_days = total_seconds / len(completed) / SECONDS_PER_DAY

    round_counts = (
        select(ServiceRound.case_id, func.count(ServiceRound.id).label('n'))
        .join(ServiceCase, ServiceRound.case_id == ServiceCase.id)
        .where(*case_filter)
        .group_by(ServiceRound.case_id)
        .subquery()
    )
    rework_cases = session.execute(select(func.count()).select_from(round_counts).where(round_counts.c.n > 1)).scalar_one()
    rework_rate = rework_cases / total_cases * 100 if total_cases else 0.0

    event_join = [StatusEvent.operator_id == User.id]
    if date_from:
        event_join.append(StatusEvent.created_at >= date_from)
    if date_to:
        event_join.append(StatusEvent.created_at <= date_to)
    ops = func.count(StatusEvent.id).label('operations')
    staff_rows = session.execute(
        select(User.id, User.username, ops)
        .outerjoin(StatusEvent, and_(*event_join))
        .where(User.role == ROLE_STAFF, User.status == User.STATUS_ACTIVE)
        .group_by(User.id, User.username)
        .order_by(ops.desc(), User.id)
        .limit(TOP_STAFF)
    ).all()

    now = now or utcnow()
    summary = {
        'recent_cases': session.execute(
            select(func.count(ServiceCase.id)).where(ServiceCase.created_at >= now - RECENT_WINDOW)
        ).scalar_one(),
        'active_cases': session.execute(
            select(func.count(ServiceCase.id)).where(ServiceCase.closed_at.is_(None))
        ).scalar_one(),
        'total_users': session.execute(select(func.count(User.id))).scalar_one(),
        'active_staff': session.execute(
            select(func.count(User.id)).where(User.role == ROLE_STAFF, User.status == User.STATUS_ACTIVE)
        ).scalar_one(),
        'total_customers': session.execute(select(func.count(Customer.id))).scalar_one(),
    }

    return {
        'total_cases': total_cases,
        'status_distribution': distribution,
        'average_resolution_days': round(avg_days, 1),
        'rework_cases': rework_cases,
        'rework_rate': round(rework_rate, 1),
        'staff_performance': [
            {'id': uid, 'username': username, 'operations_count': count} for uid, username, count in staff_rows
        ],
        'summary': summary,
    }


__all__ = ['device_overview', 'fleet_stats']
