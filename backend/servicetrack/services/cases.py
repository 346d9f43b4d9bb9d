from __future__ import annotations
"""Service case lifecycle: cases, rounds and status transitions.

Every compound write here runs inside ``transaction(session)`` so a case never
exists without round 1, and a round's ``status`` always equals the ``to_status``
of its newest StatusEvent.

Case numbers are ``CS`` + UTC date (YYYYMMDD) + 3-digit daily sequence. The
sequence comes from counting same-day cases; two creators racing for the same
number are serialized by the unique index on ``case_number``: the loser rolls
back and retries with the next sequence.
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional, Tuple
from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from servicetrack.errors import Conflict, NotFound, ValidationFailed
from servicetrack.models.customer import Device
from servicetrack.models.service_case import ServiceCase, ServiceRound, StatusEvent
from servicetrack.utils.clock import utcnow
from servicetrack.utils.fsm import TransitionValidator
from servicetrack.utils.log import get_logger
from servicetrack.utils.patch import Patch, UNSET
from servicetrack.utils.tx import transaction
from servicetrack.utils.validation import positive_decimal, positive_int, validate_status

logger = get_logger('cases')

CASE_NUMBER_PREFIX = 'CS'
DEFAULT_MAX_ATTEMPTS = 5

R = ServiceRound
_SIDE = {R.STATUS_RETURNED, R.STATUS_CANCELLED}
STRICT_ROUND_GRAPH = {
    R.STATUS_PENDING: {R.STATUS_RECEIVED} | _SIDE,
    R.STATUS_RECEIVED: {R.STATUS_DIAGNOSING} | _SIDE,
    R.STATUS_DIAGNOSING: {R.STATUS_AWAITING_PARTS, R.STATUS_REPAIRING} | _SIDE,
    R.STATUS_AWAITING_PARTS: {R.STATUS_REPAIRING} | _SIDE,
    R.STATUS_REPAIRING: {R.STATUS_AWAITING_PARTS, R.STATUS_QA} | _SIDE,
    R.STATUS_QA: {R.STATUS_REPAIRING, R.STATUS_READY_TO_SHIP, R.STATUS_SHIPPING} | _SIDE,
    R.STATUS_READY_TO_SHIP: {R.STATUS_SHIPPING} | _SIDE,
    R.STATUS_SHIPPING: {R.STATUS_DELIVERED, R.STATUS_RETURNED},
    R.STATUS_DELIVERED: {R.STATUS_CLOSED, R.STATUS_RETURNED},
    R.STATUS_CLOSED: {R.STATUS_RETURNED},
    R.STATUS_RETURNED: {R.STATUS_CLOSED},
    R.STATUS_CANCELLED: {R.STATUS_CLOSED},
}

ROUND_POLICIES = {
    'open': TransitionValidator(R.ALL_STATUSES, None),
    'strict': TransitionValidator(R.ALL_STATUSES, STRICT_ROUND_GRAPH),
}


def round_policy(name: Optional[str] = None) -> TransitionValidator:
    try:
        return ROUND_POLICIES[(name or 'open').lower()]
    except KeyError:
        raise ValueError(f'unknown round transition policy: {name}')


# ---------------- Case numbers ---------------- #

def case_number_prefix(day: date) -> str:
    return f"{CASE_NUMBER_PREFIX}{day.strftime('%Y%m%d')}"


def format_case_number(day: date, seq: int) -> str:
    return f"{case_number_prefix(day)}{seq:03d}"


def count_cases_with_prefix(session: Session, prefix: str) -> int:
    return session.execute(
        select(func.count(ServiceCase.id)).where(ServiceCase.case_number.like(f'{prefix}%'))
    ).scalar_one()


def next_case_sequence(session: Session, day: date, after: int = 0) -> int:
    """Same-day count + 1, but always beyond a sequence that already collided."""
    return max(count_cases_with_prefix(session, case_number_prefix(day)) + 1, after + 1)


# ---------------- Derived views ---------------- #

def latest_round(rounds: Iterable[ServiceRound]) -> Optional[ServiceRound]:
    rounds = list(rounds)
    if not rounds:
        return None
    return max(rounds, key=lambda r: (r.started_at, r.round_no))


def latest_case(cases: Iterable[ServiceCase]) -> Optional[ServiceCase]:
    cases = list(cases)
    if not cases:
        return None
    return max(cases, key=lambda c: (c.created_at, c.id))


def case_flags(case: ServiceCase) -> Dict[str, Any]:
    count = len(case.rounds)
    return {
        'round_count': count,
        'is_rework': count > 1,
        'multiple_reworks': any(r.round_no > 2 for r in case.rounds),
    }


def newest_first(items, attr: str = 'created_at'):
    return sorted(items, key=lambda x: (getattr(x, attr), x.id), reverse=True)


# ---------------- Lookups ---------------- #

def get_case(session: Session, case_id: int) -> ServiceCase:
    case = session.get(ServiceCase, case_id)
    if not case:
        raise NotFound('Service case not found')
    return case


def get_round(session: Session, round_id: int, for_update: bool = False) -> ServiceRound:
    stmt = select(ServiceRound).where(ServiceRound.id == round_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    rnd = session.execute(stmt).scalar_one_or_none()
    if not rnd:
        raise NotFound('Service round not found')
    return rnd


def list_cases(session: Session, search: Optional[str] = None, status: Optional[str] = None,
               customer_id: Optional[int] = None, date_from: Optional[datetime] = None,
               date_to: Optional[datetime] = None):
    """Query of cases newest first, filtered on the latest round's status when asked."""
    q = session.query(ServiceCase).join(Device, ServiceCase.device_id == Device.id)
    if search:
        like = f'%{search}%'
        q = q.filter(or_(
            ServiceCase.case_number.ilike(like),
            ServiceCase.title.ilike(like),
            Device.brand.ilike(like),
            Device.model.ilike(like),
            Device.imei.ilike(like),
        ))
    if status:
        validate_status(status, ServiceRound.ALL_STATUSES)
        latest_no = (
            select(ServiceRound.case_id, func.max(ServiceRound.round_no).label('max_no'))
            .group_by(ServiceRound.case_id)
            .subquery()
        )
        q = q.join(latest_no, latest_no.c.case_id == ServiceCase.id).join(
            ServiceRound,
            (ServiceRound.case_id == ServiceCase.id) & (ServiceRound.round_no == latest_no.c.max_no),
        ).filter(ServiceRound.status == status)
    if customer_id is not None:
        q = q.filter(Device.customer_id == customer_id)
    if date_from:
        q = q.filter(ServiceCase.created_at >= date_from)
    if date_to:
        q = q.filter(ServiceCase.created_at <= date_to)
    return q.order_by(ServiceCase.created_at.desc(), ServiceCase.id.desc())


# ---------------- Mutations ---------------- #

def _new_round(session: Session, case_id: int, round_no: int, issue: str, actor_id: int, now: datetime) -> ServiceRound:
    rnd = ServiceRound(case_id=case_id, round_no=round_no, issue=issue, status=ServiceRound.STATUS_PENDING, started_at=now)
    session.add(rnd)
    session.flush()
    session.add(StatusEvent(
        round_id=rnd.id, from_status=None, to_status=ServiceRound.STATUS_PENDING,
        operator_id=actor_id, created_at=now,
    ))
    return rnd


def open_case(session: Session, actor_id: int, device_id: int, title: str, issue: str,
              description: Optional[str] = None, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
              now: Optional[datetime] = None) -> ServiceCase:
    """Create a case with round 1 (PENDING) and its initial status event."""
    if not title or not issue:
        raise ValidationFailed('title and issue required', details={k: 'required' for k, v in (('title', title), ('issue', issue)) if not v})
    if not session.get(Device, device_id):
        raise NotFound('Device not found')
    now = now or utcnow()
    day = now.date()
    collided = 0
    for attempt in range(1, max_attempts + 1):
        seq = next_case_sequence(session, day, collided)
        number = format_case_number(day, seq)
        try:
            with transaction(session):
                case = ServiceCase(device_id=device_id, case_number=number, title=title,
                                   description=description, created_at=now, updated_at=now)
                session.add(case)
                session.flush()
                _new_round(session, case.id, 1, issue, actor_id, now)
        except IntegrityError:
            logger.warning('case number %s already taken (attempt %d/%d)', number, attempt, max_attempts)
            collided = seq
            continue
        logger.info('case %s opened on device=%s by user=%s', number, device_id, actor_id)
        return case
    raise Conflict('Could not allocate a unique case number', error_code='CASE_NUMBER_CONFLICT')


def transition_round(session: Session, actor_id: int, round_id: int, to_status: str,
                     notes: Optional[str] = None, location: Optional[str] = None,
                     policy: Optional[TransitionValidator] = None) -> Tuple[ServiceRound, StatusEvent]:
    """Append a status event and move the round to ``to_status`` atomically."""
    policy = policy or round_policy()
    with transaction(session):
        rnd = get_round(session, round_id, for_update=True)
        policy.assert_can_transition(rnd.status, to_status)
        now = utcnow()
        event = StatusEvent(
            round_id=rnd.id, from_status=rnd.status, to_status=to_status,
            notes=notes, location=location, operator_id=actor_id, created_at=now,
        )
        session.add(event)
        rnd.status = to_status
        if to_status in ServiceRound.COMPLETING_STATUSES and rnd.completed_at is None:
            rnd.completed_at = now
    return rnd, event


def open_rework_round(session: Session, actor_id: int, case_id: int, issue: str) -> ServiceRound:
    """Open round N+1 after the latest round was delivered, returned, closed or cancelled."""
    if not issue:
        raise ValidationFailed('issue required', details={'issue': 'required'})
    case = get_case(session, case_id)
    current = latest_round(case.rounds)
    if current is None or current.status not in ServiceRound.REWORK_ELIGIBLE_STATUSES:
        raise ValidationFailed(
            'A new round needs the latest round to be DELIVERED, RETURNED, CLOSED or CANCELLED',
            details={'status': current.status if current else None},
        )
    try:
        with transaction(session):
            max_no = session.execute(
                select(func.max(ServiceRound.round_no)).where(ServiceRound.case_id == case.id)
            ).scalar_one() or 0
            rnd = _new_round(session, case.id, max_no + 1, issue, actor_id, utcnow())
    except IntegrityError:
        raise Conflict('Round number already taken, reload the case', error_code='ROUND_CONFLICT')
    session.refresh(case)
    logger.info('round %d opened on case %s by user=%s', rnd.round_no, case.case_number, actor_id)
    return rnd


@dataclass
class RoundUpdate(Patch):
    diagnosis: Any = UNSET
    resolution: Any = UNSET
    cost: Any = UNSET
    warranty_days: Any = UNSET

    @classmethod
    def from_payload(cls, data):
        patch = super().from_payload(data)
        if patch.cost is not UNSET:
            patch.cost = positive_decimal(patch.cost, 'cost')
        if patch.warranty_days is not UNSET:
            patch.warranty_days = positive_int(patch.warranty_days, 'warranty_days')
        return patch


@dataclass
class CaseUpdate(Patch):
    REQUIRED = ('title',)
    title: Any = UNSET
    description: Any = UNSET


def update_round(session: Session, round_id: int, patch: RoundUpdate) -> Tuple[ServiceRound, Dict[str, Any]]:
    """Partial update of round details; never touches status."""
    with transaction(session):
        rnd = get_round(session, round_id)
        changes = patch.apply_to(rnd)
    return rnd, changes


def update_case(session: Session, case_id: int, patch: CaseUpdate) -> Tuple[ServiceCase, Dict[str, Any]]:
    with transaction(session):
        case = get_case(session, case_id)
        changes = patch.apply_to(case)
    return case, changes


def close_case(session: Session, case_id: int) -> Tuple[ServiceCase, bool]:
    """Stamp ``closed_at``; round statuses are left as they are.

    Returns (case, newly_closed). Closing an already closed case keeps the first stamp.
    """
    with transaction(session):
        case = get_case(session, case_id)
        if case.closed_at is not None:
            return case, False
        case.closed_at = utcnow()
    return case, True


__all__ = [
    'round_policy', 'STRICT_ROUND_GRAPH', 'case_number_prefix', 'format_case_number', 'count_cases_with_prefix',
    'next_case_sequence', 'latest_round', 'latest_case', 'case_flags', 'newest_first', 'get_case', 'get_round',
    'list_cases', 'open_case', 'transition_round', 'open_rework_round', 'RoundUpdate', 'CaseUpdate',
    'update_round', 'update_case', 'close_case',
]
