from __future__ import annotations
from typing import Iterable, List, Optional
from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from servicetrack.constants.permissions import ALL_CAPABILITIES, ROLE_STAFF
from servicetrack.errors import NotFound, ValidationFailed
from servicetrack.models.authz import User, StaffPermission
from servicetrack.utils.tx import transaction
from servicetrack.utils.log import get_logger

logger = get_logger('permissions')


def list_grants(session: Session, staff_id: int) -> List[str]:
    rows = session.execute(
        select(StaffPermission.capability).where(StaffPermission.user_id == staff_id).order_by(StaffPermission.capability)
    ).scalars().all()
    return list(rows)


def grant_all(session: Session, staff_id: int, capabilities: Iterable[str], granted_by: Optional[int]) -> List[str]:
    """Replace the full capability set of a staff identity.

    Delete and insert share one transaction so no reader sees an empty or mixed
    set. Returns the capabilities held before the replacement.
    """
    wanted = sorted(set(capabilities))
    unknown = [c for c in wanted if c not in ALL_CAPABILITIES]
    if unknown:
        raise ValidationFailed('Unknown capability', details={'capabilities': unknown})
    user = session.get(User, staff_id)
    if not user:
        raise NotFound('User not found')
    if user.role != ROLE_STAFF:
        raise ValidationFailed('Permissions can only be granted to STAFF users', error_code='INVALID_TARGET')
    before = list_grants(session, staff_id)
    with transaction(session):
        session.execute(delete(StaffPermission).where(StaffPermission.user_id == staff_id))
        for cap in wanted:
            session.add(StaffPermission(user_id=staff_id, capability=cap, granted_by=granted_by))
    logger.info('capabilities replaced user=%s by=%s count=%d', staff_id, granted_by, len(wanted))
    return before


__all__ = ['list_grants', 'grant_all']
