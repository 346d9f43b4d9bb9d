from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.orm import Session

from servicetrack.errors import NotFound
from servicetrack.models.service_case import ServiceRound
from servicetrack.models.shipment import Shipment
from servicetrack.utils.clock import utcnow
from servicetrack.utils.log import get_logger
from servicetrack.utils.patch import Patch, UNSET
from servicetrack.utils.tx import transaction
from servicetrack.utils.validation import validate_status, parse_datetime

logger = get_logger('shipments')


def get_shipment(session: Session, shipment_id: int, for_update: bool = False) -> Shipment:
    stmt = select(Shipment).where(Shipment.id == shipment_id).execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    shipment = session.execute(stmt).scalar_one_or_none()
    if not shipment:
        raise NotFound('Shipment not found')
    return shipment


def create_shipment(session: Session, actor_id: int, round_id: int, direction: str,
                    carrier: Optional[str] = None, tracking_number: Optional[str] = None,
                    origin: Optional[str] = None, destination: Optional[str] = None,
                    notes: Optional[str] = None, estimated_arrival=None) -> Shipment:
    """Attach a PENDING shipment to an existing round."""
    validate_status(direction, Shipment.ALL_DIRECTIONS, 'direction')
    eta = parse_datetime(estimated_arrival, 'estimated_arrival')
    with transaction(session):
        if not session.get(ServiceRound, round_id):
            raise NotFound('Service round not found')
        shipment = Shipment(
            round_id=round_id, direction=direction, carrier=carrier, tracking_number=tracking_number,
            origin=origin, destination=destination, notes=notes, estimated_arrival=eta,
            status=Shipment.STATUS_PENDING, operator_id=actor_id,
        )
        session.add(shipment)
    logger.info('shipment %s (%s) created for round=%s', shipment.id, direction, round_id)
    return shipment


@dataclass
class ShipmentUpdate(Patch):
    REQUIRED = ('status',)
    status: Any = UNSET
    current_location: Any = UNSET
    notes: Any = UNSET
    actual_arrival: Any = UNSET

    @classmethod
    def from_payload(cls, data):
        patch = super().from_payload(data)
        if patch.status not in (UNSET, None):
            validate_status(patch.status, Shipment.ALL_STATUSES)
        if patch.actual_arrival is not UNSET:
            patch.actual_arrival = parse_datetime(patch.actual_arrival, 'actual_arrival')
        return patch


def update_shipment(session: Session, shipment_id: int, patch: ShipmentUpdate) -> Tuple[Shipment, Dict[str, Any]]:
    """Apply a partial update; stamp shipped_at / actual_arrival the first time only.

    An explicit actual_arrival in the patch wins over the automatic stamp.
    """
    with transaction(session):
        shipment = get_shipment(session, shipment_id, for_update=True)
        changes = patch.apply_to(shipment)
        status = changes.get('status')
        now = utcnow()
        if status == Shipment.STATUS_IN_TRANSIT and shipment.shipped_at is None:
            shipment.shipped_at = now
        if status in Shipment.ARRIVAL_STATUSES and shipment.actual_arrival is None:
            shipment.actual_arrival = now
    return shipment, changes


def update_shipment_status(session: Session, shipment_id: int, status: str,
                           location: Optional[str] = None) -> Shipment:
    patch = ShipmentUpdate(status=validate_status(status, Shipment.ALL_STATUSES))
    if location is not None:
        patch.current_location = location
    shipment, _ = update_shipment(session, shipment_id, patch)
    return shipment


def list_shipments(session: Session, direction: Optional[str] = None, status: Optional[str] = None,
                   round_id: Optional[int] = None):
    q = session.query(Shipment)
    if direction:
        q = q.filter(Shipment.direction == validate_status(direction, Shipment.ALL_DIRECTIONS, 'direction'))
    if status:
        q = q.filter(Shipment.status == validate_status(status, Shipment.ALL_STATUSES))
    if round_id is not None:
        q = q.filter(Shipment.round_id == round_id)
    return q.order_by(Shipment.created_at.desc(), Shipment.id.desc())


__all__ = ['get_shipment', 'create_shipment', 'ShipmentUpdate', 'update_shipment', 'update_shipment_status', 'list_shipments']
