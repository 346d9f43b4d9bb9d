from __future__ import annotations
"""JSON projections shared by the staff, admin and customer blueprints."""
from typing import Any, Dict, List, Optional

from servicetrack.models.authz import User
from servicetrack.models.audit import AuditLog
from servicetrack.models.customer import Customer, Device
from servicetrack.models.service_case import ServiceCase, ServiceRound, StatusEvent
from servicetrack.models.shipment import Shipment
from servicetrack.services.cases import case_flags, latest_case, latest_round, newest_first
from servicetrack.utils.clock import isoformat


def user_json(u: User, capabilities: Optional[List[str]] = None) -> Dict[str, Any]:
    body = {
        'id': u.id,
        'username': u.username,
        'role': u.role,
        'email': u.email,
        'phone': u.phone,
        'status': u.status,
        'customer_id': u.customer.id if u.customer else None,
        'created_at': isoformat(u.created_at),
        'updated_at': isoformat(u.updated_at),
    }
    if capabilities is not None:
        body['capabilities'] = capabilities
    return body


def customer_json(c: Customer) -> Dict[str, Any]:
    return {
        'id': c.id,
        'user_id': c.user_id,
        'name': c.name,
        'phone': c.phone,
        'email': c.email,
        'address': c.address,
        'created_at': isoformat(c.created_at),
        'updated_at': isoformat(c.updated_at),
    }


def device_json(d: Device) -> Dict[str, Any]:
    return {
        'id': d.id,
        'customer_id': d.customer_id,
        'brand': d.brand,
        'model': d.model,
        'imei': d.imei,
        'serial': d.serial,
        'color': d.color,
        'storage': d.storage,
        'notes': d.notes,
        'created_at': isoformat(d.created_at),
        'updated_at': isoformat(d.updated_at),
    }


def event_json(e: StatusEvent) -> Dict[str, Any]:
    return {
        'id': e.id,
        'round_id': e.round_id,
        'from_status': e.from_status,
        'to_status': e.to_status,
        'notes': e.notes,
        'location': e.location,
        'operator': {'id': e.operator.id, 'username': e.operator.username} if e.operator else None,
        'created_at': isoformat(e.created_at),
    }


def shipment_json(s: Shipment) -> Dict[str, Any]:
    return {
        'id': s.id,
        'round_id': s.round_id,
        'direction': s.direction,
        'carrier': s.carrier,
        'tracking_number': s.tracking_number,
        'origin': s.origin,
        'destination': s.destination,
        'status': s.status,
        'current_location': s.current_location,
        'notes': s.notes,
        'estimated_arrival': isoformat(s.estimated_arrival),
        'shipped_at': isoformat(s.shipped_at),
        'actual_arrival': isoformat(s.actual_arrival),
        'operator_id': s.operator_id,
        'created_at': isoformat(s.created_at),
        'updated_at': isoformat(s.updated_at),
    }


def round_json(r: ServiceRound, with_history: bool = False) -> Dict[str, Any]:
    body = {
        'id': r.id,
        'case_id': r.case_id,
        'round_no': r.round_no,
        'issue': r.issue,
        'diagnosis': r.diagnosis,
        'resolution': r.resolution,
        'cost': float(r.cost) if r.cost is not None else None,
        'warranty_days': r.warranty_days,
        'status': r.status,
        'started_at': isoformat(r.started_at),
        'completed_at': isoformat(r.completed_at),
        'updated_at': isoformat(r.updated_at),
    }
    if with_history:
        body['events'] = [event_json(e) for e in newest_first(r.events)]
        body['shipments'] = [shipment_json(s) for s in newest_first(r.shipments)]
    return body


def case_json(c: ServiceCase, detail: bool = False) -> Dict[str, Any]:
    """Case row; ``detail`` adds every round newest first with events and shipments."""
    current = latest_round(c.rounds)
    body = {
        'id': c.id,
        'device_id': c.device_id,
        'case_number': c.case_number,
        'title': c.title,
        'description': c.description,
        'created_at': isoformat(c.created_at),
        'updated_at': isoformat(c.updated_at),
        'closed_at': isoformat(c.closed_at),
        'latest_round': round_json(current) if current else None,
        **case_flags(c),
    }
    if detail:
        rounds = sorted(c.rounds, key=lambda r: (r.started_at, r.round_no), reverse=True)
        body['rounds'] = [round_json(r, with_history=True) for r in rounds]
    return body


def device_with_latest_json(d: Device) -> Dict[str, Any]:
    body = device_json(d)
    case = latest_case(d.cases)
    body['latest_case'] = case_json(case) if case else None
    return body


def audit_json(a: AuditLog) -> Dict[str, Any]:
    return {
        'id': a.id,
        'actor_user_id': a.actor_user_id,
        'action': a.action,
        'resource': a.resource,
        'resource_id': a.resource_id,
        'details': a.details or {},
        'ip_address': a.ip_address,
        'user_agent': a.user_agent,
        'created_at': isoformat(a.created_at),
    }
