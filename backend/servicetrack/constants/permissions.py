"""Central enum-like definitions to avoid typos in role/capability strings.
Extend cautiously; never rename codes silently - grants are persisted by code.
"""
from __future__ import annotations
from typing import Dict, List

ROLE_ADMIN = 'ADMIN'
ROLE_STAFF = 'STAFF'
ROLE_CUSTOMER = 'CUSTOMER'
ALL_ROLES = (ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER)

CASE_READ_ALL = 'CASE_READ_ALL'
CASE_READ_ASSIGNED = 'CASE_READ_ASSIGNED'
CASE_WRITE = 'CASE_WRITE'
DEVICE_READ = 'DEVICE_READ'
DEVICE_WRITE = 'DEVICE_WRITE'
CUSTOMER_READ_ALL = 'CUSTOMER_READ_ALL'
CUSTOMER_WRITE = 'CUSTOMER_WRITE'
SHIPMENT_READ = 'SHIPMENT_READ'
SHIPMENT_WRITE = 'SHIPMENT_WRITE'
AUDIT_READ = 'AUDIT_READ'

ALL_CAPABILITIES = (
    CASE_READ_ALL,
    CASE_READ_ASSIGNED,
    CASE_WRITE,
    DEVICE_READ,
    DEVICE_WRITE,
    CUSTOMER_READ_ALL,
    CUSTOMER_WRITE,
    SHIPMENT_READ,
    SHIPMENT_WRITE,
    AUDIT_READ,
)

# Either capability is enough to read cases
CASE_READ = (CASE_READ_ALL, CASE_READ_ASSIGNED)

CAPABILITY_PRESETS: Dict[str, List[str]] = {
    'Technician': [
        CASE_READ_ALL, CASE_WRITE,
        DEVICE_READ, DEVICE_WRITE,
        CUSTOMER_READ_ALL,
        SHIPMENT_READ, SHIPMENT_WRITE,
    ],
    'Logistics': [
        CASE_READ_ALL, CASE_WRITE,
        SHIPMENT_READ, SHIPMENT_WRITE,
        CUSTOMER_READ_ALL,
    ],
}

# Audit action codes
class AuditAction:
    CREATE_USER = 'CREATE_USER'
    UPDATE_USER = 'UPDATE_USER'
    DISABLE_USER = 'DISABLE_USER'
    ASSIGN_PERMISSION = 'ASSIGN_PERMISSION'
    UPDATE_CUSTOMER = 'UPDATE_CUSTOMER'
    CREATE_DEVICE = 'CREATE_DEVICE'
    UPDATE_DEVICE = 'UPDATE_DEVICE'
    CREATE_CASE = 'CREATE_CASE'
    UPDATE_CASE = 'UPDATE_CASE'
    CLOSE_CASE = 'CLOSE_CASE'
    CREATE_ROUND = 'CREATE_ROUND'
    UPDATE_ROUND = 'UPDATE_ROUND'
    UPDATE_STATUS = 'UPDATE_STATUS'
    CREATE_SHIPMENT = 'CREATE_SHIPMENT'
    UPDATE_SHIPMENT = 'UPDATE_SHIPMENT'
    LOGIN = 'LOGIN'
    LOGIN_FAILED = 'LOGIN_FAILED'
