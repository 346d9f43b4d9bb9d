"""initial schema: identities, grants, customers, devices, cases, rounds, events, shipments, audit

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table('users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=50), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('email', sa.String(length=128)),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        *_timestamps(),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_status', 'users', ['status'])

    op.create_table('staff_permissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('capability', sa.String(length=32), nullable=False),
        sa.Column('granted_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'capability', name='uq_staff_capability'),
    )
    op.create_index('ix_staff_permissions_user_id', 'staff_permissions', ['user_id'])

    op.create_table('customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True, unique=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('phone', sa.String(length=32)),
        sa.Column('email', sa.String(length=128)),
        sa.Column('address', sa.String(length=255)),
        *_timestamps(),
    )
    op.create_index('ix_customers_name', 'customers', ['name'])

    op.create_table('devices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('customer_id', sa.Integer(), sa.ForeignKey('customers.id'), nullable=False),
        sa.Column('brand', sa.String(length=64), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=False),
        sa.Column('imei', sa.String(length=32)),
        sa.Column('serial', sa.String(length=64)),
        sa.Column('color', sa.String(length=64)),
        sa.Column('storage', sa.String(length=32)),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
    )
    op.create_index('ix_devices_customer_id', 'devices', ['customer_id'])
    op.create_index('ix_devices_imei', 'devices', ['imei'])

    op.create_table('service_cases',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('device_id', sa.Integer(), sa.ForeignKey('devices.id'), nullable=False),
        sa.Column('case_number', sa.String(length=16), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        *_timestamps(),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
    )
    # Unique index is what serializes concurrent case-number allocation
    op.create_index('ix_service_cases_case_number', 'service_cases', ['case_number'], unique=True)
    op.create_index('ix_service_cases_device_id', 'service_cases', ['device_id'])
    op.create_index('ix_service_cases_created_at', 'service_cases', ['created_at'])

    op.create_table('service_rounds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('case_id', sa.Integer(), sa.ForeignKey('service_cases.id'), nullable=False),
        sa.Column('round_no', sa.Integer(), nullable=False),
        sa.Column('issue', sa.Text(), nullable=False),
        sa.Column('diagnosis', sa.Text()),
        sa.Column('resolution', sa.Text()),
        sa.Column('cost', sa.Numeric(10, 2), nullable=True),
        sa.Column('warranty_days', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='PENDING'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('case_id', 'round_no', name='uq_case_round_no'),
    )
    op.create_index('ix_service_rounds_case_id', 'service_rounds', ['case_id'])
    op.create_index('ix_service_rounds_status', 'service_rounds', ['status'])

    op.create_table('status_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('service_rounds.id'), nullable=False),
        sa.Column('from_status', sa.String(length=32), nullable=True),
        sa.Column('to_status', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('location', sa.String(length=128)),
        sa.Column('operator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_status_events_round_id', 'status_events', ['round_id'])
    op.create_index('ix_status_events_operator_id', 'status_events', ['operator_id'])
    op.create_index('ix_status_events_created_at', 'status_events', ['created_at'])

    op.create_table('shipments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('service_rounds.id'), nullable=False),
        sa.Column('direction', sa.String(length=16), nullable=False),
        sa.Column('carrier', sa.String(length=64)),
        sa.Column('tracking_number', sa.String(length=64)),
        sa.Column('origin', sa.String(length=128)),
        sa.Column('destination', sa.String(length=128)),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('current_location', sa.String(length=128)),
        sa.Column('notes', sa.Text()),
        sa.Column('estimated_arrival', sa.DateTime(), nullable=True),
        sa.Column('shipped_at', sa.DateTime(), nullable=True),
        sa.Column('actual_arrival', sa.DateTime(), nullable=True),
        sa.Column('operator_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_shipments_round_id', 'shipments', ['round_id'])
    op.create_index('ix_shipments_direction', 'shipments', ['direction'])
    op.create_index('ix_shipments_status', 'shipments', ['status'])
    op.create_index('ix_shipments_tracking_number', 'shipments', ['tracking_number'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('resource', sa.String(length=64), nullable=False),
        sa.Column('resource_id', sa.String(length=64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64)),
        sa.Column('user_agent', sa.String(length=255)),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    for table in ('audit_logs', 'shipments', 'status_events', 'service_rounds', 'service_cases',
                  'devices', 'customers', 'staff_permissions', 'users'):
        op.drop_table(table)
