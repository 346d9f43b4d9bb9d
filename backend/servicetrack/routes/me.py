from flask import Blueprint
from servicetrack import get_db
from servicetrack.constants.permissions import ROLE_CUSTOMER
from servicetrack.decorators.auth import current_access, require_role
from servicetrack.errors import NotFound
from servicetrack.serializers import case_json, customer_json, device_json
from servicetrack.services.cases import newest_first
from servicetrack.services.customers import get_customer, get_device
from servicetrack.services.policy import authorize, customer_filter
from servicetrack.services.stats import device_overview

me_bp = Blueprint('me', __name__)


def _own_customer_id() -> int:
    customer_id = customer_filter(current_access())
    if customer_id is None:
        raise NotFound('Customer profile not found')
    return customer_id


@me_bp.get('/overview')
@require_role(ROLE_CUSTOMER)
def overview():
    customer = get_customer(get_db(), _own_customer_id())
    return {
        'customer': customer_json(customer),
        'devices': [device_overview(d) for d in newest_first(customer.devices)],
    }


@me_bp.get('/devices/<int:device_id>')
@require_role(ROLE_CUSTOMER)
def device_history(device_id: int):
    # Foreign and missing devices both surface as the same NotFound
    device = get_device(get_db(), device_id, customer_id=_own_customer_id())
    authorize(current_access(), (), customer_id=device.customer_id)
    body = device_json(device)
    body['cases'] = [case_json(c, detail=True) for c in newest_first(device.cases)]
    return body
