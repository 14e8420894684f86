from __future__ import annotations
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import require_any_privilege, require_privilege, services
from ledger.models.catalog import Client
from ledger.services.scope import ScopeRequirement
from ledger.utils.listing import pagination_args, build_list_payload
from ledger.utils.patch import Patch
from ledger.utils.serialize import item_json, tax_rate_json
from ledger.utils.validation import require_str, optional_str, positive_int, money, percentage

cat_bp = Blueprint('catalog', __name__)

ORG = ScopeRequirement.ORGANIZATION
# Whoever edits bill lines has to be able to pick items.
ITEM_READERS = (('item', 'read'), ('bill', 'update'))

CLIENT_LIMITS = {'name': 100, 'identifier': 64, 'tax_id': 64, 'email': 128, 'phone': 32, 'address': 255}


def _client_json(c: Client):
    body = {'id': c.id, 'organization_id': c.organization_id}
    body.update({f: getattr(c, f) for f in CLIENT_LIMITS})
    return body


# --- Tax rates ---
@cat_bp.get('/tax-rates')
@require_privilege('tax_rate', 'read', scope=ORG)
def list_tax_rates():
    return {'data': [tax_rate_json(r) for r in services().catalog.list_tax_rates(g.scope)]}


@cat_bp.post('/tax-rates')
@require_privilege('tax_rate', 'create', scope=ORG)
def create_tax_rate():
    data = request.json or {}
    rate = services().catalog.create_tax_rate(
        g.scope,
        name=require_str(data.get('name'), 'name', 64),
        percentage=percentage(data.get('percentage')),
    )
    return tax_rate_json(rate), 201


# --- Items ---
@cat_bp.get('/items')
@require_any_privilege(*ITEM_READERS)
def list_items():
    limit, offset = pagination_args()
    rows, total = services().catalog.list_items(g.scope, limit, offset, search=request.args.get('q'))
    return build_list_payload([item_json(i) for i in rows], total, limit, offset)


@cat_bp.get('/items/<int:item_id>')
@require_any_privilege(*ITEM_READERS)
def get_item(item_id: int):
    return item_json(services().catalog.get_item(item_id, g.scope))


@cat_bp.post('/items')
@require_privilege('item', 'create')
def create_item():
    data = request.json or {}
    organization_wide = data.get('organization_wide', False)
    if not isinstance(organization_wide, bool):
        abort(400, description='organization_wide must be boolean')
    item = services().catalog.create_item(g.scope, {
        'name': require_str(data.get('name'), 'name', 100),
        'description': optional_str(data.get('description'), 'description', 500),
        'unit_price': money(data.get('unit_price'), 'unit_price', allow_zero=True),
        'tax_rate_id': positive_int(data.get('tax_rate_id'), 'tax_rate_id'),
        'organization_wide': organization_wide,
    })
    return item_json(item), 201


@cat_bp.put('/items/<int:item_id>')
@require_privilege('item', 'update')
def update_item(item_id: int):
    patch = Patch.from_payload(request.json, services().catalog.ITEM_FIELDS)
    if not patch:
        abort(400, description='no updatable fields supplied')
    cleaned = {}
    if 'name' in patch:
        cleaned['name'] = require_str(patch['name'], 'name', 100)
    if 'description' in patch:
        cleaned['description'] = optional_str(patch['description'], 'description', 500)
    if 'unit_price' in patch:
        cleaned['unit_price'] = money(patch['unit_price'], 'unit_price', allow_zero=True)
    if 'tax_rate_id' in patch:
        cleaned['tax_rate_id'] = positive_int(patch['tax_rate_id'], 'tax_rate_id')
    return item_json(services().catalog.update_item(item_id, g.scope, Patch(cleaned)))


@cat_bp.delete('/items/<int:item_id>')
@require_privilege('item', 'delete')
def delete_item(item_id: int):
    services().catalog.delete_item(item_id, g.scope)
    return '', 204


# --- Clients ---
@cat_bp.get('/clients')
@require_privilege('client', 'read', scope=ORG)
def list_clients():
    limit, offset = pagination_args()
    rows, total = services().catalog.list_clients(g.scope, limit, offset, search=request.args.get('q'))
    return build_list_payload([_client_json(c) for c in rows], total, limit, offset)


@cat_bp.get('/clients/<int:client_id>')
@require_privilege('client', 'read', scope=ORG)
def get_client(client_id: int):
    return _client_json(services().catalog.get_client(client_id, g.scope))


@cat_bp.post('/clients')
@require_privilege('client', 'create', scope=ORG)
def create_client():
    data = request.json or {}
    cleaned = {'name': require_str(data.get('name'), 'name', CLIENT_LIMITS['name'])}
    for field, max_len in CLIENT_LIMITS.items():
        if field != 'name':
            cleaned[field] = optional_str(data.get(field), field, max_len)
    return _client_json(services().catalog.create_client(g.scope, cleaned)), 201


@cat_bp.put('/clients/<int:client_id>')
@require_privilege('client', 'update', scope=ORG)
def update_client(client_id: int):
    patch = Patch.from_payload(request.json, services().catalog.CLIENT_FIELDS)
    if not patch:
        abort(400, description='no updatable fields supplied')
    for field, value in patch.items():
        if field == 'name':
            require_str(value, field, CLIENT_LIMITS[field])
        else:
            optional_str(value, field, CLIENT_LIMITS[field])
    return _client_json(services().catalog.update_client(client_id, g.scope, patch))


@cat_bp.delete('/clients/<int:client_id>')
@require_privilege('client', 'delete', scope=ORG)
def delete_client(client_id: int):
    services().catalog.delete_client(client_id, g.scope)
    return '', 204
