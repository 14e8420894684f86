from __future__ import annotations
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import require_all_privileges, require_privilege, services
from ledger.utils.listing import pagination_args, build_list_payload
from ledger.utils.patch import Patch
from ledger.utils.serialize import bill_json, item_json, line_json, stats_json
from ledger.utils.validation import positive_int, optional_positive_int, optional_str, money, quantity

bill_items_bp = Blueprint('bill_items', __name__)

LINE_FIELDS = ('quantity', 'unit_price', 'notes')
MAX_BULK_LINES = 100


def _line_spec(data):
    if not isinstance(data, dict):
        abort(400, description='each line must be an object')
    spec = {
        'item_id': positive_int(data.get('item_id'), 'item_id'),
        'quantity': quantity(data.get('quantity', 1)),
        'notes': optional_str(data.get('notes'), 'notes', 500),
    }
    if data.get('unit_price') is not None:
        spec['unit_price'] = money(data['unit_price'], 'unit_price', allow_zero=True)
    return spec


def _line_response(line, bill_id: int):
    bill = services().ledger.get_bill_with_totals(bill_id, g.scope)
    return {'item': line_json(line), 'bill': bill_json(bill)}


@bill_items_bp.get('')
@require_privilege('bill', 'read')
def list_all_lines():
    limit, offset = pagination_args()
    rows, total = services().ledger.list_all_lines(
        g.scope,
        bill_id=optional_positive_int(request.args.get('bill_id'), 'bill_id'),
        item_id=optional_positive_int(request.args.get('item_id'), 'item_id'),
        limit=limit,
        offset=offset,
    )
    data = []
    for line in rows:
        body = line_json(line, with_item=True)
        body['bill'] = {'id': line.bill.id, 'title': line.bill.title, 'user_id': line.bill.user_id}
        data.append(body)
    return build_list_payload(data, total, limit, offset)


@bill_items_bp.get('/item/<int:item_id>')
@require_all_privileges(('bill', 'read'), ('item', 'read'))
def bills_for_item(item_id: int):
    item, lines = services().ledger.bills_for_item(item_id, g.scope)
    return {
        'item': item_json(item),
        'data': [dict(line_json(line), bill=bill_json(line.bill)) for line in lines],
        'total_bills': len(lines),
    }


@bill_items_bp.get('/bill/<int:bill_id>')
@require_privilege('bill', 'read')
def list_lines(bill_id: int):
    lines = services().ledger.list_lines(bill_id, g.scope)
    return {'data': [line_json(line, with_item=True) for line in lines]}


@bill_items_bp.get('/stats')
@require_privilege('bill', 'read')
def line_stats():
    stats = services().ledger.line_stats(
        g.scope,
        bill_id=optional_positive_int(request.args.get('bill_id'), 'bill_id'),
        item_id=optional_positive_int(request.args.get('item_id'), 'item_id'),
    )
    return stats_json(stats)


@bill_items_bp.get('/<int:line_id>')
@require_privilege('bill', 'read')
def get_line(line_id: int):
    return line_json(services().ledger.get_line(line_id, g.scope), with_item=True)


@bill_items_bp.post('')
@require_privilege('bill', 'update')
def add_line():
    data = request.json or {}
    bill_id = positive_int(data.get('bill_id'), 'bill_id')
    spec = _line_spec(data)
    line = services().ledger.add_line(bill_id, spec.pop('item_id'), spec.pop('quantity'), g.scope, **spec)
    return _line_response(line, bill_id), 201


@bill_items_bp.post('/bulk')
@require_privilege('bill', 'update')
def bulk_add_lines():
    data = request.json or {}
    bill_id = positive_int(data.get('bill_id'), 'bill_id')
    items = data.get('items')
    if not isinstance(items, list) or not items:
        abort(400, description='items must be a non-empty list')
    if len(items) > MAX_BULK_LINES:
        abort(400, description=f'at most {MAX_BULK_LINES} items per request')
    lines = services().ledger.bulk_add_lines(bill_id, [_line_spec(i) for i in items], g.scope)
    bill = services().ledger.get_bill_with_totals(bill_id, g.scope)
    return {'items': [line_json(line) for line in lines], 'bill': bill_json(bill)}, 201


@bill_items_bp.put('/<int:line_id>')
@require_privilege('bill', 'update')
def update_line(line_id: int):
    patch = Patch.from_payload(request.json, LINE_FIELDS)
    if not patch:
        abort(400, description='no updatable fields supplied')
    cleaned = {}
    if 'quantity' in patch:
        cleaned['quantity'] = quantity(patch['quantity'])
    if 'unit_price' in patch:
        cleaned['unit_price'] = money(patch['unit_price'], 'unit_price', allow_zero=True)
    if 'notes' in patch:
        # null clears the note
        cleaned['notes'] = optional_str(patch['notes'], 'notes', 500)
    line = services().ledger.update_line(line_id, Patch(cleaned), g.scope)
    return _line_response(line, line.bill_id)


@bill_items_bp.delete('/<int:line_id>')
@require_privilege('bill', 'update')
def remove_line(line_id: int):
    line = services().ledger.get_line(line_id, g.scope)
    bill_id = line.bill_id
    services().ledger.remove_line(line_id, g.scope)
    return {'bill': bill_json(services().ledger.get_bill_with_totals(bill_id, g.scope))}
