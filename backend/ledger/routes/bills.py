from __future__ import annotations
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import require_privilege, services
from ledger.models.bill import Bill
from ledger.utils.listing import pagination_args, build_list_payload
from ledger.utils.patch import Patch
from ledger.utils.serialize import bill_json, stats_json
from ledger.utils.validation import validate_status, require_str, optional_str, optional_positive_int

bills_bp = Blueprint('bills', __name__)


def _reject_derived(data):
    # Totals are computed from lines only
    sent = [f for f in Bill.DERIVED_FIELDS if f in data]
    if sent:
        abort(400, description=f"{', '.join(sent)} cannot be set directly")


@bills_bp.get('')
@require_privilege('bill', 'read')
def list_bills():
    limit, offset = pagination_args()
    filters = {
        'status': request.args.get('status'),
        'user_id': optional_positive_int(request.args.get('user_id'), 'user_id'),
        'client_id': optional_positive_int(request.args.get('client_id'), 'client_id'),
    }
    if filters['status'] is not None:
        validate_status(filters['status'], Bill.ALL_STATUSES)
    rows, total = services().bills.list_bills(g.scope, filters, limit, offset)
    return build_list_payload([bill_json(b) for b in rows], total, limit, offset)


@bills_bp.get('/user/<int:user_id>')
@require_privilege('bill', 'read')
def bills_for_user(user_id: int):
    limit, offset = pagination_args()
    rows, total = services().bills.bills_for_user(user_id, g.scope, limit, offset)
    return build_list_payload([bill_json(b) for b in rows], total, limit, offset)


@bills_bp.get('/stats')
@require_privilege('bill', 'read')
def bill_stats():
    return stats_json(services().bills.bill_stats(g.scope))


@bills_bp.get('/<int:bill_id>')
@require_privilege('bill', 'read')
def get_bill(bill_id: int):
    bill = services().ledger.get_bill_with_totals(bill_id, g.scope)
    return bill_json(bill, lines=True)


@bills_bp.get('/public/<public_id>')
@require_privilege('bill', 'read')
def get_bill_by_public_id(public_id: str):
    bill = services().bills.get_bill_by_public_id(public_id, g.scope)
    return bill_json(services().ledger.get_bill_with_totals(bill.id, g.scope), lines=True)


@bills_bp.post('')
@require_privilege('bill', 'create')
def create_bill():
    data = request.json or {}
    _reject_derived(data)
    status = data.get('status', Bill.STATUS_DRAFT)
    validate_status(status, Bill.ALL_STATUSES)
    bill = services().bills.create_bill(g.scope, g.claims.subject_id, {
        'title': require_str(data.get('title'), 'title', 100),
        'description': optional_str(data.get('description'), 'description', 500),
        'status': status,
        'client_id': optional_positive_int(data.get('client_id'), 'client_id'),
    })
    return bill_json(bill), 201


@bills_bp.put('/<int:bill_id>')
@require_privilege('bill', 'update')
def update_bill(bill_id: int):
    data = request.json or {}
    _reject_derived(data)
    patch = Patch.from_payload(data, services().bills.UPDATABLE)
    if not patch:
        abort(400, description='no updatable fields supplied')
    if 'title' in patch:
        require_str(patch['title'], 'title', 100)
    if 'description' in patch:
        optional_str(patch['description'], 'description', 500)
    if 'status' in patch:
        validate_status(patch['status'], Bill.ALL_STATUSES)
    if 'client_id' in patch:
        optional_positive_int(patch['client_id'], 'client_id')
    bill = services().bills.update_bill(bill_id, g.scope, patch)
    return bill_json(bill)


@bills_bp.delete('/<int:bill_id>')
@require_privilege('bill', 'delete')
def delete_bill(bill_id: int):
    services().bills.delete_bill(bill_id, g.scope)
    return '', 204


@bills_bp.post('/<int:bill_id>/recalculate')
@require_privilege('bill', 'update')
def recalculate_bill(bill_id: int):
    # Resolve within scope first; recalculate itself is scope-agnostic
    services().bills.get_bill(bill_id, g.scope)
    services().ledger.recalculate(bill_id)
    return bill_json(services().ledger.get_bill_with_totals(bill_id, g.scope))
