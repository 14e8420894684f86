from __future__ import annotations
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import require_privilege, services
from ledger.models.tenancy import Branch, UserBranch
from ledger.services.scope import ScopeRequirement
from ledger.utils.patch import Patch
from ledger.utils.serialize import iso
from ledger.utils.validation import require_str, optional_str, positive_int

branches_bp = Blueprint('branches', __name__)

ORG = ScopeRequirement.ORGANIZATION


def _branch_json(b: Branch):
    return {
        'id': b.id,
        'organization_id': b.organization_id,
        'name': b.name,
        'code': b.code,
        'address': b.address,
        'phone': b.phone,
        'email': b.email,
        'is_active': b.is_active,
        'created_at': iso(b.created_at),
    }


def _link_json(link: UserBranch):
    return {
        'user_id': link.user_id,
        'branch_id': link.branch_id,
        'is_primary': link.is_primary,
        'can_login': link.can_login,
    }


def _flag(data, field, default=None):
    value = data.get(field, default)
    if not isinstance(value, bool):
        abort(400, description=f'{field} must be boolean')
    return value


@branches_bp.get('')
@require_privilege('branch', 'read', scope=ORG)
def list_branches():
    include_inactive = request.args.get('include_inactive') in ('1', 'true')
    return {'data': [_branch_json(b) for b in services().branches.list_branches(g.scope, include_inactive)]}


@branches_bp.get('/<int:branch_id>')
@require_privilege('branch', 'read', scope=ORG)
def get_branch(branch_id: int):
    return _branch_json(services().branches.get_branch(branch_id, g.scope))


@branches_bp.post('')
@require_privilege('branch', 'create', scope=ORG)
def create_branch():
    data = request.json or {}
    branch = services().branches.create_branch(
        g.scope,
        name=require_str(data.get('name'), 'name', 100),
        code=require_str(data.get('code'), 'code', 20),
        address=optional_str(data.get('address'), 'address', 255),
        phone=optional_str(data.get('phone'), 'phone', 32),
        email=optional_str(data.get('email'), 'email', 128),
    )
    return _branch_json(branch), 201


@branches_bp.put('/<int:branch_id>')
@require_privilege('branch', 'update', scope=ORG)
def update_branch(branch_id: int):
    patch = Patch.from_payload(request.json, services().branches.UPDATABLE)
    if not patch:
        abort(400, description='no updatable fields supplied')
    for field, max_len in (('name', 100), ('code', 20)):
        if field in patch:
            require_str(patch[field], field, max_len)
    for field, max_len in (('address', 255), ('phone', 32), ('email', 128)):
        if field in patch:
            optional_str(patch[field], field, max_len)
    if 'is_active' in patch:
        _flag(patch, 'is_active')
    return _branch_json(services().branches.update_branch(branch_id, g.scope, patch))


@branches_bp.post('/<int:branch_id>/users')
@require_privilege('branch', 'update', scope=ORG)
def add_branch_user(branch_id: int):
    data = request.json or {}
    link = services().branches.add_user(
        branch_id,
        positive_int(data.get('user_id'), 'user_id'),
        g.scope,
        is_primary=_flag(data, 'is_primary', False),
        can_login=_flag(data, 'can_login', True),
    )
    return _link_json(link), 201


@branches_bp.put('/<int:branch_id>/users/<int:user_id>')
@require_privilege('branch', 'update', scope=ORG)
def update_branch_user(branch_id: int, user_id: int):
    patch = Patch.from_payload(request.json, ('is_primary', 'can_login'))
    if not patch:
        abort(400, description='no updatable fields supplied')
    for field in patch.keys():
        _flag(patch, field)
    return _link_json(services().branches.update_user_access(branch_id, user_id, g.scope, patch))


@branches_bp.delete('/<int:branch_id>/users/<int:user_id>')
@require_privilege('branch', 'update', scope=ORG)
def remove_branch_user(branch_id: int, user_id: int):
    services().branches.remove_user(branch_id, user_id, g.scope)
    return '', 204


@branches_bp.get('/mine')
@require_privilege('branch', 'read', scope=ORG)
def my_branches():
    links = services().branches.user_branches(g.claims.subject_id, g.scope)
    return {'data': [dict(_link_json(link), name=link.branch.name, code=link.branch.code) for link in links]}
