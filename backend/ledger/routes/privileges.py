from __future__ import annotations
from datetime import datetime, timezone
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import require_privilege, services
from ledger.models.authz import Privilege, UserPrivilege
from ledger.services.scope import ScopeRequirement
from ledger.utils.patch import Patch
from ledger.utils.serialize import iso
from ledger.utils.validation import require_str, optional_str, positive_int

priv_bp = Blueprint('privileges', __name__)

# The catalog is global; grants are confined to the caller's organization.
CATALOG = ScopeRequirement.NONE
TENANT = ScopeRequirement.ORGANIZATION


def _privilege_json(p: Privilege):
    return {
        'id': p.id,
        'name': p.name,
        'description': p.description,
        'resource': p.resource,
        'action': p.action,
        'is_active': p.is_active,
    }


def _grant_json(grant: UserPrivilege):
    return {
        'id': grant.id,
        'user_id': grant.user_id,
        'privilege': _privilege_json(grant.privilege),
        'granted_by': grant.granted_by,
        'expires_at': iso(grant.expires_at),
        'is_active': grant.is_active,
    }


def _parse_expiry(raw):
    if raw is None:
        return None
    if not isinstance(raw, str):
        abort(400, description='expires_at must be an ISO-8601 string')
    try:
        ts = datetime.fromisoformat(raw.replace('Z', '+00:00'))
    except ValueError:
        abort(400, description='expires_at must be an ISO-8601 string')
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@priv_bp.get('')
@require_privilege('privilege', 'read', scope=CATALOG)
def list_privileges():
    return {'data': [_privilege_json(p) for p in services().privileges.list_privileges()]}


@priv_bp.get('/<int:privilege_id>')
@require_privilege('privilege', 'read', scope=CATALOG)
def get_privilege(privilege_id: int):
    return _privilege_json(services().privileges.get_privilege(privilege_id))


@priv_bp.post('')
@require_privilege('privilege', 'create', scope=CATALOG)
def create_privilege():
    data = request.json or {}
    privilege = services().privileges.create_privilege(
        name=require_str(data.get('name'), 'name', 64),
        resource=require_str(data.get('resource'), 'resource', 50),
        action=require_str(data.get('action'), 'action', 50),
        description=optional_str(data.get('description'), 'description', 255),
    )
    return _privilege_json(privilege), 201


@priv_bp.put('/<int:privilege_id>')
@require_privilege('privilege', 'update', scope=CATALOG)
def update_privilege(privilege_id: int):
    patch = Patch.from_payload(request.json, services().privileges.UPDATABLE)
    if not patch:
        abort(400, description='no updatable fields supplied')
    for field, max_len in (('name', 64), ('resource', 50), ('action', 50)):
        if field in patch:
            require_str(patch[field], field, max_len)
    if 'description' in patch:
        optional_str(patch['description'], 'description', 255)
    if 'is_active' in patch and not isinstance(patch['is_active'], bool):
        abort(400, description='is_active must be boolean')
    return _privilege_json(services().privileges.update_privilege(privilege_id, patch))


@priv_bp.delete('/<int:privilege_id>')
@require_privilege('privilege', 'delete', scope=CATALOG)
def delete_privilege(privilege_id: int):
    services().privileges.deactivate_privilege(privilege_id)
    return '', 204


@priv_bp.post('/initialize')
@require_privilege('privilege', 'create', scope=CATALOG)
def initialize_privileges():
    created = services().privileges.initialize_default_privileges()
    return {'created': [p.name for p in created]}, 201


@priv_bp.get('/<int:privilege_id>/users')
@require_privilege('privilege', 'read', scope=TENANT)
def privilege_users(privilege_id: int):
    grants = services().privileges.users_with_privilege(privilege_id, g.scope)
    return {'data': [{'user_id': gr.user_id, 'username': gr.user.username, 'expires_at': iso(gr.expires_at)} for gr in grants]}


@priv_bp.get('/users/<int:user_id>')
@require_privilege('privilege', 'read', scope=TENANT)
def user_privileges(user_id: int):
    return {'data': [_grant_json(gr) for gr in services().privileges.user_grants(user_id, g.scope)]}


@priv_bp.post('/grant')
@require_privilege('privilege', 'grant', scope=TENANT)
def grant_privilege():
    data = request.json or {}
    grant = services().privileges.grant(
        user_id=positive_int(data.get('user_id'), 'user_id'),
        privilege_id=positive_int(data.get('privilege_id'), 'privilege_id'),
        granted_by=g.claims.subject_id,
        scope=g.scope,
        expires_at=_parse_expiry(data.get('expires_at')),
    )
    return _grant_json(grant), 201


@priv_bp.post('/revoke')
@require_privilege('privilege', 'revoke', scope=TENANT)
def revoke_privilege():
    data = request.json or {}
    revoked = services().privileges.revoke(
        user_id=positive_int(data.get('user_id'), 'user_id'),
        privilege_id=positive_int(data.get('privilege_id'), 'privilege_id'),
        scope=g.scope,
    )
    return {'revoked': revoked}
