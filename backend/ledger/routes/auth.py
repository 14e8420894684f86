from __future__ import annotations
from flask import Blueprint, request, abort, g

from ledger.decorators.auth import authenticated, require_privilege, services
from ledger.models.tenancy import User
from ledger.services.scope import ScopeRequirement
from ledger.utils.serialize import iso, stats_json
from ledger.utils.validation import require_str, optional_str, validate_choice

auth_bp = Blueprint('auth', __name__)


def _user_json(user: User):
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'organization_id': user.organization_id,
        'created_at': iso(user.created_at),
    }


def _credentials(data):
    login = data.get('login') or data.get('username') or data.get('email')
    password = data.get('password')
    if not login or not password:
        abort(400, description='login & password required')
    return login, password


@auth_bp.post('/register')
def register():
    data = request.json or {}
    username = require_str(data.get('username'), 'username', 50, min_len=3)
    email = require_str(data.get('email'), 'email', 128)
    if '@' not in email:
        abort(400, description='email invalid')
    password = require_str(data.get('password'), 'password', 128, min_len=6)
    organization_name = optional_str(data.get('organization_name'), 'organization_name', 100)
    result = services().users.register(username, email, password, organization_name=organization_name)
    return {'user': _user_json(result['user']), 'access_token': result['access_token']}, 201


@auth_bp.post('/login')
def login():
    data = request.json or {}
    result = services().users.login(*_credentials(data))
    return {'user': _user_json(result['user']), 'access_token': result['access_token']}


@auth_bp.post('/branch-login')
def branch_login():
    data = request.json or {}
    login, password = _credentials(data)
    result = services().users.login_to_branch(login, password, data.get('branch_id'))
    branch = result['branch']
    return {
        'user': _user_json(result['user']),
        'branch': {'id': branch.id, 'name': branch.name, 'code': branch.code},
        'access_token': result['access_token'],
    }


@auth_bp.get('/me')
@authenticated
def me():
    svc = services()
    user = svc.users.profile(g.claims.subject_id)
    body = _user_json(user)
    body['branches'] = [
        {'id': link.branch.id, 'name': link.branch.name, 'is_primary': link.is_primary, 'can_login': link.can_login}
        for link in user.user_branches
    ]
    body['privileges'] = [
        {'name': grant.privilege.name, 'resource': grant.privilege.resource, 'action': grant.privilege.action,
         'expires_at': iso(grant.expires_at)}
        for grant in svc.oracle.effective_privileges(user.id)
    ]
    return body


@auth_bp.get('/users')
@require_privilege('user', 'read', scope=ScopeRequirement.ORGANIZATION)
def list_users():
    return {'data': [_user_json(u) for u in services().users.list_users(g.scope)]}


@auth_bp.post('/users')
@require_privilege('user', 'create', scope=ScopeRequirement.ORGANIZATION)
def create_user():
    data = request.json or {}
    username = require_str(data.get('username'), 'username', 50, min_len=3)
    email = require_str(data.get('email'), 'email', 128)
    password = require_str(data.get('password'), 'password', 128, min_len=6)
    # Owners are only created by registration
    role = validate_choice(data.get('role', User.ROLE_USER), (User.ROLE_ADMIN, User.ROLE_USER), 'role')
    user = services().users.create_user(g.scope, username, email, password, role=role)
    return _user_json(user), 201


@auth_bp.get('/users/<int:user_id>/stats')
@require_privilege('user', 'read')
def user_stats(user_id: int):
    stats = services().users.user_stats(user_id, g.scope)
    user = stats.pop('user')
    return {'user': {'id': user.id, 'username': user.username, 'email': user.email}, 'stats': stats_json(stats)}


@auth_bp.delete('/users/<int:user_id>')
@require_privilege('user', 'delete', scope=ScopeRequirement.ORGANIZATION)
def delete_user(user_id: int):
    if user_id == g.claims.subject_id:
        abort(400, description='cannot delete yourself')
    services().users.delete_user(user_id, g.scope)
    return '', 204
