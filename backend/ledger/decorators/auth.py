from __future__ import annotations
from functools import wraps
from typing import Any, Callable, Tuple
from flask import current_app, g, request
from flask_jwt_extended import verify_jwt_in_request

from ledger.services.credentials import current_claims
from ledger.services.scope import ScopeRequirement


def services():
    return current_app.extensions['ledger']


def branch_selector(claims) -> Any:
    """Header wins over the branch claim of a branch-login token."""
    raw = request.headers.get(current_app.config['BRANCH_HEADER'])
    if raw is None or not raw.strip():
        return claims.branch_id
    return raw


def _guard(admit: Callable, scope: ScopeRequirement):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            claims = current_claims()
            g.claims = claims
            g.scope = admit(services().gate, claims.subject_id, scope, branch_selector(claims))
            return fn(*args, **kwargs)
        return wrapper
    return outer


def authenticated(fn):
    """Verified token, no scope beyond the subject's organization."""
    return _guard(
        lambda gate, subject, req, sel: gate.resolver.resolve(subject, sel, req),
        ScopeRequirement.NONE,
    )(fn)


def require_privilege(resource: str, action: str, scope: ScopeRequirement = ScopeRequirement.BRANCH):
    return _guard(lambda gate, subject, req, sel: gate.admit(subject, resource, action, req, sel), scope)


def require_any_privilege(*pairs: Tuple[str, str], scope: ScopeRequirement = ScopeRequirement.BRANCH):
    return _guard(lambda gate, subject, req, sel: gate.admit_any(subject, pairs, req, sel), scope)


def require_all_privileges(*pairs: Tuple[str, str], scope: ScopeRequirement = ScopeRequirement.BRANCH):
    return _guard(lambda gate, subject, req, sel: gate.admit_all(subject, pairs, req, sel), scope)
