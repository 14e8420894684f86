from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity

from ledger.errors import Unauthenticated
from ledger.models.tenancy import User


@dataclass(frozen=True)
class Claims:
    """Verified token contents. Claims are hints only; scope is always re-resolved."""
    subject_id: int
    organization_id: Optional[int] = None
    branch_id: Optional[int] = None
    role: Optional[str] = None


def current_claims() -> Claims:
    """Read the claims of the JWT already verified for this request."""
    identity = get_jwt_identity()
    try:
        subject_id = int(identity)
    except (TypeError, ValueError):
        raise Unauthenticated('Invalid token subject')
    claims = get_jwt()
    return Claims(
        subject_id=subject_id,
        organization_id=claims.get('organization_id'),
        branch_id=claims.get('branch_id'),
        role=claims.get('role'),
    )


def issue_token(user: User, branch_id: Optional[int] = None) -> str:
    claims: Dict[str, Any] = {
        'organization_id': user.organization_id,
        'role': user.role,
        'username': user.username,
    }
    if branch_id is not None:
        claims['branch_id'] = branch_id
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    return create_access_token(identity=str(user.id), additional_claims=claims)


__all__ = ['Claims', 'current_claims', 'issue_token']
