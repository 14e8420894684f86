"""Structured error taxonomy for the ledger core.

Every error is a werkzeug ``HTTPException`` so the app-wide error handler can
render it directly, while still carrying a machine readable ``kind`` and a
``context`` dict naming the offending resource/action/ids.

Nothing here is retried: all failures are deterministic functions of the
request and the current state.
"""
from __future__ import annotations
from typing import Any, Dict, Optional
from werkzeug.exceptions import HTTPException


class LedgerError(HTTPException):
    code = 400
    kind = 'LedgerError'

    def __init__(self, description: Optional[str] = None, **context: Any):
        super().__init__(description=description or self.description)
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'status': self.code,
            'title': self.name,
            'detail': self.description,
            'kind': self.kind,
        }
        if self.context:
            payload['context'] = self.context
        return payload


class Unauthenticated(LedgerError):
    code = 401
    kind = 'Unauthenticated'
    description = 'Authentication required'


# --- Scope resolution ---
class ScopeMissing(LedgerError):
    code = 400
    kind = 'ScopeMissing'
    description = 'Branch ID is required'


class ScopeNotFound(LedgerError):
    code = 404
    kind = 'ScopeNotFound'
    description = 'Branch not found'


class ScopeInactive(LedgerError):
    code = 403
    kind = 'ScopeInactive'
    description = 'This branch is not active'


class ScopeForbidden(LedgerError):
    code = 403
    kind = 'ScopeForbidden'
    description = 'You do not have access to this branch'


# --- Privileges ---
class Forbidden(LedgerError):
    code = 403
    kind = 'Forbidden'

    def __init__(self, resource: str, action: str, description: Optional[str] = None, **extra: Any):
        super().__init__(
            description or f'Insufficient privileges. Required: {resource}.{action}',
            resource=resource,
            action=action,
            **extra,
        )
        self.resource = resource
        self.action = action


# --- Domain ---
class InvalidInput(LedgerError):
    code = 400
    kind = 'InvalidInput'
    description = 'Invalid input'


class NotFound(LedgerError):
    code = 404
    kind = 'NotFound'

    def __init__(self, entity: str, entity_id: Any = None, description: Optional[str] = None):
        super().__init__(description or f'{entity} not found', entity=entity, id=entity_id)


class CrossScope(LedgerError):
    code = 400
    kind = 'CrossScope'
    description = "Item does not belong to the bill's branch"


class DuplicateLine(LedgerError):
    code = 409
    kind = 'DuplicateLine'
    description = 'Item is already associated with this bill'


class Conflict(LedgerError):
    code = 409
    kind = 'Conflict'
    description = 'Conflicting state'


class RecalculationFailure(LedgerError):
    code = 500
    kind = 'RecalculationFailure'
    description = 'Failed to recalculate bill totals'


__all__ = [
    'LedgerError', 'Unauthenticated', 'ScopeMissing', 'ScopeNotFound', 'ScopeInactive',
    'ScopeForbidden', 'Forbidden', 'NotFound', 'CrossScope', 'DuplicateLine', 'Conflict',
    'RecalculationFailure', 'InvalidInput',
]
